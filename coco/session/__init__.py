from coco.session.player import ReplayResult, SessionPlayer
from coco.session.recorder import SessionRecorder
from coco.session.store import LoadedSession, SessionStore, new_session_id, summarize

__all__ = [
    "LoadedSession", "ReplayResult", "SessionPlayer", "SessionRecorder", "SessionStore",
    "new_session_id", "summarize",
]
