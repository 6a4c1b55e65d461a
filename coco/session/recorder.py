"""
Session recorder.

Subscribes to the EventBus and appends every committed event to the
session log as one JSON line, flushing every `flush_every` events so a
crash loses at most the last unflushed batch. A write failure switches
recording off for the rest of the run and is reported through the bus as
a Diagnostic; live monitoring carries on.
"""

import getpass
import logging
import os
from datetime import datetime, timezone
from typing import Optional, TextIO

from coco import __version__
from coco.errors import SessionIOError
from coco.models.event import Diagnostic, SessionEvent
from coco.models.session import SessionFooter, SessionHeader
from coco.models.state import AppSnapshot
from coco.session.store import SessionStore, new_session_id

logger = logging.getLogger(__name__)


def _current_user() -> Optional[str]:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return None


class SessionRecorder:
    def __init__(self, stream: TextIO, header: SessionHeader, *, flush_every: int = 1):
        self.header = header
        self.flush_every = flush_every
        self.enabled = True
        self.events_written = 0
        self._stream: Optional[TextIO] = stream
        self._bus = None

        self._write(header.model_dump_json())
        self._flush()

    @classmethod
    def start(cls, store: SessionStore, settings, *, session_id: Optional[str] = None) -> "SessionRecorder":
        session_id = session_id or new_session_id()
        header = SessionHeader(
            session_id=session_id,
            started_at=datetime.now(timezone.utc),
            coco_version=__version__,
            working_directory=os.getcwd(),
            user=_current_user(),
            model=settings.model,
            confidence_threshold=settings.confidence_threshold,
            auto_suggestions=settings.auto_suggestions,
            insight_capacity=settings.insight_capacity,
        )
        try:
            store.root.mkdir(parents=True, exist_ok=True)
            stream = open(store.path_for(session_id), "x", encoding="utf-8")
        except OSError as exc:
            raise SessionIOError(f"cannot create session log: {exc}", path=str(store.root)) from exc

        recorder = cls(stream, header, flush_every=settings.flush_every)
        logger.info("Recording session %s", session_id)
        return recorder

    @property
    def session_id(self) -> str:
        return self.header.session_id

    def attach(self, bus) -> None:
        self._bus = bus
        bus.subscribe(self.on_event)

    def on_event(self, event: SessionEvent, snapshot: AppSnapshot = None) -> None:
        if not self.enabled:
            return
        try:
            self._write(event.model_dump_json())
            self.events_written += 1
            if self.events_written % self.flush_every == 0:
                self._flush()
        except SessionIOError as exc:
            self._disable(exc)

    def close(self) -> None:
        """Write the footer and release the file. Safe to call twice."""
        if self._stream is None:
            return
        if self.enabled:
            footer = SessionFooter(ended_at=datetime.now(timezone.utc), event_count=self.events_written)
            try:
                self._write(footer.model_dump_json())
                self._flush()
            except SessionIOError as exc:
                logger.error("Could not finalize session %s: %s", self.session_id, exc)
        self._release()
        logger.info("Session %s closed after %d events", self.session_id, self.events_written)

    # ─── Internals ─────────────────────────────────────────────────────

    def _write(self, line: str) -> None:
        if self._stream is None:
            raise SessionIOError("session log is closed")
        try:
            self._stream.write(line + "\n")
        except (OSError, ValueError) as exc:
            raise SessionIOError(f"write failed: {exc}") from exc

    def _flush(self) -> None:
        try:
            self._stream.flush()
        except (OSError, ValueError) as exc:
            raise SessionIOError(f"flush failed: {exc}") from exc

    def _release(self) -> None:
        stream, self._stream = self._stream, None
        try:
            stream.close()
        except (OSError, ValueError) as exc:
            logger.debug("Closing session log failed: %s", exc)

    def _disable(self, exc: SessionIOError) -> None:
        self.enabled = False
        self._release()
        logger.error("Recording of session %s stopped: %s", self.session_id, exc)
        if self._bus is not None:
            self._bus.publish_nowait(Diagnostic(
                source="recorder",
                level="error",
                message=f"recording stopped: {exc}",
            ))
