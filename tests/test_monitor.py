"""
End-to-end: a recorded live run replays to the same final state.

The watcher runs on a fake observer and notifications are injected by
hand; everything downstream of it is the real pipeline.
"""

import asyncio

import pytest

from coco.config import load_settings
from coco.models.event import ChangeType, UiAction, UiActionType
from coco.models.insight import Insight, InsightKind
from coco.monitor import Monitor
from coco.session.player import SessionPlayer
from coco.session.recorder import SessionRecorder
from coco.session.store import SessionStore
from coco.watcher import FileWatcher


class FakeObserver:
    def schedule(self, handler, path, recursive=False):
        pass

    def start(self):
        pass

    def stop(self):
        pass

    def join(self, timeout=None):
        pass


class EchoBackend:
    def __init__(self):
        self.requests = []

    async def analyze(self, request):
        self.requests.append(request)
        return [Insight(
            kind=InsightKind.STYLE,
            message=f"{len(request.content.splitlines())} lines reviewed",
            confidence=0.9,
        )]


class TestMonitor:
    @pytest.fixture(autouse=True)
    def _workspace(self, tmp_path):
        self.source = tmp_path / "src"
        self.source.mkdir()
        self.settings = load_settings(environ={}, home=tmp_path / "home", analysis_delay_ms=20)
        self.store = SessionStore(self.settings.sessions_dir)

    def test_live_run_records_and_replays(self):
        backend = EchoBackend()
        recorder = SessionRecorder.start(self.store, self.settings)
        app = self.source / "app.py"

        async def scenario():
            watcher = FileWatcher(
                extensions=self.settings.extensions,
                ignored_dirs=self.settings.ignored_dirs,
                observer_factory=FakeObserver,
            )
            monitor = Monitor(self.settings, backend, watcher=watcher, recorder=recorder)
            task = asyncio.create_task(monitor.run([str(self.source)]))
            await asyncio.sleep(0)

            for n in range(1, 4):
                app.write_text("x = 1\n" * n)
                watcher.handle_notification(ChangeType.MODIFIED, str(app))
                await asyncio.sleep(0.005)
            await asyncio.sleep(0.2)

            monitor.bus.publish_nowait(UiAction(action=UiActionType.QUIT))
            return await asyncio.wait_for(task, 5)

        live = asyncio.run(scenario())

        # three quick edits, one request carrying the last one
        assert len(backend.requests) == 1
        assert backend.requests[0].content == "x = 1\n" * 3
        assert live.change_count == 3
        assert live.request_count == 1
        assert live.response_count == 1
        assert [i.message for i in live.insights_for(str(app))] == ["3 lines reviewed"]
        assert live.running is False

        result = asyncio.run(SessionPlayer.open(self.store, recorder.session_id, instant=True).play())
        assert not result.truncated
        assert result.final == live
