"""
FileWatcher tests.

Notifications are injected with handle_notification(), the same entry
point the watchdog handler uses; a fake observer stands in for the OS.
"""

import asyncio

import pytest

from coco.errors import WatchError
from coco.models.event import ChangeEvent, ChangeType, Diagnostic
from coco.watcher import FileWatcher, content_hash, detect_language


class FakeObserver:
    def __init__(self):
        self.scheduled = []
        self.started = False
        self.stopped = False

    def schedule(self, handler, path, recursive=False):
        self.scheduled.append((path, recursive))

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def join(self, timeout=None):
        pass


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestNormalization:
    @pytest.fixture(autouse=True)
    def _workspace(self, tmp_path):
        self.root = tmp_path
        self.clock = FakeClock()
        self.watcher = FileWatcher(
            extensions=(".py", ".rs"),
            ignored_dirs=("node_modules", ".git"),
            max_file_size=64,
            observer_factory=FakeObserver,
            clock=self.clock,
        )

    def _write(self, name, text):
        path = self.root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text)
        return str(path)

    def test_modification_carries_content_and_language(self):
        path = self._write("app.py", "x = 1\n")
        event = self.watcher.handle_notification(ChangeType.MODIFIED, path)
        assert isinstance(event, ChangeEvent)
        assert event.content == "x = 1\n"
        assert event.language == "python"
        assert event.content_hash == content_hash("x = 1\n")
        assert event.sequence == 1

    def test_unchanged_content_is_dropped(self):
        path = self._write("app.py", "x = 1\n")
        assert self.watcher.handle_notification(ChangeType.MODIFIED, path) is not None
        self.clock.now += 1
        assert self.watcher.handle_notification(ChangeType.MODIFIED, path) is None

    def test_last_write_of_a_burst_is_not_lost(self):
        path = self._write("app.py", "x = 1\n")
        self.watcher.handle_notification(ChangeType.MODIFIED, path)
        self._write("app.py", "x = 2\n")
        # same instant as the first notification
        event = self.watcher.handle_notification(ChangeType.MODIFIED, path)
        assert event.content == "x = 2\n"
        assert event.sequence == 2

    def test_ignored_directories_are_silent(self):
        path = self._write("node_modules/lib/index.py", "x = 1\n")
        assert self.watcher.handle_notification(ChangeType.MODIFIED, path) is None

    def test_extension_outside_allow_list_reported_once(self):
        path = self._write("notes.txt", "hello\n")
        first = self.watcher.handle_notification(ChangeType.MODIFIED, path)
        assert isinstance(first, Diagnostic)
        assert first.level == "info"
        assert "allow-list" in first.message
        self._write("notes.txt", "hello again\n")
        assert self.watcher.handle_notification(ChangeType.MODIFIED, path) is None

    def test_oversized_file_reported(self):
        path = self._write("big.py", "#" * 100)
        item = self.watcher.handle_notification(ChangeType.MODIFIED, path)
        assert isinstance(item, Diagnostic)
        assert "exceeds limit of 64" in item.message

    def test_delete_of_unseen_file_is_dropped(self):
        assert self.watcher.handle_notification(ChangeType.DELETED, str(self.root / "ghost.py")) is None

    def test_delete_of_known_file(self):
        path = self._write("app.py", "x = 1\n")
        self.watcher.handle_notification(ChangeType.MODIFIED, path)
        event = self.watcher.handle_notification(ChangeType.DELETED, path)
        assert event.change_type == ChangeType.DELETED
        assert event.content is None

    def test_rename_reports_destination(self):
        old = self._write("old.py", "x = 1\n")
        self.watcher.handle_notification(ChangeType.MODIFIED, old)
        new = self._write("new.rs", "fn main() {}\n")
        event = self.watcher.handle_notification(ChangeType.RENAMED, old, new)
        assert event.change_type == ChangeType.RENAMED
        assert event.path == old
        assert event.dest_path == new
        assert event.language == "rust"
        assert event.content == "fn main() {}\n"

    def test_repeated_rename_notification_is_coalesced(self):
        old = self._write("old.py", "x = 1\n")
        new = self._write("new.py", "x = 1\n")
        assert self.watcher.handle_notification(ChangeType.RENAMED, old, new) is not None
        assert self.watcher.handle_notification(ChangeType.RENAMED, old, new) is None

    def test_coalescing_window_entries_expire(self):
        for n in range(3):
            path = self._write(f"mod{n}.py", "x = 1\n")
            self.watcher.handle_notification(ChangeType.MODIFIED, path)
        assert len(self.watcher._recent) == 3

        self.clock.now = 1.0
        last = self._write("last.py", "y = 2\n")
        self.watcher.handle_notification(ChangeType.MODIFIED, last)
        assert list(self.watcher._recent) == [(last, ChangeType.MODIFIED)]

    def test_rename_after_the_window_is_reported_again(self):
        old = self._write("old.py", "x = 1\n")
        new = self._write("new.py", "x = 1\n")
        assert self.watcher.handle_notification(ChangeType.RENAMED, old, new) is not None
        self.clock.now = 1.0
        assert self.watcher.handle_notification(ChangeType.RENAMED, old, new) is not None

    def test_rejected_file_is_forgotten_once_deleted(self):
        path = self._write("notes.txt", "hello\n")
        assert isinstance(self.watcher.handle_notification(ChangeType.MODIFIED, path), Diagnostic)
        self.watcher.handle_notification(ChangeType.DELETED, path)
        assert path not in self.watcher._reported
        self.clock.now = 1.0
        assert isinstance(self.watcher.handle_notification(ChangeType.MODIFIED, path), Diagnostic)

    def test_sequences_are_monotonic(self):
        a = self._write("a.py", "a\n")
        b = self._write("b.py", "b\n")
        first = self.watcher.handle_notification(ChangeType.CREATED, a)
        second = self.watcher.handle_notification(ChangeType.CREATED, b)
        assert second.sequence == first.sequence + 1


class TestSubscription:
    def test_unwatchable_path_is_reported_and_others_continue(self, tmp_path):
        watcher = FileWatcher(observer_factory=FakeObserver)

        async def scenario():
            failures = watcher.start([str(tmp_path / "missing"), str(tmp_path)])
            item = await watcher.events().__anext__()
            watcher.stop()
            return failures, item

        failures, item = asyncio.run(scenario())
        assert len(failures) == 1
        assert "does not exist" in str(failures[0])
        assert isinstance(item, Diagnostic)
        assert item.source == "watcher"
        assert watcher.roots == [str(tmp_path)]

    def test_no_watchable_path_raises(self, tmp_path):
        watcher = FileWatcher(observer_factory=FakeObserver)

        async def scenario():
            watcher.start([str(tmp_path / "missing")])

        with pytest.raises(WatchError, match="no accessible paths"):
            asyncio.run(scenario())

    def test_directories_are_watched_recursively(self, tmp_path):
        observer = FakeObserver()
        watcher = FileWatcher(observer_factory=lambda: observer)

        async def scenario():
            watcher.start([str(tmp_path)])

        asyncio.run(scenario())
        assert observer.scheduled == [(str(tmp_path), True)]
        assert observer.started


class TestHelpers:
    def test_detect_language(self):
        assert detect_language("src/lib.rs") == "rust"
        assert detect_language("App.TSX") == "typescript"
        assert detect_language("README.md") is None
