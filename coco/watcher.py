"""
File watcher.

watchdog delivers notifications on its observer thread; they are handed to
the event loop with call_soon_threadsafe and normalized there into
ChangeEvents. The resulting stream is consumed with `async for` and never
ends until the watcher is stopped.

Filtering:
  - ignored directories (.git, node_modules, ...) are dropped silently
  - files outside the extension allow-list or over the size limit are not
    analysed; each such path is reported once as a Diagnostic
  - repeats of the same notification within `coalesce_interval`, and
    modifications that leave the content unchanged, are dropped
"""

import asyncio
import hashlib
import logging
import os
import time
from pathlib import Path
from typing import AsyncIterator, Callable, Optional, Union

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from coco.bus import utcnow
from coco.errors import WatchError
from coco.models.event import ChangeEvent, ChangeType, Diagnostic

logger = logging.getLogger(__name__)

LANGUAGES = {
    ".rs": "rust", ".py": "python", ".js": "javascript", ".jsx": "javascript",
    ".ts": "typescript", ".tsx": "typescript", ".go": "go", ".java": "java",
    ".c": "c", ".h": "c", ".cpp": "cpp", ".hpp": "cpp", ".cs": "csharp",
    ".rb": "ruby", ".php": "php", ".swift": "swift", ".kt": "kotlin",
    ".scala": "scala", ".clj": "clojure", ".ex": "elixir", ".exs": "elixir",
}

_WATCHDOG_KINDS = {
    "modified": ChangeType.MODIFIED,
    "created": ChangeType.CREATED,
    "deleted": ChangeType.DELETED,
    "moved": ChangeType.RENAMED,
}

WatchItem = Union[ChangeEvent, Diagnostic]


def detect_language(path: str) -> Optional[str]:
    return LANGUAGES.get(Path(path).suffix.lower())


def content_hash(content: str) -> str:
    return hashlib.md5(content.encode("utf-8", errors="replace")).hexdigest()


class _Handler(FileSystemEventHandler):
    """Runs on the observer thread; forwards to the loop, nothing else."""

    def __init__(self, loop: asyncio.AbstractEventLoop, sink: Callable[..., None]):
        self._loop = loop
        self._sink = sink

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        change_type = _WATCHDOG_KINDS.get(event.event_type)
        if change_type is None:
            return
        dest = getattr(event, "dest_path", None) or None
        self._loop.call_soon_threadsafe(
            self._sink, change_type, os.fsdecode(event.src_path), os.fsdecode(dest) if dest else None
        )


class FileWatcher:
    def __init__(
        self,
        *,
        extensions=tuple(LANGUAGES),
        ignored_dirs=(),
        max_file_size: int = 1024 * 1024,
        coalesce_interval: float = 0.05,
        observer_factory: Callable[[], Observer] = Observer,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.extensions = {ext.lower() for ext in extensions}
        self.ignored_dirs = set(ignored_dirs)
        self.max_file_size = max_file_size
        self.coalesce_interval = coalesce_interval
        self._observer_factory = observer_factory
        self._clock = clock

        self._observer: Optional[Observer] = None
        self._queue: asyncio.Queue = asyncio.Queue()
        self._sequence = 0
        self._recent: dict[tuple[str, ChangeType], float] = {}
        self._hashes: dict[str, str] = {}
        self._reported: set[str] = set()
        self.roots: list[str] = []

    @classmethod
    def from_settings(cls, settings) -> "FileWatcher":
        return cls(
            extensions=settings.extensions,
            ignored_dirs=settings.ignored_dirs,
            max_file_size=settings.max_file_size,
        )

    # ─── Subscription ──────────────────────────────────────────────────

    def start(self, paths) -> list[WatchError]:
        """
        Register every path. Failures are returned (and queued as
        diagnostics) per path; WatchError is raised only when nothing at
        all could be watched.
        """
        loop = asyncio.get_running_loop()
        self._observer = self._observer_factory()
        handler = _Handler(loop, self.handle_notification)

        failures = []
        for path in paths:
            try:
                self._schedule(handler, path)
            except WatchError as exc:
                logger.warning("Cannot watch %s: %s", path, exc)
                failures.append(exc)
                self._queue.put_nowait(Diagnostic(
                    source="watcher", level="error", message=str(exc), path=str(path),
                ))

        if not self.roots:
            raise WatchError("no accessible paths to watch")

        self._observer.start()
        logger.info("Watching %s", ", ".join(self.roots))
        return failures

    def _schedule(self, handler: _Handler, path) -> None:
        resolved = os.path.abspath(os.fspath(path))
        if not os.path.exists(resolved):
            raise WatchError("path does not exist", path=resolved)
        if not os.access(resolved, os.R_OK):
            raise WatchError("path is not readable", path=resolved)
        try:
            self._observer.schedule(handler, resolved, recursive=os.path.isdir(resolved))
        except OSError as exc:
            raise WatchError(f"registration failed: {exc}", path=resolved) from exc
        self.roots.append(resolved)

    def stop(self) -> None:
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=2)
            self._observer = None

    async def events(self) -> AsyncIterator[WatchItem]:
        while True:
            yield await self._queue.get()

    # ─── Normalization (event loop thread) ─────────────────────────────

    def handle_notification(
        self, change_type: ChangeType, src_path: str, dest_path: Optional[str] = None
    ) -> Optional[WatchItem]:
        item = self._normalize(change_type, src_path, dest_path)
        if item is not None:
            self._queue.put_nowait(item)
        return item

    def _normalize(self, change_type, src_path, dest_path) -> Optional[WatchItem]:
        target = dest_path if change_type == ChangeType.RENAMED and dest_path else src_path
        if self._ignored(target):
            return None

        now = self._clock()
        self._recent = {
            k: seen for k, seen in self._recent.items() if now - seen < self.coalesce_interval
        }
        key = (target, change_type)
        repeated = key in self._recent
        self._recent[key] = now
        # a repeated write notification still gets re-read: the content hash
        # decides, so the last edit of a burst is never lost
        if repeated and change_type in (ChangeType.DELETED, ChangeType.RENAMED):
            return None

        if change_type in (ChangeType.DELETED, ChangeType.RENAMED):
            self._reported.discard(src_path)
        if change_type == ChangeType.DELETED:
            if src_path not in self._hashes:
                return None
            self._hashes.pop(src_path, None)
            return self._event(change_type, src_path)

        rejection = self._rejection(target)
        if rejection:
            if target in self._reported:
                return None
            self._reported.add(target)
            return Diagnostic(source="watcher", level="info", message=rejection, path=target)

        try:
            with open(target, "r", encoding="utf-8", errors="replace") as f:
                content = f.read()
        except OSError as exc:
            logger.debug("Could not read %s: %s", target, exc)
            return None

        digest = content_hash(content)
        if change_type != ChangeType.RENAMED and self._hashes.get(target) == digest:
            return None
        self._hashes[target] = digest
        if change_type == ChangeType.RENAMED:
            self._hashes.pop(src_path, None)

        return self._event(
            change_type,
            src_path,
            content=content,
            digest=digest,
            dest_path=dest_path if change_type == ChangeType.RENAMED else None,
        )

    def _event(self, change_type, path, *, content=None, digest=None, dest_path=None) -> ChangeEvent:
        self._sequence += 1
        return ChangeEvent(
            path=path,
            change_type=change_type,
            sequence=self._sequence,
            timestamp=utcnow(),
            content=content,
            content_hash=digest,
            language=detect_language(dest_path or path),
            dest_path=dest_path,
        )

    def _ignored(self, path: str) -> bool:
        return any(part in self.ignored_dirs for part in Path(path).parts)

    def _rejection(self, path: str) -> Optional[str]:
        if Path(path).suffix.lower() not in self.extensions:
            return "skipped: extension not in allow-list"
        try:
            size = os.path.getsize(path)
        except OSError:
            return None
        if size > self.max_file_size:
            return f"skipped: {size} bytes exceeds limit of {self.max_file_size}"
        return None
