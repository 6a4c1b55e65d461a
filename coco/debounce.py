"""
Per-file trailing-edge debounce.

    Idle ──change──▶ Pending ──quiet for D──▶ Fired (one request) ──▶ In flight
                      ▲   │                                             │
                      └───┘ every change resets the timer              │
    In flight ──change──▶ queued (latest only) ──resolved──▶ fires immediately

A file never has more than one request outstanding. Edits that land while a
request is in flight collapse into a single queued snapshot.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from coco.models.event import AnalysisRequest, ChangeEvent, ChangeType

logger = logging.getLogger(__name__)


def new_request_id() -> str:
    return f"req_{uuid.uuid4().hex[:10]}"


@dataclass
class _Entry:
    timer: Optional[asyncio.TimerHandle] = None
    latest: Optional[ChangeEvent] = None
    queued: Optional[ChangeEvent] = None
    in_flight: Optional[str] = None

    @property
    def idle(self) -> bool:
        return self.timer is None and self.in_flight is None and self.queued is None


class Debouncer:
    def __init__(
        self,
        delay: float,
        emit: Callable[[AnalysisRequest], None],
        *,
        id_factory: Callable[[], str] = new_request_id,
    ):
        self.delay = delay
        self._emit = emit
        self._id_factory = id_factory
        self._entries: dict[str, _Entry] = {}

    def in_flight(self, path: str) -> Optional[str]:
        entry = self._entries.get(path)
        return entry.in_flight if entry else None

    def is_pending(self, path: str) -> bool:
        entry = self._entries.get(path)
        return bool(entry and entry.timer is not None)

    def on_change(self, change: ChangeEvent) -> None:
        if change.change_type == ChangeType.DELETED:
            self.cancel(change.path)
            return

        path = change.path
        if change.change_type == ChangeType.RENAMED and change.dest_path:
            self.cancel(change.path)
            path = change.dest_path
        if change.content is None:
            return

        entry = self._entries.setdefault(path, _Entry())
        if entry.in_flight is not None:
            entry.queued = change
            return

        entry.latest = change
        if entry.timer is not None:
            entry.timer.cancel()
        loop = asyncio.get_running_loop()
        entry.timer = loop.call_later(self.delay, self._fire, path)

    def on_resolved(self, request_id: str, path: str) -> None:
        entry = self._entries.get(path)
        if entry is None or entry.in_flight != request_id:
            return

        entry.in_flight = None
        if entry.queued is not None:
            queued, entry.queued = entry.queued, None
            self._submit(path, entry, queued)
        elif entry.idle:
            del self._entries[path]

    def cancel(self, path: str) -> None:
        """Drop pending work for a path. An outstanding request stays tracked."""
        entry = self._entries.get(path)
        if entry is None:
            return
        if entry.timer is not None:
            entry.timer.cancel()
        entry.timer = None
        entry.latest = None
        entry.queued = None
        if entry.idle:
            del self._entries[path]

    def close(self) -> None:
        for entry in self._entries.values():
            if entry.timer is not None:
                entry.timer.cancel()
        self._entries.clear()

    # ─── Internals ─────────────────────────────────────────────────────

    def _fire(self, path: str) -> None:
        entry = self._entries.get(path)
        if entry is None or entry.latest is None:
            return
        entry.timer = None
        change, entry.latest = entry.latest, None
        if entry.in_flight is not None:
            entry.queued = change
            return
        self._submit(path, entry, change)

    def _submit(self, path: str, entry: _Entry, change: ChangeEvent) -> None:
        request = AnalysisRequest(
            request_id=self._id_factory(),
            path=path,
            content=change.content or "",
            language=change.language,
            change_sequence=change.sequence,
            submitted_at=datetime.now(timezone.utc),
        )
        entry.in_flight = request.request_id
        logger.debug("Debounce fired for %s → %s", path, request.request_id)
        self._emit(request)
