"""
EventBus: the single serialization point.

Producers (watcher pump, debouncer, analysis workers, key input) only ever
hold the bus and publish payloads into one ordered queue. The consumer loop
commits them one at a time: assign the next sequence number, apply to
AppState, then notify subscribers (recorder, live wiring, renderer) in
commit order. Every consumer therefore observes the same total order.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from coco.errors import ReplayCorruptionError
from coco.models.event import SessionEvent
from coco.models.state import AppSnapshot
from coco.state import AppState

logger = logging.getLogger(__name__)

Subscriber = Callable[[SessionEvent, AppSnapshot], None]

_STOP = object()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventBus:
    def __init__(self, state: AppState, *, clock: Callable[[], datetime] = utcnow):
        self.state = state
        self._clock = clock
        self._queue: asyncio.Queue = asyncio.Queue()
        self._sequence = 0
        self._subscribers: list[Subscriber] = []

    @property
    def sequence(self) -> int:
        return self._sequence

    @property
    def snapshot(self) -> AppSnapshot:
        return self.state.snapshot

    def subscribe(self, callback: Subscriber) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    # ─── Producers ─────────────────────────────────────────────────────

    async def publish(self, payload) -> None:
        await self._queue.put(payload)

    def publish_nowait(self, payload) -> None:
        self._queue.put_nowait(payload)

    def stop(self) -> None:
        """Ask the consumer loop to exit after everything already queued."""
        self._queue.put_nowait(_STOP)

    # ─── Consumer ──────────────────────────────────────────────────────

    async def run(self) -> None:
        while True:
            payload = await self._queue.get()
            if payload is _STOP:
                break
            self.commit(payload)

    def commit(self, payload, *, timestamp: Optional[datetime] = None) -> SessionEvent:
        self._sequence += 1
        event = SessionEvent(
            sequence=self._sequence,
            timestamp=timestamp or self._clock(),
            payload=payload,
        )
        snapshot = self.state.apply(event)
        logger.debug("Committed #%d %s", event.sequence, payload.kind)

        for callback in list(self._subscribers):
            try:
                callback(event, snapshot)
            except Exception:
                logger.exception("Subscriber %r failed on event #%d", callback, event.sequence)
        return event

    def replay(self, event: SessionEvent) -> SessionEvent:
        """Commit a recorded event verbatim, keeping its sequence and timestamp."""
        if event.sequence != self._sequence + 1:
            raise ReplayCorruptionError(
                f"expected sequence {self._sequence + 1}, got {event.sequence}",
                line=0,
                last_valid_sequence=self._sequence,
            )
        return self.commit(event.payload, timestamp=event.timestamp)
