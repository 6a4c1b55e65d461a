"""
Session player.

Feeds a recorded log, in order, into a brand-new AppState through its own
EventBus. Recorded ChangeEvents and AnalysisResponses are committed
verbatim; no watcher, debouncer or analysis client exists in a replay, so
the reconstructed snapshots match the ones observed live.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Optional

from coco.bus import EventBus
from coco.errors import ReplayCorruptionError
from coco.models.event import Diagnostic, SessionEvent
from coco.models.state import AppSnapshot
from coco.session.store import LoadedSession, SessionStore
from coco.state import AppState

logger = logging.getLogger(__name__)


@dataclass
class ReplayResult:
    session_id: str
    snapshots: list[AppSnapshot] = field(default_factory=list)
    diagnostic: Optional[Diagnostic] = None

    @property
    def final(self) -> AppSnapshot:
        return self.snapshots[-1] if self.snapshots else AppSnapshot()

    @property
    def truncated(self) -> bool:
        return self.diagnostic is not None


class SessionPlayer:
    def __init__(
        self,
        session: LoadedSession,
        *,
        speed: float = 1.0,
        instant: bool = False,
        max_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if speed <= 0:
            raise ValueError("speed must be positive")
        self.session = session
        self.speed = speed
        self.instant = instant
        self.max_delay = max_delay
        self._sleep = sleep
        self._listeners: list[Callable[[SessionEvent, AppSnapshot], None]] = []

    @classmethod
    def open(cls, store: SessionStore, session_id: str, **options) -> "SessionPlayer":
        return cls(store.load(session_id), **options)

    def subscribe(self, callback: Callable[[SessionEvent, AppSnapshot], None]) -> None:
        self._listeners.append(callback)

    def new_state(self) -> AppState:
        header = self.session.header
        return AppState(
            confidence_threshold=header.confidence_threshold,
            auto_suggestions=header.auto_suggestions,
            insight_capacity=header.insight_capacity,
        )

    def delay_between(self, previous: datetime, current: datetime) -> float:
        if self.instant:
            return 0.0
        delay = max(0.0, (current - previous).total_seconds()) / self.speed
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay

    async def play(self) -> ReplayResult:
        bus = EventBus(self.new_state())
        for listener in self._listeners:
            bus.subscribe(listener)

        result = ReplayResult(session_id=self.session.session_id)
        previous = self.session.header.started_at
        corruption = self.session.corruption

        logger.info(
            "Replaying %s: %d events%s",
            result.session_id, len(self.session.events), " (instant)" if self.instant else "",
        )

        for event in self.session.events:
            delay = self.delay_between(previous, event.timestamp)
            if delay > 0:
                await self._sleep(delay)
            try:
                bus.replay(event)
            except ReplayCorruptionError as exc:
                corruption = exc
                break
            result.snapshots.append(bus.snapshot)
            previous = event.timestamp

        if corruption is not None:
            logger.warning("Replay of %s halted: %s", result.session_id, corruption)
            result.diagnostic = Diagnostic(
                source="replay",
                level="warning",
                message=f"session log truncated after event #{bus.sequence}: {corruption}",
            )
        return result
