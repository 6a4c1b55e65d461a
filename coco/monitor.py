"""
Live monitoring: wires watcher → bus → debouncer → analysis client → bus.

Every arrow into the bus is a publish; every arrow out of it is a
subscriber reacting to a committed event. Nothing here mutates AppState.
"""

import asyncio
import logging
from typing import Optional

from coco.analysis.client import AnalysisBackend, AnalysisClient
from coco.bus import EventBus
from coco.debounce import Debouncer
from coco.models.event import (
    AnalysisRequest, AnalysisResponse, ChangeEvent, SessionEvent, UiAction, UiActionType,
)
from coco.models.state import AppSnapshot
from coco.session.recorder import SessionRecorder
from coco.state import AppState
from coco.watcher import FileWatcher

logger = logging.getLogger(__name__)


class Monitor:
    def __init__(
        self,
        settings,
        backend: AnalysisBackend,
        *,
        watcher: Optional[FileWatcher] = None,
        recorder: Optional[SessionRecorder] = None,
        client: Optional[AnalysisClient] = None,
    ):
        self.settings = settings
        self.state = AppState(
            confidence_threshold=settings.confidence_threshold,
            auto_suggestions=settings.auto_suggestions,
            insight_capacity=settings.insight_capacity,
        )
        self.bus = EventBus(self.state)
        self.debouncer = Debouncer(settings.analysis_delay_ms / 1000, self.bus.publish_nowait)
        self.client = client or AnalysisClient.from_settings(settings, backend)
        self.watcher = watcher or FileWatcher.from_settings(settings)
        self.recorder = recorder

        self._stop = asyncio.Event()
        self._dispatches: set[asyncio.Task] = set()

        if recorder is not None:
            recorder.attach(self.bus)
        self.bus.subscribe(self._route)

    @property
    def stopping(self) -> asyncio.Event:
        return self._stop

    def stop(self) -> None:
        self._stop.set()

    # ─── Routing of committed events ───────────────────────────────────

    def _route(self, event: SessionEvent, snapshot: AppSnapshot) -> None:
        payload = event.payload
        if isinstance(payload, ChangeEvent):
            self.debouncer.on_change(payload)
        elif isinstance(payload, AnalysisRequest):
            task = asyncio.get_running_loop().create_task(self._dispatch(payload))
            self._dispatches.add(task)
            task.add_done_callback(self._dispatches.discard)
        elif isinstance(payload, AnalysisResponse):
            self.debouncer.on_resolved(payload.request_id, payload.path)
        elif isinstance(payload, UiAction) and payload.action == UiActionType.QUIT:
            self._stop.set()

    async def _dispatch(self, request: AnalysisRequest) -> None:
        response = await self.client.analyze(request)
        await self.bus.publish(response)

    async def _pump(self) -> None:
        async for item in self.watcher.events():
            await self.bus.publish(item)

    # ─── Lifecycle ─────────────────────────────────────────────────────

    async def run(self, paths, *, renderer=None) -> AppSnapshot:
        """
        Watch `paths` until quit. Raises WatchError before anything starts
        if none of the paths can be watched.
        """
        self.watcher.start(paths)

        tasks = [
            asyncio.create_task(self.bus.run(), name="coco-bus"),
            asyncio.create_task(self._pump(), name="coco-watch"),
        ]
        if renderer is not None:
            tasks.append(asyncio.create_task(renderer.run(self.bus, self._stop), name="coco-render"))

        try:
            await self._stop.wait()
        finally:
            await self._shutdown(tasks)
        return self.bus.snapshot

    async def _shutdown(self, tasks: list[asyncio.Task]) -> None:
        self._stop.set()
        self.watcher.stop()
        self.debouncer.close()

        for task in list(self._dispatches):
            task.cancel()
        pump = tasks[1]
        pump.cancel()
        await asyncio.gather(pump, *self._dispatches, return_exceptions=True)

        self.bus.stop()
        await asyncio.gather(*(t for t in tasks if t is not pump), return_exceptions=True)

        if self.recorder is not None:
            self.recorder.close()
        logger.info("Monitor stopped at event #%d", self.bus.sequence)
