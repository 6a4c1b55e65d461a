"""
Application state.

AppState.apply() is the only place UI-visible state changes. It is a pure
function of the committed event sequence: the same events in the same order
always produce the same snapshots, which is what lets a recorded session be
replayed without the watcher or the analysis service.
"""

import logging
from typing import Optional

from coco.models.event import (
    AnalysisRequest, AnalysisResponse, ChangeEvent, ChangeType, Diagnostic,
    SessionEvent, UiAction, UiActionType,
)
from coco.models.insight import Insight, InsightKind
from coco.models.state import (
    VIEW_MODE_CYCLE, AppSnapshot, FileHandle, PendingDecision, ViewMode,
)

logger = logging.getLogger(__name__)

MAX_DIAGNOSTICS = 20


class AppState:
    def __init__(
        self,
        *,
        confidence_threshold: float = 0.7,
        auto_suggestions: bool = True,
        insight_capacity: int = 50,
    ):
        self.confidence_threshold = confidence_threshold
        self.auto_suggestions = auto_suggestions
        self.insight_capacity = insight_capacity

        self._files: dict[str, FileHandle] = {}
        self._insights: dict[str, list[Insight]] = {}
        self._requests: dict[str, AnalysisRequest] = {}
        self._diagnostics: list[Diagnostic] = []
        self._mode = ViewMode.SIDE_BY_SIDE
        self._current_file: Optional[str] = None
        self._selected = 0
        self._pending: Optional[PendingDecision] = None
        self._show_help = False
        self._running = True
        self._sequence = 0
        self._counts = {"change": 0, "request": 0, "response": 0, "superseded": 0}
        self._snapshot = AppSnapshot()

    @property
    def snapshot(self) -> AppSnapshot:
        return self._snapshot

    # ─── Commit ────────────────────────────────────────────────────────

    def apply(self, event: SessionEvent) -> AppSnapshot:
        payload = event.payload
        self._sequence = event.sequence

        if isinstance(payload, ChangeEvent):
            self._apply_change(payload)
        elif isinstance(payload, AnalysisRequest):
            self._apply_request(payload)
        elif isinstance(payload, AnalysisResponse):
            self._apply_response(payload)
        elif isinstance(payload, UiAction):
            self._apply_ui(payload)
        elif isinstance(payload, Diagnostic):
            self._note(payload)
        else:
            raise TypeError(f"unknown payload {type(payload).__name__}")

        self._snapshot = self._build_snapshot()
        return self._snapshot

    # ─── File registry ─────────────────────────────────────────────────

    def _apply_change(self, change: ChangeEvent) -> None:
        self._counts["change"] += 1

        if change.change_type == ChangeType.DELETED:
            self._forget(change.path)
            return

        path = change.path
        if change.change_type == ChangeType.RENAMED and change.dest_path:
            self._forget(change.path)
            path = change.dest_path

        previous = self._files.get(path)
        self._files[path] = FileHandle(
            path=path,
            language=change.language,
            content=change.content or "",
            content_hash=change.content_hash,
            last_change_sequence=change.sequence,
            change_count=(previous.change_count if previous else 0) + 1,
            in_flight=previous.in_flight if previous else None,
        )
        self._insights.setdefault(path, [])

        if self._current_file != path:
            self._current_file = path
            self._selected = 0

    def _forget(self, path: str) -> None:
        self._files.pop(path, None)
        self._insights.pop(path, None)
        if self._pending and self._pending.path == path:
            self._pending = None
        if self._current_file == path:
            self._current_file = next(reversed(self._files), None)
            self._selected = 0

    # ─── Analysis ──────────────────────────────────────────────────────

    def _apply_request(self, request: AnalysisRequest) -> None:
        self._counts["request"] += 1
        self._requests[request.request_id] = request
        handle = self._files.get(request.path)
        if handle is not None:
            self._files[request.path] = handle.model_copy(update={"in_flight": request.request_id})

    def _apply_response(self, response: AnalysisResponse) -> None:
        self._counts["response"] += 1

        request = self._requests.pop(response.request_id, None)
        if request is None:
            self._note(Diagnostic(
                source="state",
                level="error",
                message=f"response for unknown request {response.request_id}",
                path=response.path,
            ))
            return

        handle = self._files.get(request.path)
        if handle is not None and handle.in_flight == request.request_id:
            handle = handle.model_copy(update={"in_flight": None})
            self._files[request.path] = handle

        if handle is None or handle.last_change_sequence > request.change_sequence:
            self._counts["superseded"] += 1
            logger.debug("Response %s superseded for %s", response.request_id, request.path)
            return

        visible = [i for i in response.insights if self._surfaces(i)]
        if not visible:
            return

        insights = self._insights.setdefault(request.path, [])
        insights.extend(visible)
        overflow = len(insights) - self.insight_capacity
        if overflow > 0:
            del insights[:overflow]
            if request.path == self._current_file:
                self._selected = max(0, self._selected - overflow)
            self._drop_stale_pending(request.path)

    def _surfaces(self, insight: Insight) -> bool:
        if insight.confidence < self.confidence_threshold:
            return False
        if insight.kind == InsightKind.SUGGESTING and not self.auto_suggestions:
            return False
        return True

    def _drop_stale_pending(self, path: str) -> None:
        if self._pending and self._pending.path == path:
            ids = {i.id for i in self._insights.get(path, [])}
            if self._pending.insight_id not in ids:
                self._pending = None

    # ─── Key input ─────────────────────────────────────────────────────

    def _apply_ui(self, ui: UiAction) -> None:
        action = ui.action
        current = self._insights.get(self._current_file, []) if self._current_file else []

        if action == UiActionType.TOGGLE_MODE:
            index = VIEW_MODE_CYCLE.index(self._mode)
            self._mode = VIEW_MODE_CYCLE[(index + 1) % len(VIEW_MODE_CYCLE)]
        elif action == UiActionType.SET_MODE:
            try:
                self._mode = ViewMode(ui.value)
            except ValueError:
                self._note(Diagnostic(source="state", message=f"unknown view mode {ui.value!r}"))
        elif action == UiActionType.SELECT_NEXT:
            if current:
                self._selected = min(self._selected + 1, len(current) - 1)
        elif action == UiActionType.SELECT_PREV:
            self._selected = max(self._selected - 1, 0)
        elif action == UiActionType.SELECT_FILE:
            if ui.value in self._files:
                self._current_file = ui.value
                self._selected = 0
        elif action in (UiActionType.ACCEPT, UiActionType.REJECT):
            if current and self._selected < len(current):
                self._pending = PendingDecision(
                    action=action.value,
                    path=self._current_file,
                    insight_id=current[self._selected].id,
                )
        elif action == UiActionType.CONFIRM:
            self._resolve_pending()
        elif action == UiActionType.CANCEL:
            self._pending = None
        elif action == UiActionType.CLEAR:
            if self._current_file in self._insights:
                self._insights[self._current_file] = []
            self._selected = 0
            self._pending = None
        elif action == UiActionType.HELP:
            self._show_help = not self._show_help
        elif action == UiActionType.QUIT:
            self._running = False

    def _resolve_pending(self) -> None:
        pending, self._pending = self._pending, None
        if pending is None or pending.action == "accept":
            # accepting only acknowledges; sources are never touched
            return

        insights = self._insights.get(pending.path, [])
        remaining = [i for i in insights if i.id != pending.insight_id]
        self._insights[pending.path] = remaining
        if pending.path == self._current_file:
            self._selected = min(self._selected, max(len(remaining) - 1, 0))

    # ─── Diagnostics / snapshot ────────────────────────────────────────

    def _note(self, diagnostic: Diagnostic) -> None:
        self._diagnostics.append(diagnostic)
        del self._diagnostics[:-MAX_DIAGNOSTICS]

    def _build_snapshot(self) -> AppSnapshot:
        return AppSnapshot(
            sequence=self._sequence,
            files=tuple(self._files.values()),
            insights={path: tuple(items) for path, items in self._insights.items()},
            mode=self._mode,
            current_file=self._current_file,
            selected=self._selected,
            pending=self._pending,
            diagnostics=tuple(self._diagnostics),
            show_help=self._show_help,
            running=self._running,
            change_count=self._counts["change"],
            request_count=self._counts["request"],
            response_count=self._counts["response"],
            superseded_count=self._counts["superseded"],
        )
