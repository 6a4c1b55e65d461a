"""Immutable snapshot handed to renderers after every commit."""

from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict

from coco.models.event import Diagnostic
from coco.models.insight import Insight


class ViewMode(str, Enum):
    SIDE_BY_SIDE = "side_by_side"
    FULL = "full"
    MINIMAL = "minimal"
    THOUGHTS_ONLY = "thoughts_only"


# toggle order
VIEW_MODE_CYCLE = (
    ViewMode.SIDE_BY_SIDE,
    ViewMode.FULL,
    ViewMode.MINIMAL,
    ViewMode.THOUGHTS_ONLY,
)


class FileHandle(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    language: Optional[str] = None
    content: str = ""
    content_hash: Optional[str] = None
    last_change_sequence: int = 0
    change_count: int = 0
    in_flight: Optional[str] = None   # request id currently outstanding


class PendingDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    action: Literal["accept", "reject"]
    path: str
    insight_id: str


class AppSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    sequence: int = 0
    files: tuple[FileHandle, ...] = ()
    insights: dict[str, tuple[Insight, ...]] = {}
    mode: ViewMode = ViewMode.SIDE_BY_SIDE
    current_file: Optional[str] = None
    selected: int = 0
    pending: Optional[PendingDecision] = None
    diagnostics: tuple[Diagnostic, ...] = ()
    show_help: bool = False
    running: bool = True
    change_count: int = 0
    request_count: int = 0
    response_count: int = 0
    superseded_count: int = 0

    def insights_for(self, path: Optional[str]) -> tuple[Insight, ...]:
        if path is None:
            return ()
        return self.insights.get(path, ())

    def file(self, path: Optional[str]) -> Optional[FileHandle]:
        for handle in self.files:
            if handle.path == path:
                return handle
        return None
