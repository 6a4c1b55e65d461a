from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict

LOG_FORMAT_VERSION = 1


class SessionHeader(BaseModel):
    """First line of every session log."""

    model_config = ConfigDict(frozen=True)

    record: Literal["header"] = "header"
    format_version: int = LOG_FORMAT_VERSION
    session_id: str
    started_at: datetime
    coco_version: str
    working_directory: str
    user: Optional[str] = None
    model: Optional[str] = None
    # settings that change what the state machine surfaces
    confidence_threshold: float = 0.7
    auto_suggestions: bool = True
    insight_capacity: int = 50


class SessionFooter(BaseModel):
    model_config = ConfigDict(frozen=True)

    record: Literal["footer"] = "footer"
    ended_at: datetime
    event_count: int


class SessionSummary(BaseModel):
    session_id: str
    started_at: datetime
    ended_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    total_events: int = 0
    file_changes: int = 0
    requests: int = 0
    responses: int = 0
    successful_responses: int = 0
    ui_actions: int = 0
    diagnostics: int = 0
    average_latency_ms: int = 0
    files: list[str] = []
    truncated: bool = False

    @property
    def success_rate(self) -> float:
        return self.successful_responses / self.responses if self.responses else 0.0
