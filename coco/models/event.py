"""
Everything that can pass through the EventBus.

Payloads are discriminated on `kind`; a SessionEvent wraps one payload with
the bus-assigned sequence number and commit timestamp. Once written to a
session log a SessionEvent is never modified.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from coco.models.insight import Insight


class ChangeType(str, Enum):
    MODIFIED = "modified"
    CREATED = "created"
    DELETED = "deleted"
    RENAMED = "renamed"


class ChangeEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["change"] = "change"
    path: str
    change_type: ChangeType
    sequence: int                    # watcher-local, monotonic
    timestamp: datetime
    content: Optional[str] = None    # None for deletions
    content_hash: Optional[str] = None
    language: Optional[str] = None
    dest_path: Optional[str] = None  # set for renames


class AnalysisRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["request"] = "request"
    request_id: str
    path: str
    content: str
    language: Optional[str] = None
    change_sequence: int             # ChangeEvent.sequence the snapshot was taken from
    submitted_at: datetime


class AnalysisResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["response"] = "response"
    request_id: str
    path: str
    insights: list[Insight] = Field(default_factory=list)
    latency_ms: int = 0
    success: bool = True
    attempts: int = 1


class UiActionType(str, Enum):
    TOGGLE_MODE = "toggle_mode"
    SET_MODE = "set_mode"
    SELECT_NEXT = "select_next"
    SELECT_PREV = "select_prev"
    SELECT_FILE = "select_file"
    ACCEPT = "accept"
    REJECT = "reject"
    CONFIRM = "confirm"
    CANCEL = "cancel"
    CLEAR = "clear"
    HELP = "help"
    QUIT = "quit"


class UiAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["ui"] = "ui"
    action: UiActionType
    value: Optional[str] = None      # mode name for set_mode, path for select_file


class Diagnostic(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["diagnostic"] = "diagnostic"
    source: str                      # "watcher" | "recorder" | "state" | ...
    level: Literal["info", "warning", "error"] = "warning"
    message: str
    path: Optional[str] = None


Payload = Annotated[
    Union[ChangeEvent, AnalysisRequest, AnalysisResponse, UiAction, Diagnostic],
    Field(discriminator="kind"),
]


class SessionEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    record: Literal["event"] = "event"
    sequence: int = Field(ge=1)
    timestamp: datetime
    payload: Payload
