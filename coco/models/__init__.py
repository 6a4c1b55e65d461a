from coco.models.event import (
    AnalysisRequest, AnalysisResponse, ChangeEvent, ChangeType, Diagnostic,
    SessionEvent, UiAction, UiActionType,
)
from coco.models.insight import Insight, InsightKind, Severity, SourceRange
from coco.models.session import SessionFooter, SessionHeader, SessionSummary
from coco.models.state import AppSnapshot, FileHandle, PendingDecision, ViewMode

__all__ = [
    "AnalysisRequest", "AnalysisResponse", "ChangeEvent", "ChangeType", "Diagnostic",
    "SessionEvent", "UiAction", "UiActionType",
    "Insight", "InsightKind", "Severity", "SourceRange",
    "SessionFooter", "SessionHeader", "SessionSummary",
    "AppSnapshot", "FileHandle", "PendingDecision", "ViewMode",
]
