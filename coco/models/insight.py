import uuid
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class InsightKind(str, Enum):
    ANALYZING = "analyzing"
    SUGGESTING = "suggesting"
    WARNING = "warning"
    ERROR = "error"
    PERFORMANCE = "performance"
    SECURITY = "security"
    STYLE = "style"
    ARCHITECTURE = "architecture"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class SourceRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    start_line: int = Field(ge=1)
    end_line: int = Field(ge=1)


class Insight(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    kind: InsightKind
    message: str
    severity: Severity = Severity.INFO
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    path: Optional[str] = None
    range: Optional[SourceRange] = None
    suggestion: Optional[str] = None       # concrete fix text, if the service offered one
