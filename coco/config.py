"""
Runtime configuration.

Values come from the process environment (a .env file is loaded by the CLI
before anything reads it) and are validated into a frozen Settings model.

  GEMINI_API_KEY             credential, required for live modes only
  COCO_LOG_LEVEL             error | warn | info | debug | trace
  COCO_CONFIDENCE_THRESHOLD  insights below this never reach the screen
  COCO_ANALYSIS_DELAY_MS     debounce quiescence window
  COCO_MAX_FILE_SIZE         files above this many bytes are not analysed
"""

import logging
import os
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from coco.errors import ConfigError

logger = logging.getLogger(__name__)

# ─── Defaults ──────────────────────────────────────────────────────────

DEFAULT_EXTENSIONS = (
    ".rs", ".py", ".js", ".ts", ".jsx", ".tsx", ".go", ".java", ".c", ".cpp",
    ".h", ".hpp", ".cs", ".rb", ".php", ".swift", ".kt", ".scala", ".clj",
    ".ex", ".exs",
)

DEFAULT_IGNORED_DIRS = (
    ".git", "node_modules", "target", "build", "dist", "out",
    "__pycache__", ".venv", "venv",
)

LOG_LEVELS = {
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": logging.DEBUG,
}

# env var → Settings field
_ENV_FIELDS = {
    "GEMINI_API_KEY": "api_key",
    "GEMINI_MODEL": "model",
    "COCO_LOG_LEVEL": "log_level",
    "COCO_LOG_FILE": "log_file",
    "COCO_AUTO_SUGGESTIONS": "auto_suggestions",
    "COCO_CONFIDENCE_THRESHOLD": "confidence_threshold",
    "COCO_ANALYSIS_DELAY_MS": "analysis_delay_ms",
    "COCO_MAX_FILE_SIZE": "max_file_size",
    "COCO_EXTENSIONS": "extensions",
    "COCO_HOME": "home",
    "COCO_MAX_CONCURRENCY": "max_concurrency",
    "COCO_REQUEST_TIMEOUT_MS": "request_timeout_ms",
    "COCO_MAX_ATTEMPTS": "max_attempts",
    "COCO_BACKOFF_BASE_MS": "backoff_base_ms",
    "COCO_BREAKER_THRESHOLD": "breaker_threshold",
    "COCO_BREAKER_COOLDOWN_MS": "breaker_cooldown_ms",
    "COCO_INSIGHT_CAPACITY": "insight_capacity",
    "COCO_FLUSH_EVERY": "flush_every",
}


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    api_key: Optional[str] = None
    model: str = "gemini-2.5-flash"
    log_level: str = "info"
    log_file: Optional[str] = None
    auto_suggestions: bool = True
    confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    analysis_delay_ms: int = Field(default=500, ge=0)
    max_file_size: int = Field(default=1024 * 1024, gt=0)
    extensions: tuple[str, ...] = DEFAULT_EXTENSIONS
    ignored_dirs: tuple[str, ...] = DEFAULT_IGNORED_DIRS
    home: Path = Field(default_factory=lambda: Path.home() / ".coco")
    max_concurrency: int = Field(default=2, ge=1)
    request_timeout_ms: int = Field(default=30_000, gt=0)
    max_attempts: int = Field(default=3, ge=1)
    backoff_base_ms: int = Field(default=500, ge=0)
    breaker_threshold: int = Field(default=5, ge=1)
    breaker_cooldown_ms: int = Field(default=30_000, ge=0)
    insight_capacity: int = Field(default=50, ge=1)
    flush_every: int = Field(default=1, ge=1)

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in LOG_LEVELS:
            raise ValueError(f"unknown log level {value!r}")
        return value

    @field_validator("extensions", mode="before")
    @classmethod
    def _split_extensions(cls, value):
        if isinstance(value, str):
            value = [part.strip() for part in value.split(",") if part.strip()]
        return tuple(ext if ext.startswith(".") else f".{ext}" for ext in value)

    @field_validator("api_key")
    @classmethod
    def _blank_key_is_missing(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value

    @property
    def sessions_dir(self) -> Path:
        return self.home / "sessions"

    def require_credential(self) -> str:
        """Live modes need an API key; replay and list never do."""
        if not self.api_key:
            raise ConfigError(
                "GEMINI_API_KEY is required for live monitoring. "
                "Set it in the environment or a .env file."
            )
        return self.api_key


def load_settings(environ: Optional[Mapping[str, str]] = None, **overrides) -> Settings:
    """Build Settings from environment variables plus explicit overrides."""
    environ = os.environ if environ is None else environ

    values = {}
    for var, field in _ENV_FIELDS.items():
        raw = environ.get(var)
        if raw is not None and raw != "":
            values[field] = raw
    values.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return Settings(**values)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        raise ConfigError(f"invalid configuration: {problems}") from exc


def configure_logging(settings: Settings) -> None:
    """Install one handler on the root logger, to stderr or COCO_LOG_FILE."""
    if settings.log_file:
        handler: logging.Handler = logging.FileHandler(settings.log_file, encoding="utf-8")
    else:
        handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s")
    )

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(LOG_LEVELS[settings.log_level])
