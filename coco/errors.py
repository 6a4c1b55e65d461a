"""
Error taxonomy.

Nothing here terminates the process on its own. Components convert these
into Insight records or Diagnostic events that travel through the EventBus;
only the CLI turns startup failures into exit codes.
"""

from typing import Optional


class CocoError(Exception):
    """Base class carrying the path the failure is scoped to, if any."""

    def __init__(self, message: str, *, path: Optional[str] = None):
        super().__init__(message)
        self.path = path

    def __str__(self) -> str:
        base = super().__str__()
        return f"{base} ({self.path})" if self.path else base


class ConfigError(CocoError):
    """Invalid or missing configuration."""


class WatchError(CocoError):
    """A path could not be watched. Recoverable, scoped to that path."""


class AnalysisError(CocoError):
    retriable = False


class TransientAnalysisError(AnalysisError):
    """Timeout, overload or rate limiting. Retried with backoff."""

    retriable = True


class FatalAnalysisError(AnalysisError):
    """Authentication or validation failure. Never retried."""


class CircuitOpenError(AnalysisError):
    """Fast failure while the breaker is open. No network attempt was made."""

    def __init__(self, retry_in: float):
        super().__init__(f"analysis service unavailable, retrying in {retry_in:.1f}s")
        self.retry_in = retry_in


class SessionIOError(CocoError):
    """Writing the session log failed; recording stops, monitoring continues."""


class SessionNotFoundError(CocoError):
    pass


class ReplayCorruptionError(CocoError):
    """A session log is malformed or truncated after `last_valid_sequence`."""

    def __init__(self, message: str, *, line: int, last_valid_sequence: int):
        super().__init__(message)
        self.line = line
        self.last_valid_sequence = last_valid_sequence
