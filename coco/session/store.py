"""
On-disk session logs.

One JSON Lines file per recorded run, `<sessions_dir>/<session_id>.jsonl`:

    {"record": "header", "session_id": ..., "started_at": ..., ...}
    {"record": "event", "sequence": 1, "timestamp": ..., "payload": {...}}
    ...
    {"record": "footer", "ended_at": ..., "event_count": N}     (clean exit only)

Loading stops at the first line that fails to parse, fails validation or
breaks the gapless sequence, and reports where. Only an unreadable header
is an error.
"""

import csv
import json
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Optional, Union

from pydantic import Field, TypeAdapter, ValidationError

from coco.errors import ReplayCorruptionError, SessionNotFoundError
from coco.models.event import (
    AnalysisRequest, AnalysisResponse, ChangeEvent, Diagnostic, SessionEvent, UiAction,
)
from coco.models.session import SessionFooter, SessionHeader, SessionSummary

logger = logging.getLogger(__name__)

LOG_SUFFIX = ".jsonl"
_SESSION_ID = re.compile(r"^[A-Za-z0-9_-]+$")

_record_adapter = TypeAdapter(
    Annotated[Union[SessionHeader, SessionEvent, SessionFooter], Field(discriminator="record")]
)


def new_session_id(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"coco_{now:%Y%m%d_%H%M%S}_{uuid.uuid4().hex[:8]}"


@dataclass
class LoadedSession:
    header: SessionHeader
    events: list[SessionEvent] = field(default_factory=list)
    footer: Optional[SessionFooter] = None
    corruption: Optional[ReplayCorruptionError] = None

    @property
    def session_id(self) -> str:
        return self.header.session_id


class SessionStore:
    def __init__(self, root: Path):
        self.root = Path(root)

    def path_for(self, session_id: str) -> Path:
        if not _SESSION_ID.match(session_id or ""):
            raise SessionNotFoundError(f"invalid session id {session_id!r}")
        return self.root / f"{session_id}{LOG_SUFFIX}"

    def exists(self, session_id: str) -> bool:
        try:
            return self.path_for(session_id).is_file()
        except SessionNotFoundError:
            return False

    def ids(self) -> list[str]:
        if not self.root.is_dir():
            return []
        return sorted(p.stem for p in self.root.glob(f"*{LOG_SUFFIX}"))

    # ─── Loading ───────────────────────────────────────────────────────

    def load(self, session_id: str) -> LoadedSession:
        path = self.path_for(session_id)
        if not path.is_file():
            raise SessionNotFoundError(f"no session {session_id!r}", path=str(path))

        # decoded per line so a bad byte only ends the readable prefix
        with open(path, "rb") as f:
            return parse_log(f, source=str(path))

    def list_sessions(self) -> list[SessionSummary]:
        summaries = []
        for session_id in self.ids():
            try:
                loaded = self.load(session_id)
            except ReplayCorruptionError as exc:
                logger.warning("Skipping unreadable session %s: %s", session_id, exc)
                continue
            summaries.append(summarize(loaded))
        summaries.sort(key=lambda s: s.started_at, reverse=True)
        return summaries

    def delete(self, session_id: str) -> None:
        path = self.path_for(session_id)
        if not path.is_file():
            raise SessionNotFoundError(f"no session {session_id!r}", path=str(path))
        path.unlink()
        logger.info("Deleted session %s", session_id)

    # ─── Export ────────────────────────────────────────────────────────

    def export(self, session_id: str, output: Path, fmt: str = "json") -> int:
        loaded = self.load(session_id)
        output = Path(output)

        if fmt == "json":
            document = {
                "header": loaded.header.model_dump(mode="json"),
                "events": [e.model_dump(mode="json") for e in loaded.events],
                "footer": loaded.footer.model_dump(mode="json") if loaded.footer else None,
                "truncated": loaded.corruption is not None,
            }
            output.write_text(json.dumps(document, indent=2), encoding="utf-8")
        elif fmt == "csv":
            with open(output, "w", encoding="utf-8", newline="") as f:
                writer = csv.writer(f)
                writer.writerow(["sequence", "timestamp", "kind", "path", "data"])
                for event in loaded.events:
                    payload = event.payload
                    writer.writerow([
                        event.sequence,
                        event.timestamp.isoformat(),
                        payload.kind,
                        getattr(payload, "path", "") or "",
                        payload.model_dump_json(exclude={"content", "kind", "path"}),
                    ])
        else:
            raise ValueError(f"unsupported export format {fmt!r}")

        logger.info("Exported session %s to %s (%s)", session_id, output, fmt)
        return len(loaded.events)


def parse_log(lines, *, source: str = "<log>") -> LoadedSession:
    """
    Parse a session log from str or UTF-8 bytes lines. Raises
    ReplayCorruptionError only when not even the header is readable; later
    damage is reported on LoadedSession.corruption.
    """
    loaded: Optional[LoadedSession] = None
    last_sequence = 0

    for number, line in enumerate(lines, start=1):
        if not line.strip():
            continue

        try:
            if isinstance(line, bytes):
                line = line.decode("utf-8")
            record = _record_adapter.validate_json(line)
        except (ValidationError, UnicodeDecodeError) as exc:
            problem = _first_error(exc) if isinstance(exc, ValidationError) else "not valid UTF-8"
            if loaded is None:
                raise ReplayCorruptionError(
                    f"{source}: unreadable header ({problem})", line=number, last_valid_sequence=0
                ) from exc
            loaded.corruption = ReplayCorruptionError(
                f"{source}: line {number} is malformed ({problem})",
                line=number, last_valid_sequence=last_sequence,
            )
            break

        if loaded is None:
            if not isinstance(record, SessionHeader):
                raise ReplayCorruptionError(
                    f"{source}: first record is not a header", line=number, last_valid_sequence=0
                )
            loaded = LoadedSession(header=record)
            continue

        problem = None
        if loaded.footer is not None:
            problem = "records after footer"
        elif isinstance(record, SessionHeader):
            problem = "duplicate header"
        elif isinstance(record, SessionEvent) and record.sequence != last_sequence + 1:
            problem = f"expected sequence {last_sequence + 1}, got {record.sequence}"

        if problem:
            loaded.corruption = ReplayCorruptionError(
                f"{source}: line {number}: {problem}", line=number, last_valid_sequence=last_sequence
            )
            break

        if isinstance(record, SessionFooter):
            loaded.footer = record
        else:
            loaded.events.append(record)
            last_sequence = record.sequence

    if loaded is None:
        raise ReplayCorruptionError(f"{source}: empty session log", line=0, last_valid_sequence=0)
    return loaded


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    err = errors[0]
    location = ".".join(str(p) for p in err.get("loc", ()))
    return f"{location}: {err['msg']}" if location else err["msg"]


def summarize(loaded: LoadedSession) -> SessionSummary:
    header, events = loaded.header, loaded.events

    if loaded.footer:
        ended_at = loaded.footer.ended_at
    elif events:
        ended_at = events[-1].timestamp
    else:
        ended_at = None

    summary = SessionSummary(
        session_id=header.session_id,
        started_at=header.started_at,
        ended_at=ended_at,
        duration_ms=int((ended_at - header.started_at).total_seconds() * 1000) if ended_at else None,
        total_events=len(events),
        truncated=loaded.corruption is not None,
    )

    files: list[str] = []
    latency_total = 0
    for event in events:
        payload = event.payload
        if isinstance(payload, ChangeEvent):
            summary.file_changes += 1
            path = payload.dest_path or payload.path
            if path not in files:
                files.append(path)
        elif isinstance(payload, AnalysisRequest):
            summary.requests += 1
        elif isinstance(payload, AnalysisResponse):
            summary.responses += 1
            latency_total += payload.latency_ms
            if payload.success:
                summary.successful_responses += 1
        elif isinstance(payload, UiAction):
            summary.ui_actions += 1
        elif isinstance(payload, Diagnostic):
            summary.diagnostics += 1

    summary.files = files
    summary.average_latency_ms = latency_total // summary.responses if summary.responses else 0
    return summary
