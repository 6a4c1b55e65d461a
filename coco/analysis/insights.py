"""
Turn raw service output into Insight records.

The service is asked for JSON, but models do not always comply. Parsing
falls back in stages:
  1. strict JSON, optionally wrapped in markdown fences
  2. the first {...} block found anywhere in the text
  3. free text split into sections, each classified by keywords
"""

import json
import logging
import re
from typing import Optional

from coco.models.insight import Insight, InsightKind, Severity, SourceRange

logger = logging.getLogger(__name__)

_SECTION_START = re.compile(r"^(\d+\.|[-*] |#{2,3} )")

# checked in order; first match wins
_KIND_KEYWORDS = [
    (InsightKind.ERROR, ("error", "bug", "issue")),
    (InsightKind.WARNING, ("warning", "caution", "careful")),
    (InsightKind.SUGGESTING, ("suggest", "recommend", "consider")),
    (InsightKind.PERFORMANCE, ("performance", "optimization", "speed")),
    (InsightKind.SECURITY, ("security", "vulnerability", "unsafe")),
    (InsightKind.STYLE, ("style", "format", "convention")),
    (InsightKind.ARCHITECTURE, ("architecture", "design", "pattern")),
]

_DEFAULT_SEVERITY = {
    InsightKind.ERROR: Severity.ERROR,
    InsightKind.WARNING: Severity.WARNING,
    InsightKind.SECURITY: Severity.WARNING,
}


def parse_insights(raw: str, path: Optional[str] = None) -> list[Insight]:
    raw = (raw or "").strip()
    if not raw:
        return []

    data = _parse_json(raw)
    if isinstance(data, dict) and isinstance(data.get("insights"), list):
        insights = [i for i in (_from_dict(item, path) for item in data["insights"]) if i]
        return insights

    logger.debug("Service reply was not structured JSON, using text heuristics")
    return _from_text(raw, path)


# ─── JSON ──────────────────────────────────────────────────────────────

def _parse_json(raw: str):
    text = raw
    if text.startswith("```"):
        text = text.split("```")[1]
        if text.startswith("json"):
            text = text[4:]
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        start = raw.find("{")
        end = raw.rfind("}") + 1
        if start != -1 and end > start:
            try:
                return json.loads(raw[start:end])
            except json.JSONDecodeError:
                pass
    return None


def _from_dict(item, path: Optional[str]) -> Optional[Insight]:
    if not isinstance(item, dict):
        return None
    message = str(item.get("message") or "").strip()
    if not message:
        return None

    try:
        kind = InsightKind(str(item.get("kind", "")).lower())
    except ValueError:
        kind = infer_kind(message)
    try:
        severity = Severity(str(item.get("severity", "")).lower())
    except ValueError:
        severity = _DEFAULT_SEVERITY.get(kind, Severity.INFO)

    try:
        confidence = float(item.get("confidence", estimate_confidence(message)))
    except (TypeError, ValueError):
        confidence = estimate_confidence(message)

    return Insight(
        kind=kind,
        message=message,
        severity=severity,
        confidence=max(0.0, min(1.0, confidence)),
        path=path,
        range=_range(item.get("start_line"), item.get("end_line")),
        suggestion=(str(item["suggestion"]).strip() or None) if item.get("suggestion") else None,
    )


def _range(start, end) -> Optional[SourceRange]:
    try:
        start = int(start)
    except (TypeError, ValueError):
        return None
    try:
        end = int(end)
    except (TypeError, ValueError):
        end = start
    if start < 1:
        return None
    return SourceRange(start_line=start, end_line=max(start, end))


# ─── Free text ─────────────────────────────────────────────────────────

def split_sections(text: str) -> list[str]:
    sections: list[str] = []
    current: list[str] = []
    for line in text.splitlines():
        stripped = line.strip()
        starts = bool(_SECTION_START.match(stripped)) or (len(stripped) > 20 and stripped.endswith(":"))
        if starts and "".join(current).strip():
            sections.append("\n".join(current).strip())
            current = []
        current.append(line)
    if "".join(current).strip():
        sections.append("\n".join(current).strip())
    return sections


def infer_kind(content: str) -> InsightKind:
    lower = content.lower()
    for kind, words in _KIND_KEYWORDS:
        if any(word in lower for word in words):
            return kind
    return InsightKind.ANALYZING


def estimate_confidence(content: str) -> float:
    lower = content.lower()
    confidence = 0.5
    if "should" in lower or "must" in lower:
        confidence += 0.2
    if "might" in lower or "maybe" in lower or "possibly" in lower:
        confidence -= 0.2
    if "```" in content:
        confidence += 0.1
    if len(content) > 200:
        confidence += 0.1
    return round(max(0.0, min(1.0, confidence)), 2)


def _from_text(text: str, path: Optional[str]) -> list[Insight]:
    insights = []
    for section in split_sections(text):
        kind = infer_kind(section)
        insights.append(Insight(
            kind=kind,
            message=section,
            severity=_DEFAULT_SEVERITY.get(kind, Severity.INFO),
            confidence=estimate_confidence(section),
            path=path,
        ))
    return insights
