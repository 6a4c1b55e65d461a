"""
Gemini analysis backend.

Sends one file snapshot per call and returns the parsed insights. Retries,
timeouts and circuit breaking live in AnalysisClient; this module only
classifies each failure as transient or fatal.

Edge cases handled:
  - Rate limiting (429) across the model fallback chain
  - Missing / invalid / expired API key
  - Overload and network timeouts
  - Safety filter blocks and empty responses
  - Large files (per-file truncation with a visible marker)
"""

import logging
import re
from typing import Optional

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from coco.analysis.insights import parse_insights
from coco.errors import AnalysisError, FatalAnalysisError, TransientAnalysisError
from coco.gemini.config import model_chain
from coco.gemini.fallback import generate_with_fallback
from coco.gemini.system_prompt import SYSTEM_PROMPT
from coco.models.event import AnalysisRequest
from coco.models.insight import Insight

logger = logging.getLogger(__name__)

# ─── Limits ────────────────────────────────────────────────────────────

MAX_FILE_CHARS = 60_000       # ~15k tokens
MAX_OUTPUT_TOKENS = 2048

# HTTP status leading an SDK message, e.g. "404 NOT_FOUND. {...}"
_LEADING_STATUS = re.compile(r"^\s*(\d{3})\b")

# only consulted when no status code is available
_TRANSIENT_WORDS = re.compile(
    r"\b(quota|rate[ _-]?limit(ed)?|resource_exhausted|overloaded|unavailable"
    r"|time[d]? ?out|deadline)\b",
    re.IGNORECASE,
)
_FATAL_WORDS = re.compile(
    r"\b(api[ _]key|permission|unauthenticated|invalid|not[ _]found)\b",
    re.IGNORECASE,
)


def _status_code(exc: Exception) -> Optional[int]:
    code = exc.code if isinstance(exc, genai_errors.APIError) else getattr(exc, "code", None)
    if isinstance(code, int):
        return code
    match = _LEADING_STATUS.match(str(exc))
    return int(match.group(1)) if match else None


def classify_error(exc: Exception, path: Optional[str] = None) -> AnalysisError:
    """
    Map an SDK/network exception onto the retry policy.

    A status code decides when there is one: 408, 429 and 5xx are
    transient, any other 4xx is fatal (bad key, unknown model, malformed
    request). Without a code, whole-word markers in the message decide,
    and anything unrecognised is treated as transient.
    """
    if isinstance(exc, AnalysisError):
        return exc

    message = str(exc) or type(exc).__name__
    if isinstance(exc, genai_errors.ServerError):
        return TransientAnalysisError(message, path=path)

    code = _status_code(exc)
    if code is not None:
        if code in (408, 429) or code >= 500:
            return TransientAnalysisError(message, path=path)
        if 400 <= code < 500:
            return FatalAnalysisError(message, path=path)

    if _TRANSIENT_WORDS.search(message):
        return TransientAnalysisError(message, path=path)
    if _FATAL_WORDS.search(message):
        return FatalAnalysisError(message, path=path)
    return TransientAnalysisError(message, path=path)


def _truncate(content: str, limit: int) -> str:
    if len(content) <= limit:
        return content
    return content[:limit] + f"\n... [truncated, {len(content)} chars total]"


def build_prompt(request: AnalysisRequest) -> str:
    content = _truncate(request.content, MAX_FILE_CHARS)
    numbered = "\n".join(
        f"{number:>5} | {line}" for number, line in enumerate(content.splitlines(), start=1)
    )
    language = request.language or "unknown"
    return f"File: {request.path}\nLanguage: {language}\n\n{numbered}"


def _extract_text(response) -> str:
    """
    Safely pull text from a Gemini response, handling:
      - Normal text responses
      - Safety-blocked prompts
      - Empty / malformed responses
    """
    try:
        text = response.text
        if text and text.strip():
            return text.strip()
    except (ValueError, AttributeError):
        pass

    feedback = getattr(response, "prompt_feedback", None)
    if feedback and getattr(feedback, "block_reason", None):
        raise FatalAnalysisError(f"prompt blocked by content filters ({feedback.block_reason})")

    try:
        for candidate in response.candidates or []:
            if candidate.content and candidate.content.parts:
                for part in candidate.content.parts:
                    if getattr(part, "text", None) and part.text.strip():
                        return part.text.strip()
    except (AttributeError, IndexError):
        pass

    return ""


class GeminiAnalyzer:
    """AnalysisBackend implementation on google-genai's async client."""

    def __init__(self, api_key: str, model: str = "gemini-2.5-flash"):
        self._api_key = api_key
        self.models = model_chain(model)
        self._client: Optional[genai.Client] = None

    def _get_client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(api_key=self._api_key)
        return self._client

    async def analyze(self, request: AnalysisRequest) -> list[Insight]:
        config = types.GenerateContentConfig(
            system_instruction=SYSTEM_PROMPT,
            max_output_tokens=MAX_OUTPUT_TOKENS,
            temperature=0.2,
            response_mime_type="application/json",
        )
        contents = [{"role": "user", "parts": [{"text": build_prompt(request)}]}]

        try:
            response = await generate_with_fallback(
                self._get_client(), self.models, contents=contents, config=config
            )
        except Exception as exc:
            raise classify_error(exc, request.path) from exc

        if response is None:
            raise TransientAnalysisError("rate limited on every model in the chain", path=request.path)

        text = _extract_text(response)
        logger.debug("Gemini replied with %d chars for %s", len(text), request.path)
        return parse_insights(text, request.path)
