"""
Model fallback for quota exhaustion.

A 429 / RESOURCE_EXHAUSTED on one model moves the call on to the next model
in the chain; anything else is the caller's to classify. When every model
is out of quota the result is None, which GeminiAnalyzer reports as a
transient failure so the retry policy and circuit breaker see it.
"""

import logging
from typing import Any, Optional, Sequence

logger = logging.getLogger(__name__)


def is_quota_error(exc: Exception) -> bool:
    code = getattr(exc, "code", None)
    if isinstance(code, int):
        return code == 429
    text = str(exc)
    return text.lstrip().startswith("429") or "RESOURCE_EXHAUSTED" in text


async def generate_with_fallback(client, models: Sequence[str], *, contents, config) -> Optional[Any]:
    """
    Args:
        client: google.genai.Client
        models: model names, preferred first
        contents: user turn(s) for generate_content
        config: types.GenerateContentConfig

    Returns:
        The first response any model produced, or None when all of them
        are rate-limited.
    """
    for model in models:
        try:
            response = await client.aio.models.generate_content(
                model=model,
                contents=contents,
                config=config,
            )
        except Exception as exc:
            if not is_quota_error(exc):
                raise
            logger.warning("Quota exhausted on %s, falling back", model)
            continue
        logger.debug("Served by %s", model)
        return response

    logger.error("Every model out of quota: %s", ", ".join(models))
    return None
