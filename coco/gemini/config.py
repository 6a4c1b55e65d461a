"""
Gemini model configuration.

Priority chain: the configured model first, then more widely available ones.
On 429 RESOURCE_EXHAUSTED the fallback helper tries each model in order.
"""

FALLBACK_MODELS = ("gemini-2.5-flash", "gemini-2.0-flash")


def model_chain(primary: str) -> list[str]:
    return list(dict.fromkeys([primary, *FALLBACK_MODELS]))
