"""
Token and context-window estimation.
Character-ratio heuristics per model family; no tokenizer dependency.
"""

import math
from typing import Iterable, Union

from config import get_context_window

DEFAULT_CHARS_PER_TOKEN = 3.8
DEFAULT_CONTEXT_LIMIT = 32_000
# Share of the context window left for the prompt; the rest is reserved for the response
MAX_CONTEXT_USAGE_RATIO = 0.75

_LOCAL_FAMILIES = ("llama", "mistral", "qwen", "gemma", "phi", "deepseek")


def _is_o_series(model: str) -> bool:
    return model.startswith(("o1", "o3", "o4"))


def chars_per_token(model: str) -> float:
    """Model-specific characters-per-token ratio."""
    m = (model or "").lower()
    if "claude" in m:
        return 3.5
    if "gpt-4" in m or "gpt-5" in m or _is_o_series(m):
        return 4.0
    if any(family in m for family in _LOCAL_FAMILIES):
        return 4.0
    return DEFAULT_CHARS_PER_TOKEN


def estimate_tokens(text: Union[str, Iterable[str]], model: str = "") -> int:
    """Estimated token count of a string (or the sum over a list of strings)."""
    if not isinstance(text, str):
        return sum(estimate_tokens(t, model) for t in text)
    if not text:
        return 0
    ratio = chars_per_token(model) if model else DEFAULT_CHARS_PER_TOKEN
    return int(math.ceil(len(text) / ratio))


def context_limit(model: str) -> int:
    """Context window in tokens; conservative 32k for unknown models."""
    known = get_context_window(model) if model else None
    if known:
        return int(known)
    m = (model or "").lower()
    if "gpt-5" in m or "gpt-4o" in m or "gpt-4.1" in m or "gpt-4-turbo" in m:
        return 128_000
    if _is_o_series(m):
        return 200_000
    if "claude" in m:
        return 200_000
    return DEFAULT_CONTEXT_LIMIT


def max_context_usage(model: str) -> int:
    """Recommended prompt budget: 75% of the context window."""
    return int(context_limit(model) * MAX_CONTEXT_USAGE_RATIO)
