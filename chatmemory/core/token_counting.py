"""Token estimation for memory budgets.

All budget decisions in the memory engine go through this module. The estimate
is deliberately crude (characters / 4, rounded up); what matters is that the
same estimator is used on both sides of every comparison.
"""

import math
import re

CHARS_PER_TOKEN = 4

_TRAILING_PARTIAL_WORD = re.compile(r"\s+\S*$")


def estimate_tokens(text: object) -> int:
    """Estimate the token count of a text.

    Args:
        text: Text to measure. Non-string values count as zero tokens.

    Returns:
        ceil(len(text) / 4)
    """
    if not isinstance(text, str):
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def clamp_text_to_tokens(text: str | None, max_tokens: int) -> str:
    """Clamp text to at most ``max_tokens`` estimated tokens.

    The head of the text is kept and the tail discarded, cutting back to the
    last whitespace so no partial word is left at the end.

    Args:
        text: Text to clamp
        max_tokens: Token cap. Zero or less clamps to the empty string.

    Returns:
        The clamped text (unchanged if it already fits)
    """
    if not text:
        return ""
    if max_tokens <= 0:
        return ""
    if estimate_tokens(text) <= max_tokens:
        return text

    sliced = text[: max_tokens * CHARS_PER_TOKEN]
    return _TRAILING_PARTIAL_WORD.sub("", sliced).strip()
