"""
Token estimation.

A cheap heuristic of roughly four characters per token, close enough to
OpenAI-style tokenizers on English text for sizing chunks.
"""

from __future__ import annotations

import math

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    if not text or text.isspace():
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def chars_for_tokens(text: str, tokens: int) -> int:
    """
    Number of characters of ``text`` that approximates ``tokens`` tokens,
    capped at the text length.
    """
    if not text or text.isspace() or tokens <= 0:
        return 0
    return min(tokens * CHARS_PER_TOKEN, len(text))
