"""
Fixed-size chunking.

Windows of ``max_chunk_size`` tokens with ``overlap`` tokens carried into the
next window. Each window end is pulled back to the nearest natural break
(paragraph, then line, then sentence, then any whitespace) within a short
search window.
"""

from __future__ import annotations

import logging
from typing import List

from ...config import ChunkingSettings
from ..models import ChunkInfo, ParsedDocument
from .base import ChunkingStrategy
from .tokens import CHARS_PER_TOKEN

logger = logging.getLogger("kb.chunking.fixed")

MAX_BREAK_SEARCH = 100


def find_natural_break(content: str, start: int, target: int) -> int:
    """
    Return the end offset for a chunk starting at ``start`` and aiming at
    ``target``.

    The result is always in ``(start, target]``, so a chunk never outgrows its
    window. A target at or past the end of the content returns ``len(content)``.
    """
    length = len(content)
    if target >= length:
        return length

    window = min(MAX_BREAK_SEARCH, (target - start) // 4)
    lower = max(target - window, start)
    upper = min(target, length - 1)

    # Paragraph break
    for i in range(upper, lower, -1):
        if content[i] == "\n" and content[i - 1] == "\n":
            return i

    # Line break
    for i in range(upper, lower, -1):
        if content[i] == "\n":
            return i

    # Sentence end; the break falls after the period
    for i in range(min(target - 1, length - 1), lower, -1):
        if content[i] == "." and content[i + 1].isspace():
            return i + 1

    # Any whitespace
    for i in range(upper, lower, -1):
        if content[i].isspace():
            return i

    return target


class FixedSizeChunker(ChunkingStrategy):
    name = "FixedSize"

    async def chunk(
        self,
        document: ParsedDocument,
        settings: ChunkingSettings,
    ) -> List[ChunkInfo]:
        content = document.content
        if not content or content.isspace():
            return []

        length = len(content)
        window_chars = settings.max_chunk_size * CHARS_PER_TOKEN
        overlap_chars = self.effective_overlap(settings) * CHARS_PER_TOKEN

        chunks: List[ChunkInfo] = []
        position = 0

        while position < length:
            target = position + min(window_chars, length - position)
            end = find_natural_break(content, position, target)

            chunk = self.make_chunk(document, len(chunks), position, end)
            if chunk is not None:
                chunks.append(chunk)

            if end >= length:
                break

            next_position = end - min(overlap_chars, end - position)
            position = next_position if next_position > position else end

        logger.debug("Fixed-size chunking produced %d chunks", len(chunks))
        return chunks
