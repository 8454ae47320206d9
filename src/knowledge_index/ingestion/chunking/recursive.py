"""
Recursive chunking.

Uses ``RecursiveCharacterTextSplitter`` with the configured separator
hierarchy and the token estimate as its length function, then maps every
piece back onto the source text to recover offsets.
"""

from __future__ import annotations

import logging
from typing import List

from langchain_text_splitters import RecursiveCharacterTextSplitter

from ...config import ChunkingSettings
from ..models import ChunkInfo, ParsedDocument
from .base import ChunkingStrategy
from .tokens import estimate_tokens

logger = logging.getLogger("kb.chunking.recursive")

DEFAULT_SEPARATORS = ("\n\n", "\n", ". ", " ")


class RecursiveChunker(ChunkingStrategy):
    name = "Recursive"

    def splitter(self, settings: ChunkingSettings) -> RecursiveCharacterTextSplitter:
        separators = list(settings.recursive_separators or DEFAULT_SEPARATORS)
        if "" not in separators:
            separators.append("")

        return RecursiveCharacterTextSplitter(
            chunk_size=settings.max_chunk_size,
            chunk_overlap=self.effective_overlap(settings),
            length_function=estimate_tokens,
            separators=separators,
        )

    async def chunk(
        self,
        document: ParsedDocument,
        settings: ChunkingSettings,
    ) -> List[ChunkInfo]:
        content = document.content
        if not content or content.isspace():
            return []

        pieces = self.splitter(settings).split_text(content)
        length = len(content)

        chunks: List[ChunkInfo] = []
        search_from = 0

        for piece in pieces:
            # Overlapping pieces start before the previous end; clamp before searching.
            search_from = min(search_from, length)

            start = content.find(piece, search_from)
            if start == -1:
                start = search_from
            end = min(start + len(piece), length)

            chunk = self.make_chunk(document, len(chunks), start, end)
            if chunk is not None:
                chunks.append(chunk)

            search_from = start + 1

        logger.debug("Recursive chunking produced %d chunks", len(chunks))
        return chunks
