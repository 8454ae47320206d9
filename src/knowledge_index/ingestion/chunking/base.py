"""
Chunking strategy contract and shared helpers.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ...config import ChunkingSettings
from ..models import ChunkInfo, ParsedDocument
from .tokens import estimate_tokens


class ChunkingStrategy(ABC):
    name: str = ""

    @abstractmethod
    async def chunk(
        self,
        document: ParsedDocument,
        settings: ChunkingSettings,
    ) -> List[ChunkInfo]:
        """
        Split ``document.content`` into ordered chunks.

        Every returned chunk satisfies
        ``chunk.content == document.content[chunk.start_offset:chunk.end_offset]``.
        """

    @staticmethod
    def effective_overlap(settings: ChunkingSettings) -> int:
        # An overlap as large as the chunk would never advance.
        if settings.overlap >= settings.max_chunk_size:
            return settings.max_chunk_size // 4
        return settings.overlap

    def make_chunk(
        self,
        document: ParsedDocument,
        index: int,
        start: int,
        end: int,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Optional[ChunkInfo]:
        """
        Build a chunk for ``content[start:end]`` with surrounding whitespace
        trimmed from both the text and the offsets. Returns None for
        whitespace-only spans.
        """
        content = document.content
        while start < end and content[start].isspace():
            start += 1
        while end > start and content[end - 1].isspace():
            end -= 1
        if start >= end:
            return None

        text = content[start:end]
        metadata: Dict[str, Any] = dict(document.metadata)
        metadata["ChunkingStrategy"] = self.name
        metadata["ChunkIndex"] = str(index)
        if extra:
            metadata.update(extra)

        return ChunkInfo(
            content=text,
            index=index,
            token_count=estimate_tokens(text),
            start_offset=start,
            end_offset=end,
            metadata=metadata,
        )
