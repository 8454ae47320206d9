"""
Semantic chunking.

Sentences are embedded and compared pairwise; a new chunk starts where the
cosine similarity between neighbours drops below ``semantic_threshold``.
Boundaries are subject to the size bounds:

- a chunk never exceeds ``max_chunk_size`` tokens (oversized sentences are
  cut into hard windows first)
- a similarity drop does not close a chunk smaller than ``min_chunk_size``
- a small trailing chunk is folded into its predecessor when the result fits
"""

from __future__ import annotations

import logging
import re
from typing import List, Sequence, Tuple

import numpy as np

from ...config import ChunkingSettings
from ...embeddings.base import EmbeddingProvider
from ..models import ChunkInfo, ParsedDocument
from .base import ChunkingStrategy
from .tokens import CHARS_PER_TOKEN, estimate_tokens

logger = logging.getLogger("kb.chunking.semantic")

_SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+|\n\s*\n")

Span = Tuple[int, int]


def sentence_spans(content: str, max_chars: int) -> List[Span]:
    """
    Offsets of sentence-level units in ``content``. Units longer than
    ``max_chars`` are cut into consecutive windows.
    """
    spans: List[Span] = []
    start = 0

    def _add(s: int, e: int) -> None:
        if not content[s:e].strip():
            return
        while e - s > max_chars:
            spans.append((s, s + max_chars))
            s += max_chars
        if content[s:e].strip():
            spans.append((s, e))

    for match in _SENTENCE_BREAK.finditer(content):
        _add(start, match.start())
        start = match.end()
    _add(start, len(content))
    return spans


def cosine_similarities(vectors: Sequence[Sequence[float]]) -> List[float]:
    """Cosine similarity of each vector with its successor."""
    if len(vectors) < 2:
        return []

    matrix = np.asarray(vectors, dtype="float32")
    norms = np.linalg.norm(matrix, axis=1)
    dots = np.sum(matrix[:-1] * matrix[1:], axis=1)
    denom = norms[:-1] * norms[1:]

    with np.errstate(divide="ignore", invalid="ignore"):
        sims = np.where(denom > 0, dots / denom, 0.0)
    return [float(s) for s in sims]


class SemanticChunker(ChunkingStrategy):
    name = "Semantic"

    def __init__(self, embedding_provider: EmbeddingProvider) -> None:
        self._provider = embedding_provider

    async def chunk(
        self,
        document: ParsedDocument,
        settings: ChunkingSettings,
    ) -> List[ChunkInfo]:
        content = document.content
        if not content or content.isspace():
            return []

        max_tokens = settings.max_chunk_size
        spans = sentence_spans(content, max_tokens * CHARS_PER_TOKEN)
        if not spans:
            return []

        if len(spans) == 1:
            chunk = self.make_chunk(document, 0, spans[0][0], spans[0][1])
            return [chunk] if chunk else []

        vectors = await self._provider.embed_batch([content[s:e] for s, e in spans])
        similarities = cosine_similarities(vectors)

        groups = self._group(content, spans, similarities, settings)

        chunks: List[ChunkInfo] = []
        for start, end in groups:
            chunk = self.make_chunk(document, len(chunks), start, end)
            if chunk is not None:
                chunks.append(chunk)

        logger.debug(
            "Semantic chunking: %d sentences -> %d chunks", len(spans), len(chunks)
        )
        return chunks

    @staticmethod
    def _group(
        content: str,
        spans: List[Span],
        similarities: List[float],
        settings: ChunkingSettings,
    ) -> List[Span]:
        def tokens(s: int, e: int) -> int:
            return estimate_tokens(content[s:e])

        groups: List[Span] = []
        group_start, group_end = spans[0]

        for i in range(1, len(spans)):
            start, end = spans[i]
            too_big = tokens(group_start, end) > settings.max_chunk_size
            topic_shift = similarities[i - 1] < settings.semantic_threshold
            big_enough = tokens(group_start, group_end) >= settings.min_chunk_size

            if too_big or (topic_shift and big_enough):
                groups.append((group_start, group_end))
                group_start = start
            group_end = end

        last = (group_start, group_end)
        if (
            groups
            and tokens(*last) < settings.min_chunk_size
            and tokens(groups[-1][0], last[1]) <= settings.max_chunk_size
        ):
            groups[-1] = (groups[-1][0], last[1])
        else:
            groups.append(last)

        return groups
