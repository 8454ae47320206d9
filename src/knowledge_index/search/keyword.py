"""
Keyword (full-text) retrieval.
"""

from __future__ import annotations

import logging
from typing import List, Sequence

from ..storage.base import KeywordIndex
from ..storage.models import KeywordCandidate, SearchFilters
from .models import KEYWORD_SOURCE, SOURCE_KEY, SearchHit

logger = logging.getLogger("kb.search.keyword")


def normalize_ranks(ranks: Sequence[float]) -> List[float]:
    """
    Min-max scale raw ranks into [0, 1]. When every rank is the same there is
    no range to scale by, and every rank maps to 1.0.
    """
    if not ranks:
        return []

    low, high = min(ranks), max(ranks)
    if high - low <= 0:
        return [1.0] * len(ranks)
    return [(r - low) / (high - low) for r in ranks]


class KeywordSearcher:
    def __init__(self, index: KeywordIndex) -> None:
        self._index = index

    async def search(
        self,
        query: str,
        filters: SearchFilters,
        top_k: int,
        min_score: float,
    ) -> List[SearchHit]:
        candidates: List[KeywordCandidate] = await self._index.search(query, top_k, filters)
        scores = normalize_ranks([c.rank for c in candidates])

        hits: List[SearchHit] = []
        for candidate, score in zip(candidates, scores):
            if score < min_score:
                continue
            hits.append(
                SearchHit(
                    chunk_id=candidate.chunk_id,
                    document_id=candidate.document_id,
                    content=candidate.content,
                    score=score,
                    metadata={
                        **candidate.metadata,
                        SOURCE_KEY: KEYWORD_SOURCE,
                        "keyword_rank": candidate.rank,
                    },
                )
            )

        hits.sort(key=lambda h: h.score, reverse=True)
        logger.debug("Keyword search: %d candidates, %d hits", len(candidates), len(hits))
        return hits
