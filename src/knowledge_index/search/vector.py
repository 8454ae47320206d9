"""
Semantic (vector) retrieval.
"""

from __future__ import annotations

import logging
from typing import Callable, List

from ..config import EmbeddingSettings, SearchSettings
from ..embeddings.base import EmbeddingProvider
from ..embeddings.registry import get_provider
from ..storage.base import VectorIndex
from ..storage.models import SearchFilters
from .models import SOURCE_KEY, VECTOR_SOURCE, SearchHit

logger = logging.getLogger("kb.search.vector")


class VectorSearcher:
    def __init__(
        self,
        index: VectorIndex,
        provider_resolver: Callable[[EmbeddingSettings], EmbeddingProvider] = get_provider,
    ) -> None:
        self._index = index
        self._resolve_provider = provider_resolver

    async def search(
        self,
        query: str,
        filters: SearchFilters,
        top_k: int,
        min_score: float,
        embedding: EmbeddingSettings,
        search: SearchSettings,
    ) -> List[SearchHit]:
        """
        Embed the query and return hits with similarity ``1 - cosine distance``
        clamped to [0, 1], at or above ``min_score``, best first.

        The index is asked for ``top_k * vector_overfetch`` candidates so that
        fusion downstream has more than the final page to work with.
        """
        provider = self._resolve_provider(embedding)
        query_vector = await provider.embed(query)

        candidates = await self._index.search(
            query_vector,
            top_k * search.vector_overfetch,
            filters,
        )

        hits: List[SearchHit] = []
        for candidate in candidates:
            similarity = min(1.0, max(0.0, 1.0 - candidate.distance))
            if similarity < min_score:
                continue
            hits.append(
                SearchHit(
                    chunk_id=candidate.chunk_id,
                    document_id=candidate.document_id,
                    content=candidate.content,
                    score=similarity,
                    metadata={**candidate.metadata, SOURCE_KEY: VECTOR_SOURCE},
                )
            )

        hits.sort(key=lambda h: h.score, reverse=True)
        logger.debug("Vector search: %d candidates, %d hits", len(candidates), len(hits))
        return hits
