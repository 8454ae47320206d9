"""
Hybrid Search Engine

Runs vector and/or keyword retrieval and fuses the results.

Modes
-----
Semantic
    Vector retrieval only.
Keyword
    Full-text retrieval only.
Hybrid
    Both retrievals run concurrently. Hits are tagged with their source and
    concatenated (a chunk found by both appears twice) before fusion.

Whatever the mode, the configured reranker is applied, ``min_score`` is
re-applied to the fused scores, and the list is cut to ``top_k``. The result
reports the number of hits that passed ``min_score`` and the elapsed time.

The two hybrid branches must not share a storage session; the PostgreSQL
indexes open one session per call.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import List

from ..config import SettingsProvider
from ..core.logging import sanitize
from ..storage.models import SearchFilters
from .keyword import KeywordSearcher
from .models import SearchHit, SearchMode, SearchOptions, SearchResult
from .reranking import RerankerRegistry
from .vector import VectorSearcher

logger = logging.getLogger("kb.search")


class HybridSearchEngine:
    def __init__(
        self,
        vector: VectorSearcher,
        keyword: KeywordSearcher,
        settings_provider: SettingsProvider,
        rerankers: RerankerRegistry,
    ) -> None:
        self._vector = vector
        self._keyword = keyword
        self._settings = settings_provider
        self._rerankers = rerankers

    async def search(self, query: str, options: SearchOptions) -> SearchResult:
        """
        Search one scope.

        Parameters
        ----------
        query : str
            Free-text query.
        options : SearchOptions
            Scope (required), path prefix, filters, and overrides for
            ``top_k``, ``min_score``, mode and reranker.

        Returns
        -------
        SearchResult
            Hits sorted by fused score (descending), at most ``top_k``.

        Raises
        ------
        UnknownStrategyError
            If the requested reranker is not registered.
        """
        started = time.perf_counter()
        snapshot = self._settings.snapshot()

        mode = SearchMode(options.mode or snapshot.search.mode)
        top_k = options.top_k or snapshot.search.top_k
        min_score = snapshot.search.minimum_score if options.min_score is None else options.min_score
        reranker = self._rerankers.get(options.reranker or snapshot.search.reranker)

        if not query or not query.strip():
            return SearchResult(hits=[], total_count=0, duration_ms=0.0, mode=mode)

        filters = SearchFilters(
            scope_id=options.scope_id,
            path_prefix=options.path_prefix or None,
            document_id=options.filters.get("document_id") or None,
        )

        if mode == SearchMode.SEMANTIC:
            hits = await self._vector.search(
                query, filters, top_k, min_score, snapshot.embedding, snapshot.search
            )
        elif mode == SearchMode.KEYWORD:
            hits = await self._keyword.search(query, filters, top_k, min_score)
        else:
            vector_hits, keyword_hits = await asyncio.gather(
                self._vector.search(
                    query, filters, top_k, min_score, snapshot.embedding, snapshot.search
                ),
                self._keyword.search(query, filters, top_k, min_score),
            )
            hits = list(vector_hits) + list(keyword_hits)

        fused: List[SearchHit] = await reranker.rerank(query, hits, snapshot.search)

        passing = [h for h in fused if h.score >= min_score]
        passing.sort(key=lambda h: h.score, reverse=True)

        duration_ms = (time.perf_counter() - started) * 1000.0
        logger.info(
            "Search [%s/%s] '%s' in scope %s: %d hits in %.1fms",
            mode.value,
            reranker.name,
            sanitize(query, 80),
            sanitize(options.scope_id),
            len(passing),
            duration_ms,
        )

        return SearchResult(
            hits=passing[:top_k],
            total_count=len(passing),
            duration_ms=duration_ms,
            mode=mode,
        )
