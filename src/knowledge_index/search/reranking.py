"""
Rank Fusion and Reranking

Rerankers take the concatenated hits of one search (possibly containing the
same chunk once per retrieval source) and return a deduplicated list ordered
by their own score.

Available Rerankers
-------------------
``None``
    Keep each chunk once, with its best score.
``RRF``
    Reciprocal rank fusion. Each source contributes ``1 / (k + rank)`` per
    chunk (ranks start at 1); contributions of a chunk are summed across
    sources and scaled so the best hit scores 1.0. Ties are broken by the
    chunk's best rank in any source, then by chunk id. Input from a single
    source is returned unchanged.
``CrossEncoder``
    Asks a chat model for a 0-10 relevance score per (query, chunk) pair and
    uses ``score / 10``. A pair whose call fails keeps its pre-rerank score.
"""

from __future__ import annotations

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from collections import OrderedDict
from threading import RLock
from typing import Dict, List, Optional

from ..config import SearchSettings
from ..core.errors import UnknownStrategyError
from ..llm.client import LLMClient
from .models import SOURCE_KEY, SearchHit

logger = logging.getLogger("kb.search.rerank")


class Reranker(ABC):
    name: str = ""

    @abstractmethod
    async def rerank(
        self,
        query: str,
        hits: List[SearchHit],
        settings: SearchSettings,
    ) -> List[SearchHit]: ...


def dedupe_best(hits: List[SearchHit]) -> List[SearchHit]:
    """One hit per chunk id (the highest scoring one), best first."""
    best: Dict[str, SearchHit] = {}
    for hit in hits:
        current = best.get(hit.chunk_id)
        if current is None or hit.score > current.score:
            best[hit.chunk_id] = hit
    return sorted(best.values(), key=lambda h: h.score, reverse=True)


# ---------------------------------------------------------------------
# None
# ---------------------------------------------------------------------

class NoneReranker(Reranker):
    name = "None"

    async def rerank(self, query, hits, settings):
        return dedupe_best(hits)


# ---------------------------------------------------------------------
# Reciprocal Rank Fusion
# ---------------------------------------------------------------------

class RrfReranker(Reranker):
    name = "RRF"

    async def rerank(
        self,
        query: str,
        hits: List[SearchHit],
        settings: SearchSettings,
    ) -> List[SearchHit]:
        if not hits:
            return []

        by_source: "OrderedDict[str, List[SearchHit]]" = OrderedDict()
        for hit in hits:
            by_source.setdefault(str(hit.metadata.get(SOURCE_KEY, "unknown")), []).append(hit)

        if len(by_source) < 2:
            return hits

        k = settings.rrf_k
        totals: Dict[str, float] = {}
        contributions: Dict[str, Dict[str, float]] = {}
        source_scores: Dict[str, Dict[str, float]] = {}
        best_rank: Dict[str, int] = {}
        representative: Dict[str, SearchHit] = {}

        for source, source_hits in by_source.items():
            ranked = sorted(source_hits, key=lambda h: h.score, reverse=True)
            rank = 0
            for hit in ranked:
                if source in contributions.get(hit.chunk_id, {}):
                    # Already ranked in this source.
                    continue
                rank += 1
                contribution = 1.0 / (k + rank)

                totals[hit.chunk_id] = totals.get(hit.chunk_id, 0.0) + contribution
                contributions.setdefault(hit.chunk_id, {})[source] = contribution
                source_scores.setdefault(hit.chunk_id, {})[source] = hit.score
                best_rank[hit.chunk_id] = min(best_rank.get(hit.chunk_id, rank), rank)
                representative.setdefault(hit.chunk_id, hit)

        top = max(totals.values())
        ordered = sorted(totals, key=lambda cid: (-totals[cid], best_rank[cid], cid))

        fused: List[SearchHit] = []
        for chunk_id in ordered:
            sources = sorted(contributions[chunk_id])
            hit = representative[chunk_id]
            fused.append(
                hit.with_score(
                    totals[chunk_id] / top,
                    **{
                        SOURCE_KEY: sources[0] if len(sources) == 1 else "hybrid",
                        "sources": sources,
                        "rrf_score": totals[chunk_id],
                        "contributions": dict(contributions[chunk_id]),
                        "source_scores": dict(source_scores[chunk_id]),
                        "reranker": self.name,
                    },
                )
            )
        return fused


# ---------------------------------------------------------------------
# Cross-Encoder (LLM scored)
# ---------------------------------------------------------------------

SCORING_PROMPT = (
    "You are a relevance scoring system. Given a search query and a text passage, "
    "rate how relevant the passage is to the query on a scale from 0 to 10, where 0 "
    "means completely irrelevant and 10 means perfectly relevant. "
    "Respond with only the number."
)

_NUMBER = re.compile(r"-?\d+(?:\.\d+)?")


def parse_relevance(text: str) -> float:
    """
    Extract the first number from a model reply and clamp it to [0, 10].

    Raises
    ------
    ValueError
        If the reply contains no number.
    """
    match = _NUMBER.search(text or "")
    if match is None:
        raise ValueError(f"No score in model reply: {text!r}")
    return min(10.0, max(0.0, float(match.group())))


class CrossEncoderReranker(Reranker):
    name = "CrossEncoder"

    def __init__(self, client: LLMClient, max_passage_chars: int = 2000) -> None:
        self._client = client
        self._max_passage_chars = max_passage_chars

    async def score(self, query: str, content: str, model: Optional[str]) -> float:
        message = await self._client.chat(
            SCORING_PROMPT,
            [
                {
                    "role": "user",
                    "content": f"Query: {query}\n\nPassage: {content[: self._max_passage_chars]}\n\nScore:",
                }
            ],
            temperature=0.1,
            model=model,
            max_tokens=8,
        )
        return parse_relevance(message.get("content") or "") / 10.0

    async def rerank(
        self,
        query: str,
        hits: List[SearchHit],
        settings: SearchSettings,
    ) -> List[SearchHit]:
        unique = dedupe_best(hits)
        if not unique:
            return []

        semaphore = asyncio.Semaphore(settings.cross_encoder_concurrency)
        model = settings.cross_encoder_model

        async def _score(hit: SearchHit) -> SearchHit:
            async with semaphore:
                try:
                    score = await self.score(query, hit.content, model)
                except Exception as exc:
                    logger.warning(
                        "Cross-encoder scoring failed for chunk %s, keeping original score: %s",
                        hit.chunk_id,
                        exc,
                    )
                    return hit.with_score(
                        hit.score,
                        original_score=hit.score,
                        reranker=self.name,
                        cross_encoder_failed=True,
                    )
            return hit.with_score(
                score,
                original_score=hit.score,
                cross_encoder_score=score * 10.0,
                reranker=self.name,
            )

        scored = await asyncio.gather(*(_score(hit) for hit in unique))
        return sorted(scored, key=lambda h: h.score, reverse=True)


# ---------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------

class RerankerRegistry:
    """
    Name-keyed (case-insensitive) reranker lookup.
    """

    def __init__(self, llm_client: Optional[LLMClient] = None) -> None:
        self._lock = RLock()
        self._rerankers: Dict[str, Reranker] = {}
        self.register(NoneReranker())
        self.register(RrfReranker())
        if llm_client is not None:
            self.register(CrossEncoderReranker(llm_client))

    def register(self, reranker: Reranker) -> None:
        with self._lock:
            self._rerankers[reranker.name.lower()] = reranker

    def get(self, name: str) -> Reranker:
        with self._lock:
            reranker = self._rerankers.get(name.lower())
        if reranker is None:
            raise UnknownStrategyError(f"Unknown reranker: {name}")
        return reranker

    def names(self) -> List[str]:
        with self._lock:
            return sorted(r.name for r in self._rerankers.values())
