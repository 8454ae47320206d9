"""
Search request and result models.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional


class SearchMode(str, Enum):
    SEMANTIC = "Semantic"
    KEYWORD = "Keyword"
    HYBRID = "Hybrid"


SOURCE_KEY = "source"
VECTOR_SOURCE = "vector"
KEYWORD_SOURCE = "keyword"


@dataclass(frozen=True)
class SearchOptions:
    """
    Unset fields fall back to the ``SearchSettings`` snapshot of the request.

    ``filters`` supports ``document_id``.
    """

    scope_id: str
    top_k: Optional[int] = None
    min_score: Optional[float] = None
    mode: Optional[SearchMode] = None
    path_prefix: Optional[str] = None
    reranker: Optional[str] = None
    filters: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class SearchHit:
    chunk_id: str
    document_id: str
    content: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)

    def with_score(self, score: float, **metadata: Any) -> "SearchHit":
        return replace(self, score=score, metadata={**self.metadata, **metadata})


@dataclass
class SearchResult:
    hits: List[SearchHit]
    total_count: int
    duration_ms: float
    mode: SearchMode = SearchMode.HYBRID
