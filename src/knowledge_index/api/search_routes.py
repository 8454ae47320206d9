"""
Search Routes

Scoped semantic, keyword or hybrid search over indexed chunks. Mode, page
size, score floor and reranker default to the current search settings.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from .dependencies import get_search_engine
from .models import SearchRequest, SearchResponse
from ..core.errors import UnknownStrategyError
from ..search.hybrid import HybridSearchEngine
from ..search.models import SearchOptions

router = APIRouter(prefix="/search", tags=["search"])


@router.post(
    "",
    response_model=SearchResponse,
    summary="Search one scope",
    status_code=status.HTTP_200_OK,
)
async def search(
    req: SearchRequest,
    engine: Annotated[HybridSearchEngine, Depends(get_search_engine)],
) -> SearchResponse:
    """
    Parameters
    ----------
    req : SearchRequest
        Contains:
        - query: free-text query
        - scope_id: scope to search (required)
        - top_k, min_score, mode, reranker: optional overrides
        - path_prefix, filters: optional narrowing

    Returns
    -------
    SearchResponse
        Ranked hits plus the number of hits above ``min_score``.
    """
    options = SearchOptions(
        scope_id=req.scope_id,
        top_k=req.top_k,
        min_score=req.min_score,
        mode=req.mode,
        path_prefix=req.path_prefix,
        reranker=req.reranker,
        filters=dict(req.filters),
    )
    try:
        result = await engine.search(req.query, options)
    except UnknownStrategyError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return SearchResponse.from_result(result)
