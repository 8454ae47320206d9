"""
Reindex Routes
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from .dependencies import get_ingestion_service
from .models import ReindexRequest, ReindexResponse
from ..ingestion.models import ReindexOptions
from ..ingestion.service import IngestionService

router = APIRouter(prefix="/reindex", tags=["reindex"])


@router.post(
    "",
    response_model=ReindexResponse,
    summary="Re-evaluate documents and re-enqueue the ones that changed",
)
async def reindex(
    req: ReindexRequest,
    service: Annotated[IngestionService, Depends(get_ingestion_service)],
) -> ReindexResponse:
    """
    Selection: documents matching both ``scope_id`` and ``document_ids``
    when given, else every document. ``force`` re-enqueues without comparing anything.
    """
    result = await service.reindex(
        ReindexOptions(
            scope_id=req.scope_id,
            document_ids=req.document_ids,
            force=req.force,
            detect_settings_changes=req.detect_settings_changes,
            strategy=req.strategy,
        )
    )
    return ReindexResponse.from_result(result)
