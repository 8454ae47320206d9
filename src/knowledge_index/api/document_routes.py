"""
Document Routes

Upload, list, delete and cancel endpoints. Uploads are accepted with 202 and
processed in the background; clients poll ``GET /jobs/{job_id}``.
"""

import json
from typing import Annotated, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile, status

from .dependencies import get_ingestion_service
from .models import (
    DocumentResponse,
    OperationResult,
    ReindexCheckResponse,
    UploadAccepted,
)
from ..core.errors import InvalidUploadError, QueueFullError
from ..ingestion.models import EnqueueOutcome
from ..ingestion.service import IngestionService

router = APIRouter(prefix="/documents", tags=["documents"])


def _parse_metadata(raw: Optional[str]) -> Dict[str, str]:
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise InvalidUploadError("metadata must be a JSON object") from exc
    if not isinstance(data, dict):
        raise InvalidUploadError("metadata must be a JSON object")
    return {str(k): str(v) for k, v in data.items()}


@router.post(
    "",
    response_model=UploadAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Upload a document for ingestion",
)
async def upload_document(
    service: Annotated[IngestionService, Depends(get_ingestion_service)],
    file: UploadFile = File(...),
    scope_id: str = Form(...),
    path: Optional[str] = Form(default=None),
    chunking_strategy: Optional[str] = Form(default=None),
    metadata: Optional[str] = Form(default=None),
) -> UploadAccepted:
    """
    Store the upload and enqueue it.

    Returns 503 with ``Retry-After`` when the ingestion queue is full.
    """
    content = await file.read()
    result = await service.submit(
        content,
        file_name=file.filename or path or "",
        scope_id=scope_id,
        path=path,
        content_type=file.content_type,
        chunking_strategy=chunking_strategy,
        metadata=_parse_metadata(metadata),
    )

    if result.outcome == EnqueueOutcome.QUEUE_FULL:
        raise QueueFullError(result.document_id)

    return UploadAccepted(document_id=result.document_id, job_id=result.job_id)


@router.get(
    "",
    response_model=List[DocumentResponse],
    summary="List documents",
)
async def list_documents(
    service: Annotated[IngestionService, Depends(get_ingestion_service)],
    scope_id: Optional[str] = None,
    path_prefix: Optional[str] = None,
) -> List[DocumentResponse]:
    documents = await service.list_documents(scope_id=scope_id, path_prefix=path_prefix)
    return [DocumentResponse.from_document(d) for d in documents]


@router.get(
    "/{document_id}",
    response_model=DocumentResponse,
    summary="Get one document",
)
async def get_document(
    document_id: str,
    service: Annotated[IngestionService, Depends(get_ingestion_service)],
) -> DocumentResponse:
    return DocumentResponse.from_document(await service.get_document(document_id))


@router.delete(
    "/{document_id}",
    response_model=OperationResult,
    summary="Delete a document with its chunks, vectors and stored bytes",
)
async def delete_document(
    document_id: str,
    service: Annotated[IngestionService, Depends(get_ingestion_service)],
) -> OperationResult:
    await service.delete_document(document_id)
    return OperationResult(status="deleted", details={"document_id": document_id})


@router.post(
    "/{document_id}/cancel",
    response_model=OperationResult,
    summary="Cancel the document's queued or running job",
)
async def cancel_document_job(
    document_id: str,
    service: Annotated[IngestionService, Depends(get_ingestion_service)],
) -> OperationResult:
    cancelled = await service.cancel(document_id)
    return OperationResult(
        status="cancelled" if cancelled else "not_running",
        details={"document_id": document_id},
    )


@router.get(
    "/{document_id}/reindex-check",
    response_model=ReindexCheckResponse,
    summary="Report whether a document needs reindexing",
)
async def reindex_check(
    document_id: str,
    service: Annotated[IngestionService, Depends(get_ingestion_service)],
) -> ReindexCheckResponse:
    return ReindexCheckResponse.from_check(await service.check_document(document_id))
