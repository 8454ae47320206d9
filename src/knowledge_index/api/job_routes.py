"""
Job Routes

Read-only view of ingestion job statuses.
"""

from typing import Annotated, List

from fastapi import APIRouter, Depends, HTTPException, status

from .dependencies import get_ingestion_service
from .models import JobStatusResponse
from ..ingestion.service import IngestionService

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.get(
    "",
    response_model=List[JobStatusResponse],
    summary="List known ingestion jobs, oldest first",
)
async def list_jobs(
    service: Annotated[IngestionService, Depends(get_ingestion_service)],
) -> List[JobStatusResponse]:
    return [JobStatusResponse.from_status(s) for s in service.list_jobs()]


@router.get(
    "/{job_id}",
    response_model=JobStatusResponse,
    summary="Get the status of one ingestion job",
)
async def get_job(
    job_id: str,
    service: Annotated[IngestionService, Depends(get_ingestion_service)],
) -> JobStatusResponse:
    job_status = service.get_job_status(job_id)
    if job_status is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown job: {job_id}",
        )
    return JobStatusResponse.from_status(job_status)
