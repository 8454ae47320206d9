"""
API Models

Pydantic request/response models for the document, job, reindex and search
endpoints. Core dataclasses are converted here so the core never depends on
the HTTP layer.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..ingestion.models import (
    IngestionJobStatus,
    ReindexCheck,
    ReindexResult,
)
from ..search.models import SearchHit, SearchMode, SearchResult
from ..storage.models import Document


# ---------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------

class UploadAccepted(BaseModel):
    document_id: str
    job_id: str
    status: str = "Queued"


class DocumentResponse(BaseModel):
    id: str
    scope_id: str
    path: str
    file_name: str
    content_type: Optional[str] = None
    content_hash: str
    size_bytes: int
    status: str
    error_message: Optional[str] = None
    chunk_count: int
    created_at: datetime
    updated_at: datetime
    last_indexed_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_document(cls, document: Document) -> "DocumentResponse":
        return cls(
            id=document.id,
            scope_id=document.scope_id,
            path=document.path,
            file_name=document.file_name,
            content_type=document.content_type,
            content_hash=document.content_hash,
            size_bytes=document.size_bytes,
            status=document.status.value,
            error_message=document.error_message,
            chunk_count=document.chunk_count,
            created_at=document.created_at,
            updated_at=document.updated_at,
            last_indexed_at=document.last_indexed_at,
            metadata=dict(document.metadata),
        )


class OperationResult(BaseModel):
    status: str
    details: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------

class JobStatusResponse(BaseModel):
    job_id: str
    document_id: str
    state: str
    current_phase: Optional[str] = None
    percent_complete: float
    error_message: Optional[str] = None
    batch_id: Optional[str] = None
    queued_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_status(cls, status: IngestionJobStatus) -> "JobStatusResponse":
        return cls(
            job_id=status.job_id,
            document_id=status.document_id,
            state=status.state.value,
            current_phase=status.current_phase.value if status.current_phase else None,
            percent_complete=status.percent_complete,
            error_message=status.error_message,
            batch_id=status.batch_id,
            queued_at=status.queued_at,
            started_at=status.started_at,
            completed_at=status.completed_at,
        )


# ---------------------------------------------------------------------
# Reindex
# ---------------------------------------------------------------------

class ReindexRequest(BaseModel):
    scope_id: Optional[str] = None
    document_ids: Optional[List[str]] = None
    force: bool = False
    detect_settings_changes: bool = True
    strategy: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class ReindexDocumentResponse(BaseModel):
    document_id: str
    file_name: str
    action: str
    reason: str
    job_id: Optional[str] = None
    error_message: Optional[str] = None


class ReindexResponse(BaseModel):
    batch_id: str
    total_documents: int
    enqueued_count: int
    skipped_count: int
    failed_count: int
    reason_counts: Dict[str, int]
    documents: List[ReindexDocumentResponse]

    @classmethod
    def from_result(cls, result: ReindexResult) -> "ReindexResponse":
        return cls(
            batch_id=result.batch_id,
            total_documents=result.total_documents,
            enqueued_count=result.enqueued_count,
            skipped_count=result.skipped_count,
            failed_count=result.failed_count,
            reason_counts={reason.value: n for reason, n in result.reason_counts.items()},
            documents=[
                ReindexDocumentResponse(
                    document_id=d.document_id,
                    file_name=d.file_name,
                    action=d.action.value,
                    reason=d.reason.value,
                    job_id=d.job_id,
                    error_message=d.error_message,
                )
                for d in result.documents
            ],
        )


class ReindexCheckResponse(BaseModel):
    document_id: str
    needs_reindex: bool
    reason: str
    current_hash: Optional[str] = None
    stored_hash: Optional[str] = None
    current_chunking_strategy: Optional[str] = None
    stored_chunking_strategy: Optional[str] = None
    current_embedding_model: Optional[str] = None
    stored_embedding_model: Optional[str] = None

    @classmethod
    def from_check(cls, check: ReindexCheck) -> "ReindexCheckResponse":
        return cls(
            document_id=check.document_id,
            needs_reindex=check.needs_reindex,
            reason=check.reason.value,
            current_hash=check.current_hash,
            stored_hash=check.stored_hash,
            current_chunking_strategy=check.current_chunking_strategy,
            stored_chunking_strategy=check.stored_chunking_strategy,
            current_embedding_model=check.current_embedding_model,
            stored_embedding_model=check.stored_embedding_model,
        )


# ---------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------

class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1)
    scope_id: str = Field(..., min_length=1)
    top_k: Optional[int] = Field(default=None, ge=1, le=200)
    min_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    mode: Optional[SearchMode] = None
    path_prefix: Optional[str] = None
    reranker: Optional[str] = None
    filters: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")


class SearchHitResponse(BaseModel):
    chunk_id: str
    document_id: str
    content: str
    score: float
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_hit(cls, hit: SearchHit) -> "SearchHitResponse":
        return cls(
            chunk_id=hit.chunk_id,
            document_id=hit.document_id,
            content=hit.content,
            score=hit.score,
            metadata=dict(hit.metadata),
        )


class SearchResponse(BaseModel):
    hits: List[SearchHitResponse]
    total_count: int
    duration_ms: float
    mode: SearchMode

    @classmethod
    def from_result(cls, result: SearchResult) -> "SearchResponse":
        return cls(
            hits=[SearchHitResponse.from_hit(h) for h in result.hits],
            total_count=result.total_count,
            duration_ms=result.duration_ms,
            mode=result.mode,
        )
