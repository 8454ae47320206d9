"""
Ingestion Data Models

Records passed between parsers, chunkers, the pipeline, the job queue and the
reindex service.

Job Lifecycle
-------------
Queued -> Processing -> Completed | Failed | Cancelled

Exactly one terminal state is ever recorded per job id.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from ..storage.models import new_id, utcnow


# ---------------------------------------------------------------------
# Parsing and Chunking
# ---------------------------------------------------------------------

@dataclass
class ParsedDocument:
    """
    Parser output. Recoverable problems surface as ``warnings`` with
    empty ``content`` instead of an exception.
    """

    content: str
    metadata: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ChunkInfo:
    """
    One chunk produced by a chunking strategy. Offsets index into the parsed
    text; ``end_offset`` is exclusive.
    """

    content: str
    index: int
    token_count: int
    start_offset: int
    end_offset: int
    metadata: Dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------

class IngestionPhase(str, Enum):
    PARSING = "Parsing"
    CHUNKING = "Chunking"
    EMBEDDING = "Embedding"
    STORING = "Storing"
    COMPLETE = "Complete"


class IngestionJobState(str, Enum):
    QUEUED = "Queued"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            IngestionJobState.COMPLETED,
            IngestionJobState.FAILED,
            IngestionJobState.CANCELLED,
        )


class EnqueueOutcome(str, Enum):
    ACCEPTED = "Accepted"
    QUEUE_FULL = "QueueFull"


@dataclass(frozen=True)
class IngestionOptions:
    """
    Per-job options captured at enqueue time.

    ``chunking_strategy`` overrides the configured strategy for this job only.
    """

    scope_id: str
    file_name: Optional[str] = None
    content_type: Optional[str] = None
    chunking_strategy: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class IngestionJob:
    document_id: str
    path: str
    options: IngestionOptions
    batch_id: Optional[str] = None
    job_id: str = field(default_factory=new_id)


@dataclass
class IngestionJobStatus:
    job_id: str
    document_id: str
    state: IngestionJobState = IngestionJobState.QUEUED
    current_phase: Optional[IngestionPhase] = None
    percent_complete: float = 0.0
    error_message: Optional[str] = None
    batch_id: Optional[str] = None
    queued_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


@dataclass
class IngestionResult:
    document_id: str
    success: bool
    chunk_count: int = 0
    duration_seconds: float = 0.0
    error_message: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ProgressUpdate:
    """Snapshot pushed to the progress observer."""

    job_id: str
    document_id: str
    state: IngestionJobState
    current_phase: Optional[IngestionPhase]
    percent_complete: float
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


# ---------------------------------------------------------------------
# Reindexing
# ---------------------------------------------------------------------

class ReindexReason(str, Enum):
    UNCHANGED = "Unchanged"
    CONTENT_CHANGED = "ContentChanged"
    CHUNKING_SETTINGS_CHANGED = "ChunkingSettingsChanged"
    EMBEDDING_SETTINGS_CHANGED = "EmbeddingSettingsChanged"
    FORCED = "Forced"
    FILE_NOT_FOUND = "FileNotFound"
    NEVER_INDEXED = "NeverIndexed"
    ERROR = "Error"


class ReindexAction(str, Enum):
    ENQUEUED = "Enqueued"
    SKIPPED = "Skipped"
    FAILED = "Failed"


@dataclass(frozen=True)
class ReindexOptions:
    """
    ``scope_id`` and ``document_ids`` both narrow the selection when given;
    neither means the whole corpus.
    """

    scope_id: Optional[str] = None
    document_ids: Optional[List[str]] = None
    force: bool = False
    detect_settings_changes: bool = True
    strategy: Optional[str] = None


@dataclass(frozen=True)
class ReindexCheck:
    document_id: str
    needs_reindex: bool
    reason: ReindexReason
    current_hash: Optional[str] = None
    stored_hash: Optional[str] = None
    current_chunking_strategy: Optional[str] = None
    stored_chunking_strategy: Optional[str] = None
    current_embedding_model: Optional[str] = None
    stored_embedding_model: Optional[str] = None


@dataclass(frozen=True)
class ReindexDocumentResult:
    document_id: str
    file_name: str
    action: ReindexAction
    reason: ReindexReason
    job_id: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class ReindexResult:
    batch_id: str
    total_documents: int = 0
    enqueued_count: int = 0
    skipped_count: int = 0
    failed_count: int = 0
    reason_counts: Dict[ReindexReason, int] = field(default_factory=dict)
    documents: List[ReindexDocumentResult] = field(default_factory=list)
