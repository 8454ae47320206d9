"""
Storage Data Models

Storage-agnostic records exchanged between the core and its storage
collaborators. The SQLAlchemy tables in ``db.models`` map onto these; the
in-memory store keeps them as-is.

Ownership
---------
- One ``Document`` owns many ``Chunk`` rows.
- One ``Chunk`` owns zero or one ``VectorEntry``.
- Deleting a document cascades to its chunks and vector entries.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class DocumentStatus(str, Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    READY = "Ready"
    FAILED = "Failed"


@dataclass
class Document:
    """
    A registered document. Updated in place across re-ingestions.
    """

    id: str
    scope_id: str
    path: str
    file_name: str
    content_type: Optional[str] = None
    content_hash: str = ""
    size_bytes: int = 0
    status: DocumentStatus = DocumentStatus.PENDING
    error_message: Optional[str] = None
    chunk_count: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    last_indexed_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Chunk:
    """
    A bounded span of a document's text. ``scope_id`` is denormalized so
    searches can filter without joining documents.
    """

    id: str
    document_id: str
    scope_id: str
    content: str
    index: int
    token_count: int
    start_offset: int
    end_offset: int
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class VectorEntry:
    chunk_id: str
    document_id: str
    scope_id: str
    embedding: List[float]
    model_id: str


class SearchFilters(NamedTuple):
    """Filter surface shared by the vector and keyword indexes."""

    scope_id: str
    path_prefix: Optional[str] = None
    document_id: Optional[str] = None


class VectorCandidate(NamedTuple):
    """
    A vector index match. ``distance`` is the index's native cosine distance.
    """

    chunk_id: str
    document_id: str
    content: str
    distance: float
    metadata: Dict[str, Any]


class KeywordCandidate(NamedTuple):
    """
    A keyword index match. ``rank`` is the raw, unnormalized relevance.
    """

    chunk_id: str
    document_id: str
    content: str
    rank: float
    metadata: Dict[str, Any]


def normalize_path(path: str) -> str:
    """Logical document path: forward slashes, no leading slash."""
    return path.replace("\\", "/").strip().lstrip("/")


def content_key(scope_id: str, path: str) -> str:
    """Key of a document's original bytes in the content source."""
    return f"{scope_id}/{normalize_path(path)}"
