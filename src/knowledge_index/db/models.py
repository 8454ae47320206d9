"""
SQLAlchemy Models

Defines the database schema for:
- Documents (metadata, status, indexing provenance)
- Chunks (text spans, with a generated tsvector column for full-text search)
- Chunk vectors (pgvector embeddings, one per chunk)

Deleting a document cascades to its chunks, and deleting a chunk cascades to
its vector.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Column,
    Computed,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    BigInteger,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB, TSVECTOR, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from pgvector.sqlalchemy import Vector

from ..config import settings


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# ---------------------------------------------------------------------
# Document Model
# ---------------------------------------------------------------------

class DocumentRow(Base):
    """
    One registered document per (scope, path).
    """
    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True)
    scope_id: Mapped[str] = mapped_column(String(128), nullable=False)
    path: Mapped[str] = mapped_column(Text, nullable=False)
    file_name: Mapped[str] = mapped_column(Text, nullable=False)
    content_type: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(16), nullable=False)  # Pending | Processing | Ready | Failed
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    chunk_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_indexed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    metadata_: Mapped[Optional[dict]] = mapped_column(
        "metadata",
        JSONB,
        nullable=True,
    )

    __table_args__ = (
        UniqueConstraint("scope_id", "path", name="uq_document_scope_path"),
        Index("idx_document_scope", "scope_id"),
    )


# ---------------------------------------------------------------------
# Chunk Model
# ---------------------------------------------------------------------

class ChunkRow(Base):
    """
    A text span of a document. ``scope_id`` is denormalized from the document.
    """
    __tablename__ = "chunks"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True)
    document_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    scope_id: Mapped[str] = mapped_column(String(128), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    token_count: Mapped[int] = mapped_column(Integer, nullable=False)
    start_offset: Mapped[int] = mapped_column(Integer, nullable=False)
    end_offset: Mapped[int] = mapped_column(Integer, nullable=False)
    metadata_: Mapped[Optional[dict]] = mapped_column(
        "metadata",
        JSONB,
        nullable=True,
    )

    search_vector = Column(
        TSVECTOR,
        Computed("to_tsvector('english', content)", persisted=True),
    )

    __table_args__ = (
        Index("idx_chunk_document", "document_id", "chunk_index"),
        Index("idx_chunk_scope", "scope_id"),
        Index("idx_chunk_search", "search_vector", postgresql_using="gin"),
    )


# ---------------------------------------------------------------------
# Chunk Vector Model
# ---------------------------------------------------------------------

class ChunkVectorRow(Base):
    """
    The embedding of one chunk, tagged with the model that produced it.
    """
    __tablename__ = "chunk_vectors"

    chunk_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("chunks.id", ondelete="CASCADE"),
        primary_key=True,
    )
    document_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    scope_id: Mapped[str] = mapped_column(String(128), nullable=False)
    model_id: Mapped[str] = mapped_column(String(255), nullable=False)

    # Dimensionality is fixed by the configured embedding model.
    embedding = Column(Vector(settings.embedding.dimensions), nullable=False)

    __table_args__ = (
        Index("idx_vector_document", "document_id"),
        Index("idx_vector_scope", "scope_id"),
    )
