"""
Storage Collaborator Contracts

Abstract base classes for everything the ingestion and search core persists
to or reads from. Concrete implementations:

- ``db.document_store.PostgresDocumentStore`` / ``db.vector_store.PgVectorIndex``
  / ``db.keyword_index.PgKeywordIndex`` (PostgreSQL + pgvector + FTS)
- ``storage.memory.InMemoryKnowledgeStore`` (all three in process memory)
- ``storage.files.LocalContentSource`` (original file bytes on local disk)

All query and mutation methods are async so network-backed stores never block
the event loop.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import BinaryIO, List, Optional, Sequence

from .models import (
    Chunk,
    Document,
    KeywordCandidate,
    SearchFilters,
    VectorCandidate,
    VectorEntry,
)


class ContentSource(ABC):
    """
    Authoritative source of a document's original bytes, keyed by logical path.

    The returned stream may be non-seekable; callers buffer it when they need
    to read it twice.
    """

    @abstractmethod
    async def open(self, path: str) -> BinaryIO:
        """
        Raises
        ------
        ContentNotFoundError
            If nothing is stored under ``path``.
        """

    @abstractmethod
    async def exists(self, path: str) -> bool: ...

    @abstractmethod
    async def write(self, path: str, content: bytes) -> int:
        """Store ``content`` under ``path`` and return the byte count."""

    @abstractmethod
    async def delete(self, path: str) -> bool: ...


class DocumentStore(ABC):
    """
    Document metadata rows and their chunk rows.
    """

    @abstractmethod
    async def get(self, document_id: str) -> Optional[Document]: ...

    @abstractmethod
    async def find_by_path(self, scope_id: str, path: str) -> Optional[Document]: ...

    @abstractmethod
    async def insert(self, document: Document) -> None: ...

    @abstractmethod
    async def update(self, document: Document) -> None:
        """
        Raises
        ------
        DocumentNotFoundError
            If no row with ``document.id`` exists.
        """

    @abstractmethod
    async def delete(self, document_id: str) -> bool:
        """Delete a document, cascading to its chunks and vector entries."""

    @abstractmethod
    async def list(
        self,
        scope_id: Optional[str] = None,
        path_prefix: Optional[str] = None,
        document_ids: Optional[Sequence[str]] = None,
    ) -> List[Document]: ...

    @abstractmethod
    async def replace_chunks(self, document_id: str, chunks: Sequence[Chunk]) -> int:
        """
        Replace every chunk of ``document_id`` with ``chunks``.

        Vector entries of removed chunks go with them.
        """

    @abstractmethod
    async def delete_chunks(self, document_id: str) -> int: ...

    @abstractmethod
    async def count_chunks(self, document_id: str) -> int: ...


class VectorIndex(ABC):
    """
    Similarity search over chunk embeddings.
    """

    @abstractmethod
    async def upsert(self, entries: Sequence[VectorEntry]) -> int: ...

    @abstractmethod
    async def search(
        self,
        query_vector: Sequence[float],
        top_k: int,
        filters: SearchFilters,
    ) -> List[VectorCandidate]:
        """Return candidates ordered by ascending cosine distance."""

    @abstractmethod
    async def delete_by_document(self, document_id: str) -> int: ...


class KeywordIndex(ABC):
    """
    Lexical (full-text) search over chunk content.
    """

    @abstractmethod
    async def search(
        self,
        query: str,
        top_k: int,
        filters: SearchFilters,
    ) -> List[KeywordCandidate]:
        """Return candidates ordered by descending raw rank."""

    @abstractmethod
    async def delete_by_document(self, document_id: str) -> int: ...
