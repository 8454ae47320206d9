"""
In-Memory Knowledge Store

Process-local implementation of the document store, the vector index and the
keyword index over one shared set of tables. Used for development
(``STORAGE_BACKEND=memory``) and throughout the test suite.

All three views share a single ``RLock``; records handed out are copies, so
callers can never mutate stored state by accident.
"""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import replace
from threading import RLock
from typing import Dict, List, Optional, Sequence

import numpy as np

from ..core.errors import DocumentNotFoundError, StorageError
from .base import DocumentStore, KeywordIndex, VectorIndex
from .models import (
    Chunk,
    Document,
    KeywordCandidate,
    SearchFilters,
    VectorCandidate,
    VectorEntry,
    utcnow,
)

_WORD = re.compile(r"\w+", re.UNICODE)


def _terms(text: str) -> List[str]:
    return [t.lower() for t in _WORD.findall(text)]


class InMemoryKnowledgeStore:
    """
    Owner of the shared tables. Use ``documents``, ``vectors`` and
    ``keywords`` as the three collaborator views.
    """

    def __init__(self) -> None:
        self.lock = RLock()
        self.document_rows: Dict[str, Document] = {}
        self.chunk_rows: Dict[str, Chunk] = {}
        self.vector_rows: Dict[str, VectorEntry] = {}

        self.documents = InMemoryDocumentStore(self)
        self.vectors = InMemoryVectorIndex(self)
        self.keywords = InMemoryKeywordIndex(self)

    # -----------------------------------------------------------------
    # Shared helpers (caller holds the lock)
    # -----------------------------------------------------------------

    def chunk_ids_for(self, document_id: str) -> List[str]:
        return [cid for cid, c in self.chunk_rows.items() if c.document_id == document_id]

    def drop_chunks(self, document_id: str) -> int:
        ids = self.chunk_ids_for(document_id)
        for cid in ids:
            self.chunk_rows.pop(cid, None)
            self.vector_rows.pop(cid, None)
        return len(ids)

    def matches(self, chunk: Chunk, filters: SearchFilters) -> bool:
        if chunk.scope_id != filters.scope_id:
            return False
        if filters.document_id and chunk.document_id != filters.document_id:
            return False
        if filters.path_prefix:
            doc = self.document_rows.get(chunk.document_id)
            if doc is None or not doc.path.startswith(filters.path_prefix):
                return False
        return True

    def hit_metadata(self, chunk: Chunk) -> Dict[str, object]:
        doc = self.document_rows.get(chunk.document_id)
        metadata: Dict[str, object] = dict(chunk.metadata)
        metadata["chunk_index"] = chunk.index
        if doc is not None:
            metadata["file_name"] = doc.file_name
            metadata["path"] = doc.path
        return metadata


def _copy(document: Document) -> Document:
    return replace(document, metadata=dict(document.metadata))


class InMemoryDocumentStore(DocumentStore):
    def __init__(self, store: InMemoryKnowledgeStore) -> None:
        self._store = store

    async def get(self, document_id: str) -> Optional[Document]:
        with self._store.lock:
            doc = self._store.document_rows.get(document_id)
            return _copy(doc) if doc else None

    async def find_by_path(self, scope_id: str, path: str) -> Optional[Document]:
        with self._store.lock:
            for doc in self._store.document_rows.values():
                if doc.scope_id == scope_id and doc.path == path:
                    return _copy(doc)
        return None

    async def insert(self, document: Document) -> None:
        with self._store.lock:
            if document.id in self._store.document_rows:
                raise StorageError(f"Duplicate document id: {document.id}")
            self._store.document_rows[document.id] = _copy(document)

    async def update(self, document: Document) -> None:
        with self._store.lock:
            if document.id not in self._store.document_rows:
                raise DocumentNotFoundError(document.id)
            document.updated_at = utcnow()
            self._store.document_rows[document.id] = _copy(document)

    async def delete(self, document_id: str) -> bool:
        with self._store.lock:
            if self._store.document_rows.pop(document_id, None) is None:
                return False
            self._store.drop_chunks(document_id)
            return True

    async def list(
        self,
        scope_id: Optional[str] = None,
        path_prefix: Optional[str] = None,
        document_ids: Optional[Sequence[str]] = None,
    ) -> List[Document]:
        wanted = set(document_ids) if document_ids is not None else None
        with self._store.lock:
            docs = [
                _copy(doc)
                for doc in self._store.document_rows.values()
                if (scope_id is None or doc.scope_id == scope_id)
                and (not path_prefix or doc.path.startswith(path_prefix))
                and (wanted is None or doc.id in wanted)
            ]
        docs.sort(key=lambda d: d.created_at)
        return docs

    async def replace_chunks(self, document_id: str, chunks: Sequence[Chunk]) -> int:
        with self._store.lock:
            if document_id not in self._store.document_rows:
                raise DocumentNotFoundError(document_id)
            self._store.drop_chunks(document_id)
            for chunk in chunks:
                self._store.chunk_rows[chunk.id] = chunk
        return len(chunks)

    async def delete_chunks(self, document_id: str) -> int:
        with self._store.lock:
            return self._store.drop_chunks(document_id)

    async def count_chunks(self, document_id: str) -> int:
        with self._store.lock:
            return len(self._store.chunk_ids_for(document_id))


class InMemoryVectorIndex(VectorIndex):
    def __init__(self, store: InMemoryKnowledgeStore) -> None:
        self._store = store

    async def upsert(self, entries: Sequence[VectorEntry]) -> int:
        with self._store.lock:
            for entry in entries:
                if entry.chunk_id not in self._store.chunk_rows:
                    raise StorageError(f"Vector references unknown chunk: {entry.chunk_id}")
                self._store.vector_rows[entry.chunk_id] = entry
        return len(entries)

    async def search(
        self,
        query_vector: Sequence[float],
        top_k: int,
        filters: SearchFilters,
    ) -> List[VectorCandidate]:
        query = np.asarray(query_vector, dtype="float32")
        query_norm = float(np.linalg.norm(query))

        results: List[VectorCandidate] = []
        with self._store.lock:
            for chunk_id, entry in self._store.vector_rows.items():
                chunk = self._store.chunk_rows.get(chunk_id)
                if chunk is None or not self._store.matches(chunk, filters):
                    continue

                vec = np.asarray(entry.embedding, dtype="float32")
                denom = query_norm * float(np.linalg.norm(vec))
                similarity = float(np.dot(query, vec) / denom) if denom else 0.0

                results.append(
                    VectorCandidate(
                        chunk_id=chunk.id,
                        document_id=chunk.document_id,
                        content=chunk.content,
                        distance=1.0 - similarity,
                        metadata=self._store.hit_metadata(chunk),
                    )
                )

        results.sort(key=lambda c: c.distance)
        return results[:top_k]

    async def delete_by_document(self, document_id: str) -> int:
        with self._store.lock:
            ids = [
                cid for cid, e in self._store.vector_rows.items()
                if e.document_id == document_id
            ]
            for cid in ids:
                del self._store.vector_rows[cid]
        return len(ids)


class InMemoryKeywordIndex(KeywordIndex):
    """
    Term-frequency ranking: the share of a chunk's words that are query terms.
    Chunks that contain none of the terms are not returned.
    """

    def __init__(self, store: InMemoryKnowledgeStore) -> None:
        self._store = store

    async def search(
        self,
        query: str,
        top_k: int,
        filters: SearchFilters,
    ) -> List[KeywordCandidate]:
        query_terms = set(_terms(query))
        if not query_terms:
            return []

        results: List[KeywordCandidate] = []
        with self._store.lock:
            for chunk in self._store.chunk_rows.values():
                if not self._store.matches(chunk, filters):
                    continue

                words = _terms(chunk.content)
                if not words:
                    continue
                counts = Counter(words)
                hits = sum(counts[t] for t in query_terms)
                if hits == 0:
                    continue

                results.append(
                    KeywordCandidate(
                        chunk_id=chunk.id,
                        document_id=chunk.document_id,
                        content=chunk.content,
                        rank=hits / len(words),
                        metadata=self._store.hit_metadata(chunk),
                    )
                )

        results.sort(key=lambda c: c.rank, reverse=True)
        return results[:top_k]

    async def delete_by_document(self, document_id: str) -> int:
        # Keyword entries live on the chunk rows themselves.
        with self._store.lock:
            return self._store.drop_chunks(document_id)
