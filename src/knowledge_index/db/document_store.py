"""
PostgreSQL Document Store

Document and chunk persistence. Each call runs in its own session scope.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..core.errors import DocumentNotFoundError
from ..storage.base import DocumentStore
from ..storage.models import Chunk, Document, DocumentStatus, utcnow
from .models import ChunkRow, DocumentRow
from .session import AsyncSessionLocal, session_scope


def _to_document(row: DocumentRow) -> Document:
    return Document(
        id=str(row.id),
        scope_id=row.scope_id,
        path=row.path,
        file_name=row.file_name,
        content_type=row.content_type,
        content_hash=row.content_hash,
        size_bytes=row.size_bytes,
        status=DocumentStatus(row.status),
        error_message=row.error_message,
        chunk_count=row.chunk_count,
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_indexed_at=row.last_indexed_at,
        metadata=dict(row.metadata_ or {}),
    )


def _apply(row: DocumentRow, document: Document) -> None:
    row.scope_id = document.scope_id
    row.path = document.path
    row.file_name = document.file_name
    row.content_type = document.content_type
    row.content_hash = document.content_hash
    row.size_bytes = document.size_bytes
    row.status = document.status.value
    row.error_message = document.error_message
    row.chunk_count = document.chunk_count
    row.updated_at = document.updated_at
    row.last_indexed_at = document.last_indexed_at
    row.metadata_ = dict(document.metadata)


class PostgresDocumentStore(DocumentStore):
    def __init__(self, session_factory: async_sessionmaker = AsyncSessionLocal) -> None:
        self._factory = session_factory

    async def get(self, document_id: str) -> Optional[Document]:
        async with session_scope(self._factory) as session:
            row = await session.get(DocumentRow, document_id)
            return _to_document(row) if row else None

    async def find_by_path(self, scope_id: str, path: str) -> Optional[Document]:
        stmt = select(DocumentRow).where(
            DocumentRow.scope_id == scope_id,
            DocumentRow.path == path,
        )
        async with session_scope(self._factory) as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            return _to_document(row) if row else None

    async def insert(self, document: Document) -> None:
        row = DocumentRow(id=document.id, created_at=document.created_at)
        _apply(row, document)
        async with session_scope(self._factory) as session:
            session.add(row)

    async def update(self, document: Document) -> None:
        document.updated_at = utcnow()
        async with session_scope(self._factory) as session:
            row = await session.get(DocumentRow, document.id)
            if row is None:
                raise DocumentNotFoundError(document.id)
            _apply(row, document)

    async def delete(self, document_id: str) -> bool:
        stmt = delete(DocumentRow).where(DocumentRow.id == document_id)
        async with session_scope(self._factory) as session:
            result = await session.execute(stmt)
            return result.rowcount > 0

    async def list(
        self,
        scope_id: Optional[str] = None,
        path_prefix: Optional[str] = None,
        document_ids: Optional[Sequence[str]] = None,
    ) -> List[Document]:
        stmt = select(DocumentRow).order_by(DocumentRow.created_at)

        if scope_id is not None:
            stmt = stmt.where(DocumentRow.scope_id == scope_id)
        if path_prefix:
            stmt = stmt.where(DocumentRow.path.startswith(path_prefix, autoescape=True))
        if document_ids is not None:
            stmt = stmt.where(DocumentRow.id.in_(list(document_ids)))

        async with session_scope(self._factory) as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_document(row) for row in rows]

    async def replace_chunks(self, document_id: str, chunks: Sequence[Chunk]) -> int:
        async with session_scope(self._factory) as session:
            if await session.get(DocumentRow, document_id) is None:
                raise DocumentNotFoundError(document_id)

            # Vector rows cascade with their chunks.
            await session.execute(delete(ChunkRow).where(ChunkRow.document_id == document_id))

            for chunk in chunks:
                session.add(
                    ChunkRow(
                        id=chunk.id,
                        document_id=chunk.document_id,
                        scope_id=chunk.scope_id,
                        content=chunk.content,
                        chunk_index=chunk.index,
                        token_count=chunk.token_count,
                        start_offset=chunk.start_offset,
                        end_offset=chunk.end_offset,
                        metadata_=dict(chunk.metadata),
                    )
                )
            await session.flush()
        return len(chunks)

    async def delete_chunks(self, document_id: str) -> int:
        stmt = delete(ChunkRow).where(ChunkRow.document_id == document_id)
        async with session_scope(self._factory) as session:
            result = await session.execute(stmt)
            return result.rowcount

    async def count_chunks(self, document_id: str) -> int:
        stmt = select(func.count()).select_from(ChunkRow).where(
            ChunkRow.document_id == document_id
        )
        async with session_scope(self._factory) as session:
            return (await session.execute(stmt)).scalar() or 0
