"""
Keyword Index

PostgreSQL full-text search over the generated ``chunks.search_vector``
column, ranked with ``ts_rank``.
"""

from __future__ import annotations

from typing import List

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..storage.base import KeywordIndex
from ..storage.models import KeywordCandidate, SearchFilters
from .models import ChunkRow, DocumentRow
from .session import AsyncSessionLocal, session_scope

TEXT_SEARCH_CONFIG = "english"


class PgKeywordIndex(KeywordIndex):
    def __init__(self, session_factory: async_sessionmaker = AsyncSessionLocal) -> None:
        self._factory = session_factory

    async def search(
        self,
        query: str,
        top_k: int,
        filters: SearchFilters,
    ) -> List[KeywordCandidate]:
        if not query.strip():
            return []

        ts_query = func.plainto_tsquery(TEXT_SEARCH_CONFIG, query)
        rank = func.ts_rank(ChunkRow.search_vector, ts_query)

        stmt = (
            select(
                ChunkRow.id,
                ChunkRow.document_id,
                ChunkRow.content,
                ChunkRow.chunk_index,
                ChunkRow.metadata_,
                DocumentRow.file_name,
                DocumentRow.path,
                rank.label("rank"),
            )
            .select_from(ChunkRow)
            .join(DocumentRow, DocumentRow.id == ChunkRow.document_id)
            .where(ChunkRow.scope_id == filters.scope_id)
            .where(ChunkRow.search_vector.op("@@")(ts_query))
            .order_by(rank.desc())
            .limit(top_k)
        )

        if filters.document_id:
            stmt = stmt.where(ChunkRow.document_id == filters.document_id)
        if filters.path_prefix:
            stmt = stmt.where(DocumentRow.path.startswith(filters.path_prefix, autoescape=True))

        async with session_scope(self._factory) as session:
            rows = (await session.execute(stmt)).all()

        return [
            KeywordCandidate(
                chunk_id=str(row.id),
                document_id=str(row.document_id),
                content=row.content,
                rank=float(row.rank),
                metadata={
                    **(row.metadata_ or {}),
                    "chunk_index": row.chunk_index,
                    "file_name": row.file_name,
                    "path": row.path,
                },
            )
            for row in rows
        ]

    async def delete_by_document(self, document_id: str) -> int:
        # The tsvector is a generated column of the chunk row itself.
        stmt = delete(ChunkRow).where(ChunkRow.document_id == document_id)
        async with session_scope(self._factory) as session:
            result = await session.execute(stmt)
            return result.rowcount
