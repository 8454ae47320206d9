"""
Vector Store

PostgreSQL + pgvector based vector storage and similarity search over chunk
embeddings.
"""

from __future__ import annotations

from typing import List, Sequence

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..storage.base import VectorIndex
from ..storage.models import SearchFilters, VectorCandidate, VectorEntry
from .models import ChunkRow, ChunkVectorRow, DocumentRow
from .session import AsyncSessionLocal, session_scope


class PgVectorIndex(VectorIndex):
    """
    pgvector-backed vector index.

    Every call opens its own session, so a vector search can run concurrently
    with a keyword search.
    """

    def __init__(self, session_factory: async_sessionmaker = AsyncSessionLocal) -> None:
        self._factory = session_factory

    async def upsert(self, entries: Sequence[VectorEntry]) -> int:
        """
        Insert or replace the vector of each chunk.

        Parameters
        ----------
        entries : Sequence[VectorEntry]
            One entry per chunk; an existing vector for the same chunk id is
            overwritten along with its model id.

        Returns
        -------
        int
            Number of entries written.
        """
        if not entries:
            return 0

        async with session_scope(self._factory) as session:
            for entry in entries:
                stmt = insert(ChunkVectorRow).values(
                    chunk_id=entry.chunk_id,
                    document_id=entry.document_id,
                    scope_id=entry.scope_id,
                    model_id=entry.model_id,
                    embedding=list(entry.embedding),
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=[ChunkVectorRow.chunk_id],
                    set_={
                        "embedding": stmt.excluded.embedding,
                        "model_id": stmt.excluded.model_id,
                    },
                )
                await session.execute(stmt)
        return len(entries)

    async def search(
        self,
        query_vector: Sequence[float],
        top_k: int,
        filters: SearchFilters,
    ) -> List[VectorCandidate]:
        """
        Nearest chunks by cosine distance (pgvector ``<=>``), closest first.
        """
        cosine_distance = ChunkVectorRow.embedding.cosine_distance(list(query_vector))

        stmt = (
            select(
                ChunkRow.id,
                ChunkRow.document_id,
                ChunkRow.content,
                ChunkRow.chunk_index,
                ChunkRow.metadata_,
                DocumentRow.file_name,
                DocumentRow.path,
                cosine_distance.label("distance"),
            )
            .select_from(ChunkVectorRow)
            .join(ChunkRow, ChunkRow.id == ChunkVectorRow.chunk_id)
            .join(DocumentRow, DocumentRow.id == ChunkVectorRow.document_id)
            .where(ChunkVectorRow.scope_id == filters.scope_id)
            .order_by(cosine_distance)
            .limit(top_k)
        )

        if filters.document_id:
            stmt = stmt.where(ChunkVectorRow.document_id == filters.document_id)
        if filters.path_prefix:
            stmt = stmt.where(DocumentRow.path.startswith(filters.path_prefix, autoescape=True))

        async with session_scope(self._factory) as session:
            rows = (await session.execute(stmt)).all()

        return [
            VectorCandidate(
                chunk_id=str(row.id),
                document_id=str(row.document_id),
                content=row.content,
                distance=float(row.distance),
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
        stmt = delete(ChunkVectorRow).where(ChunkVectorRow.document_id == document_id)
        async with session_scope(self._factory) as session:
            result = await session.execute(stmt)
            return result.rowcount
