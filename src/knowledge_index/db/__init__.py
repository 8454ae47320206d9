"""
Database Package

Provides SQLAlchemy async session management, model definitions and the
PostgreSQL implementations of the storage collaborators (document store,
pgvector index, full-text keyword index).
"""

from .session import async_engine, AsyncSessionLocal, session_scope, init_schema
from .models import Base, DocumentRow, ChunkRow, ChunkVectorRow
from .document_store import PostgresDocumentStore
from .vector_store import PgVectorIndex
from .keyword_index import PgKeywordIndex

__all__ = [
    "async_engine",
    "AsyncSessionLocal",
    "session_scope",
    "init_schema",
    "Base",
    "DocumentRow",
    "ChunkRow",
    "ChunkVectorRow",
    "PostgresDocumentStore",
    "PgVectorIndex",
    "PgKeywordIndex",
]
