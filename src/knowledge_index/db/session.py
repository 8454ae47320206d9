"""
Database Session Management

Provides the async SQLAlchemy engine and session factory for PostgreSQL.

Every store operation opens its own short-lived session from
``AsyncSessionLocal``. An ``AsyncSession`` must not be used by two coroutines at
once, and hybrid search runs its vector and keyword branches concurrently.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
)

from ..config import settings
from .models import Base


# Create async engine
async_engine = create_async_engine(
    settings.database_url,
    echo=False,  # Set True for SQL debugging
    pool_pre_ping=True,
    pool_size=10,
    max_overflow=10,
)

# Session factory
AsyncSessionLocal = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker = AsyncSessionLocal,
) -> AsyncIterator[AsyncSession]:
    """
    Transactional scope: commit on success, roll back and re-raise on error.
    """
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except BaseException:
            await session.rollback()
            raise


async def init_schema() -> None:
    """
    Create the pgvector extension and all tables if they do not exist.
    """
    async with async_engine.begin() as conn:
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)
