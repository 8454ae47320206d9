"""
Service Container

Builds the object graph from settings: storage collaborators for the selected
backend, the ingestion queue and worker pool, the reindex service and the
search engine. The FastAPI app keeps one container on ``app.state``; scripts
and tests build their own.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .config import EmbeddingSettings, Settings, SettingsProvider, settings as default_settings
from .embeddings.base import EmbeddingProvider
from .embeddings.registry import get_provider
from .ingestion.chunking.registry import ChunkerRegistry
from .ingestion.parsers import ParserRegistry
from .ingestion.pipeline import IngestionPipeline
from .ingestion.progress import LoggingProgressObserver, ProgressDispatcher, ProgressObserver
from .ingestion.queue import IngestionQueue
from .ingestion.reindex import ReindexService
from .ingestion.service import IngestionService
from .ingestion.worker import WorkerPool
from .llm.client import LLMClient
from .search.hybrid import HybridSearchEngine
from .search.keyword import KeywordSearcher
from .search.reranking import RerankerRegistry
from .search.vector import VectorSearcher
from .storage.base import ContentSource, DocumentStore, KeywordIndex, VectorIndex
from .storage.files import LocalContentSource
from .storage.memory import InMemoryKnowledgeStore

logger = logging.getLogger("kb.container")


@dataclass
class Container:
    settings_provider: SettingsProvider
    documents: DocumentStore
    vectors: VectorIndex
    keywords: KeywordIndex
    content: ContentSource
    queue: IngestionQueue
    pipeline: IngestionPipeline
    workers: WorkerPool
    reindexer: ReindexService
    ingestion: IngestionService
    search: HybridSearchEngine
    rerankers: RerankerRegistry
    backend: str = "memory"


def _storage(backend: str):
    if backend == "memory":
        store = InMemoryKnowledgeStore()
        return store.documents, store.vectors, store.keywords

    if backend == "postgres":
        from .db import PgKeywordIndex, PgVectorIndex, PostgresDocumentStore

        return PostgresDocumentStore(), PgVectorIndex(), PgKeywordIndex()

    raise ValueError(f"Unknown storage backend: {backend}")


def build_container(
    config: Settings = default_settings,
    settings_provider: Optional[SettingsProvider] = None,
    content_source: Optional[ContentSource] = None,
    provider_resolver: Callable[[EmbeddingSettings], EmbeddingProvider] = get_provider,
    llm_client: Optional[LLMClient] = None,
    observer: Optional[ProgressObserver] = None,
    backend: Optional[str] = None,
) -> Container:
    """
    Wire every collaborator for one process.

    Parameters
    ----------
    config : Settings
        Process settings; supplies the backend, content root and LLM endpoint.
    settings_provider : Optional[SettingsProvider]
        Runtime snapshot holder. Defaults to one seeded from ``config``.
    content_source : Optional[ContentSource]
        Defaults to a ``LocalContentSource`` under ``config.content_root_path``.
    provider_resolver : Callable
        Maps embedding settings to a provider; replaced in tests.
    llm_client : Optional[LLMClient]
        Chat client for the cross-encoder reranker.
    observer : Optional[ProgressObserver]
        Receives job progress updates. Defaults to logging them.
    backend : Optional[str]
        ``memory`` or ``postgres``; overrides ``config.storage_backend``.

    Returns
    -------
    Container
        Workers are not started; call ``container.workers.start()``.
    """
    backend = (backend or config.storage_backend).lower()
    provider = settings_provider or SettingsProvider()
    snapshot = provider.snapshot()

    documents, vectors, keywords = _storage(backend)
    content = content_source or LocalContentSource(config.content_root_path)
    parsers = ParserRegistry()

    queue = IngestionQueue(
        capacity=snapshot.upload.queue_capacity,
        enqueue_timeout=snapshot.upload.enqueue_timeout_seconds,
    )
    pipeline = IngestionPipeline(
        documents,
        vectors,
        provider,
        parsers=parsers,
        chunkers=ChunkerRegistry(),
        provider_resolver=provider_resolver,
    )
    workers = WorkerPool(
        queue,
        pipeline,
        content,
        worker_count=snapshot.upload.parallel_workers,
        progress=ProgressDispatcher(observer or LoggingProgressObserver()),
    )
    reindexer = ReindexService(documents, vectors, content, queue, provider)
    ingestion = IngestionService(
        documents, vectors, content, queue, reindexer, provider, parsers
    )

    rerankers = RerankerRegistry(llm_client or LLMClient(config.llm))
    search = HybridSearchEngine(
        VectorSearcher(vectors, provider_resolver),
        KeywordSearcher(keywords),
        provider,
        rerankers,
    )

    logger.info(
        "Container ready (backend=%s, workers=%d, queue capacity=%d)",
        backend,
        snapshot.upload.parallel_workers,
        snapshot.upload.queue_capacity,
    )
    return Container(
        settings_provider=provider,
        documents=documents,
        vectors=vectors,
        keywords=keywords,
        content=content,
        queue=queue,
        pipeline=pipeline,
        workers=workers,
        reindexer=reindexer,
        ingestion=ingestion,
        search=search,
        rerankers=rerankers,
        backend=backend,
    )
