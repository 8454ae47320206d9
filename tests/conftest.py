import hashlib
import re
from typing import List, Sequence

import pytest

from knowledge_index.config import (
    ChunkingSettings,
    EmbeddingSettings,
    RuntimeSettings,
    SearchSettings,
    SettingsProvider,
    UploadSettings,
)
from knowledge_index.embeddings.base import EmbeddingProvider
from knowledge_index.ingestion.chunking.registry import ChunkerRegistry
from knowledge_index.ingestion.parsers import ParserRegistry
from knowledge_index.ingestion.pipeline import IngestionPipeline
from knowledge_index.ingestion.queue import IngestionQueue
from knowledge_index.ingestion.reindex import ReindexService
from knowledge_index.storage.files import LocalContentSource
from knowledge_index.storage.memory import InMemoryKnowledgeStore

_WORD = re.compile(r"\w+")


class HashingEmbedder(EmbeddingProvider):
    """
    Deterministic bag-of-words embedder: every lower-cased word adds one to
    the bucket its MD5 hash falls into. Texts sharing words get similar
    vectors, which is all the search tests need.
    """

    def __init__(self, dimensions: int = 64, model: str = "hash-embed") -> None:
        self._dimensions = dimensions
        self._model = model
        self.calls = 0

    @property
    def model_id(self) -> str:
        return self._model

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def vector(self, text: str) -> List[float]:
        vec = [0.0] * self._dimensions
        for word in _WORD.findall(text.lower()):
            bucket = int(hashlib.md5(word.encode("utf-8")).hexdigest(), 16) % self._dimensions
            vec[bucket] += 1.0
        return vec

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        self.calls += 1
        return [self.vector(t) for t in texts]


def hashing_resolver(config: EmbeddingSettings) -> EmbeddingProvider:
    return HashingEmbedder(dimensions=config.dimensions, model=config.model)


@pytest.fixture
def runtime_settings():
    return RuntimeSettings(
        chunking=ChunkingSettings(
            strategy="FixedSize",
            max_chunk_size=50,
            overlap=10,
            min_chunk_size=0,
        ),
        embedding=EmbeddingSettings(provider="Hash", model="hash-embed", dimensions=64),
        search=SearchSettings(minimum_score=0.0, reranker="RRF", mode="Hybrid"),
        upload=UploadSettings(parallel_workers=2, queue_capacity=10),
    )


@pytest.fixture
def settings_provider(runtime_settings):
    return SettingsProvider(runtime_settings)


@pytest.fixture
def store():
    return InMemoryKnowledgeStore()


@pytest.fixture
def content_source(tmp_path):
    return LocalContentSource(tmp_path / "content")


@pytest.fixture
def queue():
    return IngestionQueue(capacity=10)


@pytest.fixture
def pipeline(store, settings_provider):
    return IngestionPipeline(
        store.documents,
        store.vectors,
        settings_provider,
        parsers=ParserRegistry(),
        chunkers=ChunkerRegistry(),
        provider_resolver=hashing_resolver,
    )


@pytest.fixture
def reindexer(store, content_source, queue, settings_provider):
    return ReindexService(
        store.documents,
        store.vectors,
        content_source,
        queue,
        settings_provider,
    )


@pytest.fixture
def embedder():
    return HashingEmbedder()


@pytest.fixture
def provider_resolver():
    return hashing_resolver
