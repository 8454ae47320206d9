import io

import pytest

from knowledge_index.core.errors import EmbeddingError
from knowledge_index.ingestion.models import IngestionOptions, IngestionPhase
from knowledge_index.ingestion.pipeline import (
    CHUNKING_MAX_SIZE_KEY,
    CHUNKING_STRATEGY_KEY,
    EMBEDDING_DIMENSIONS_KEY,
    EMBEDDING_MODEL_KEY,
    IngestionPipeline,
)
from knowledge_index.storage.models import Document, DocumentStatus

from test_chunking import THREE_PARAGRAPHS


class OneWayStream(io.RawIOBase):
    """Readable, non-seekable stream."""

    def __init__(self, data: bytes) -> None:
        self._buffer = io.BytesIO(data)

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return False

    def readinto(self, b) -> int:
        chunk = self._buffer.read(len(b))
        b[: len(chunk)] = chunk
        return len(chunk)


def _options(**overrides) -> IngestionOptions:
    values = dict(scope_id="scope-a", file_name="report.txt")
    values.update(overrides)
    return IngestionOptions(**values)


@pytest.mark.asyncio
async def test_ingest_three_paragraphs_end_to_end(pipeline, store):
    phases = []
    result = await pipeline.ingest(
        io.BytesIO(THREE_PARAGRAPHS.encode()),
        document_id="doc-1",
        path="reports/q3.txt",
        options=_options(metadata={"owner": "finance"}),
        on_phase=lambda phase, pct: phases.append((phase, pct)),
    )

    assert result.success, result.error_message
    assert result.chunk_count >= 3

    assert phases == [
        (IngestionPhase.PARSING, 10.0),
        (IngestionPhase.CHUNKING, 30.0),
        (IngestionPhase.EMBEDDING, 50.0),
        (IngestionPhase.STORING, 80.0),
        (IngestionPhase.COMPLETE, 100.0),
    ]

    document = await store.documents.get("doc-1")
    assert document.status == DocumentStatus.READY
    assert document.chunk_count == result.chunk_count
    assert document.last_indexed_at is not None
    assert len(document.content_hash) == 64
    assert document.metadata["owner"] == "finance"
    assert document.metadata[CHUNKING_STRATEGY_KEY] == "FixedSize"
    assert document.metadata[CHUNKING_MAX_SIZE_KEY] == "50"
    assert document.metadata[EMBEDDING_MODEL_KEY] == "hash-embed"
    assert document.metadata[EMBEDDING_DIMENSIONS_KEY] == "64"

    assert await store.documents.count_chunks("doc-1") == result.chunk_count
    assert len(store.vector_rows) == result.chunk_count
    assert {v.model_id for v in store.vector_rows.values()} == {"hash-embed"}


@pytest.mark.asyncio
async def test_ingest_non_seekable_stream(pipeline, store):
    result = await pipeline.ingest(
        OneWayStream(b"Short note about revenue."),
        document_id="doc-2",
        path="note.txt",
        options=_options(file_name="note.txt"),
    )
    assert result.success
    assert (await store.documents.get("doc-2")).size_bytes == 25


@pytest.mark.asyncio
async def test_reingest_same_id_updates_in_place(pipeline, store):
    options = _options()
    first = await pipeline.ingest(io.BytesIO(b"version one"), "doc-3", "a.txt", options)
    second = await pipeline.ingest(io.BytesIO(b"version two, longer"), "doc-3", "a.txt", options)

    assert first.success and second.success
    assert len(await store.documents.list()) == 1
    chunks = [c for c in store.chunk_rows.values() if c.document_id == "doc-3"]
    assert [c.content for c in chunks] == ["version two, longer"]


@pytest.mark.asyncio
async def test_ingest_existing_pending_document(pipeline, store):
    await store.documents.insert(
        Document(id="doc-4", scope_id="scope-a", path="b.txt", file_name="b.txt")
    )
    result = await pipeline.ingest(io.BytesIO(b"hello there"), "doc-4", "b.txt", _options())
    assert result.success
    assert (await store.documents.get("doc-4")).status == DocumentStatus.READY


@pytest.mark.asyncio
async def test_empty_content_marks_failed(pipeline, store):
    result = await pipeline.ingest(io.BytesIO(b"  \n "), "doc-5", "blank.txt", _options())

    assert not result.success
    assert "No extractable content" in result.error_message
    document = await store.documents.get("doc-5")
    assert document.status == DocumentStatus.FAILED
    assert document.error_message == result.error_message


@pytest.mark.asyncio
async def test_unsupported_type_fails_with_warning(pipeline, store):
    result = await pipeline.ingest(
        io.BytesIO(b"\x00\x01"), "doc-6", "tool.exe", _options(file_name="tool.exe")
    )
    assert not result.success
    assert "Unsupported file type" in result.error_message


@pytest.mark.asyncio
async def test_unknown_strategy_fails_job(pipeline, store):
    result = await pipeline.ingest(
        io.BytesIO(b"some text"), "doc-7", "c.txt", _options(chunking_strategy="Nope")
    )
    assert not result.success
    assert (await store.documents.get("doc-7")).status == DocumentStatus.FAILED


@pytest.mark.asyncio
async def test_embedding_failure_marks_failed(store, settings_provider, embedder):
    class BrokenEmbedder(type(embedder)):
        async def embed_batch(self, texts):
            raise EmbeddingError("provider down")

    pipeline = IngestionPipeline(
        store.documents,
        store.vectors,
        settings_provider,
        provider_resolver=lambda config: BrokenEmbedder(config.dimensions, config.model),
    )
    result = await pipeline.ingest(io.BytesIO(b"text"), "doc-8", "d.txt", _options())

    assert not result.success
    assert result.error_message == "provider down"
    assert await store.documents.count_chunks("doc-8") == 0


@pytest.mark.asyncio
async def test_dimension_mismatch_fails(store, settings_provider, embedder):
    class LyingEmbedder(type(embedder)):
        @property
        def dimensions(self) -> int:
            return 16

    pipeline = IngestionPipeline(
        store.documents,
        store.vectors,
        settings_provider,
        provider_resolver=lambda config: LyingEmbedder(dimensions=8, model=config.model),
    )
    result = await pipeline.ingest(io.BytesIO(b"text"), "doc-10", "f.txt", _options())
    assert not result.success
    assert "dimensions" in result.error_message


@pytest.mark.asyncio
async def test_snapshot_taken_once_per_run(pipeline, store, settings_provider, runtime_settings):
    seen = []

    def on_phase(phase, pct):
        if phase == IngestionPhase.PARSING:
            settings_provider.update(
                chunking=runtime_settings.chunking.model_copy(update={"max_chunk_size": 10})
            )
        seen.append(phase)

    result = await pipeline.ingest(
        io.BytesIO(THREE_PARAGRAPHS.encode()), "doc-11", "g.txt", _options(), on_phase=on_phase
    )
    assert result.success
    assert (await store.documents.get("doc-11")).metadata[CHUNKING_MAX_SIZE_KEY] == "50"
