import asyncio

import pytest

from knowledge_index.core.errors import DocumentNotFoundError, InvalidUploadError
from knowledge_index.ingestion.models import (
    EnqueueOutcome,
    IngestionJob,
    IngestionJobState,
    IngestionOptions,
    ReindexOptions,
)
from knowledge_index.ingestion.parsers import ParserRegistry
from knowledge_index.ingestion.queue import IngestionQueue
from knowledge_index.ingestion.reindex import ReindexService
from knowledge_index.ingestion.service import IngestionService
from knowledge_index.storage.models import DocumentStatus, content_key


def _service(store, content_source, queue, settings_provider) -> IngestionService:
    reindexer = ReindexService(store.documents, store.vectors, content_source, queue, settings_provider)
    return IngestionService(
        store.documents,
        store.vectors,
        content_source,
        queue,
        reindexer,
        settings_provider,
        ParserRegistry(),
    )


@pytest.fixture
def service(store, content_source, queue, settings_provider):
    return _service(store, content_source, queue, settings_provider)


async def _drain(queue, pipeline, content_source):
    while queue.qsize():
        job = await queue.dequeue()
        if queue.statuses.start(job.job_id):
            stream = await content_source.open(content_key(job.options.scope_id, job.path))
            result = await pipeline.ingest(stream, job.document_id, job.path, job.options)
            queue.statuses.finish(
                job.job_id,
                IngestionJobState.COMPLETED if result.success else IngestionJobState.FAILED,
                result.error_message,
            )
        queue.task_done()


@pytest.mark.asyncio
async def test_submit_stores_bytes_and_enqueues(service, store, content_source, queue):
    result = await service.submit(
        b"Quarterly revenue grew.",
        "report.txt",
        "scope-a",
        path="/finance/report.txt",
        metadata={"owner": "finance"},
    )

    assert result.outcome == EnqueueOutcome.ACCEPTED
    document = await store.documents.get(result.document_id)
    assert document.status == DocumentStatus.PENDING
    assert document.path == "finance/report.txt"
    assert document.size_bytes == 23
    assert document.metadata == {"owner": "finance"}
    assert await content_source.exists("scope-a/finance/report.txt")

    status = service.get_job_status(result.job_id)
    assert status.state == IngestionJobState.QUEUED
    assert status.document_id == result.document_id
    assert [s.job_id for s in service.list_jobs()] == [result.job_id]


@pytest.mark.asyncio
async def test_reupload_reuses_document_id(service, store, queue, pipeline, content_source):
    first = await service.submit(b"version one", "a.txt", "scope-a")
    await _drain(queue, pipeline, content_source)

    second = await service.submit(b"version two", "a.txt", "scope-a")
    assert second.document_id == first.document_id
    assert second.job_id != first.job_id

    await _drain(queue, pipeline, content_source)
    documents = await service.list_documents(scope_id="scope-a")
    assert [d.id for d in documents] == [first.document_id]
    chunks = [c.content for c in store.chunk_rows.values()]
    assert chunks == ["version two"]


@pytest.mark.asyncio
async def test_reupload_cancels_queued_job(service, queue):
    first = await service.submit(b"one", "a.txt", "scope-a")
    await service.submit(b"two", "a.txt", "scope-a")

    assert service.get_job_status(first.job_id).state == IngestionJobState.CANCELLED


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "content, file_name, scope_id, message",
    [
        (b"text", "a.txt", "  ", "scope_id"),
        (b"binary", "tool.exe", "scope-a", "not allowed"),
        (b"text", "README", "scope-a", "not allowed"),
    ],
)
async def test_invalid_uploads_are_rejected(service, store, content, file_name, scope_id, message):
    with pytest.raises(InvalidUploadError, match=message):
        await service.submit(content, file_name, scope_id)
    assert await store.documents.list() == []


@pytest.mark.asyncio
async def test_htm_upload_is_accepted_by_default(service, store):
    result = await service.submit(b"<html><body>Revenue</body></html>", "page.htm", "scope-a")

    assert result.outcome == EnqueueOutcome.ACCEPTED
    document = await store.documents.get(result.document_id)
    assert document.file_name == "page.htm"


@pytest.mark.asyncio
async def test_oversized_upload_is_rejected(service, settings_provider, runtime_settings):
    settings_provider.update(
        upload=runtime_settings.upload.model_copy(update={"max_file_size_mb": 1})
    )
    with pytest.raises(InvalidUploadError, match="maximum size"):
        await service.submit(b"x" * (1024 * 1024 + 1), "big.txt", "scope-a")


@pytest.mark.asyncio
async def test_allowed_extension_without_parser(service, settings_provider, runtime_settings):
    settings_provider.update(
        upload=runtime_settings.upload.model_copy(
            update={"allowed_extensions": (".txt", ".rtf")}
        )
    )
    with pytest.raises(InvalidUploadError, match="No parser"):
        await service.submit(b"{\\rtf1}", "doc.rtf", "scope-a")


@pytest.mark.asyncio
async def test_queue_full_marks_document_failed(store, content_source, settings_provider):
    queue = IngestionQueue(capacity=1)
    await queue.enqueue(
        IngestionJob(document_id="other", path="x.txt", options=IngestionOptions(scope_id="s"))
    )
    service = _service(store, content_source, queue, settings_provider)

    result = await asyncio.wait_for(service.submit(b"text", "a.txt", "scope-a"), timeout=1.0)

    assert result.outcome == EnqueueOutcome.QUEUE_FULL
    assert result.job_id is None
    document = await store.documents.get(result.document_id)
    assert document.status == DocumentStatus.FAILED
    assert document.error_message == "Ingestion queue full"


@pytest.mark.asyncio
async def test_delete_document_removes_everything(service, store, queue, pipeline, content_source):
    result = await service.submit(b"quarterly revenue growth", "a.txt", "scope-a")
    await _drain(queue, pipeline, content_source)
    assert store.vector_rows

    await service.delete_document(result.document_id)

    assert await store.documents.get(result.document_id) is None
    assert store.chunk_rows == {}
    assert store.vector_rows == {}
    assert not await content_source.exists("scope-a/a.txt")

    with pytest.raises(DocumentNotFoundError):
        await service.delete_document(result.document_id)


@pytest.mark.asyncio
async def test_cancel_requires_existing_document(service):
    result = await service.submit(b"text", "a.txt", "scope-a")

    assert await service.cancel(result.document_id) is True
    assert await service.cancel(result.document_id) is False
    with pytest.raises(DocumentNotFoundError):
        await service.cancel("missing")


@pytest.mark.asyncio
async def test_reindex_passthrough(service, queue, pipeline, content_source):
    result = await service.submit(b"some text", "a.txt", "scope-a")
    await _drain(queue, pipeline, content_source)

    outcome = await service.reindex(ReindexOptions(scope_id="scope-a"))
    assert outcome.skipped_count == 1

    check = await service.check_document(result.document_id)
    assert not check.needs_reindex
