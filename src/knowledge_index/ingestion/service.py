"""
Ingestion Service

Facade used by the HTTP layer and scripts. It owns the upload flow around the
queue and the worker pool:

1. Validate file type and size against the upload settings.
2. Store the original bytes in the content source under ``scope/path``.
3. Register the document as Pending. A re-upload to the same scope and path
   reuses the existing document id and cancels its in-flight job first.
4. Enqueue a fresh ingestion job.

Processing itself happens asynchronously in the worker pool; callers poll the
job status.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..config import SettingsProvider, UploadSettings, allowed_extensions
from ..core.errors import DocumentNotFoundError, InvalidUploadError
from ..core.logging import sanitize
from ..storage.base import ContentSource, DocumentStore, VectorIndex
from ..storage.models import Document, DocumentStatus, content_key, new_id, normalize_path, utcnow
from .models import (
    EnqueueOutcome,
    IngestionJob,
    IngestionJobStatus,
    IngestionOptions,
    ReindexCheck,
    ReindexOptions,
    ReindexResult,
)
from .parsers import ParserRegistry, extension_of
from .queue import IngestionQueue
from .reindex import ReindexService

logger = logging.getLogger("kb.ingestion")


@dataclass(frozen=True)
class SubmitResult:
    document_id: str
    job_id: Optional[str]
    outcome: EnqueueOutcome


class IngestionService:
    def __init__(
        self,
        documents: DocumentStore,
        vectors: VectorIndex,
        content_source: ContentSource,
        queue: IngestionQueue,
        reindexer: ReindexService,
        settings_provider: SettingsProvider,
        parsers: ParserRegistry,
    ) -> None:
        self._documents = documents
        self._vectors = vectors
        self._content = content_source
        self._queue = queue
        self._reindexer = reindexer
        self._settings = settings_provider
        self._parsers = parsers

    # ------------------------------------------------------------------
    # Uploads
    # ------------------------------------------------------------------

    async def submit(
        self,
        content: bytes,
        file_name: str,
        scope_id: str,
        path: Optional[str] = None,
        content_type: Optional[str] = None,
        chunking_strategy: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> SubmitResult:
        """
        Store an upload and enqueue it for ingestion.

        Parameters
        ----------
        content : bytes
            Original file bytes.
        file_name : str
            Client file name; its extension selects the parser.
        scope_id : str
            Isolation boundary the document belongs to.
        path : Optional[str]
            Logical path within the scope. Defaults to ``file_name``.
        content_type : Optional[str]
            MIME type as reported by the client.
        chunking_strategy : Optional[str]
            Overrides the configured strategy for this job only.
        metadata : Optional[Dict[str, str]]
            Caller metadata stored on the document.

        Returns
        -------
        SubmitResult
            ``job_id`` is None when the queue rejected the job.

        Raises
        ------
        InvalidUploadError
            If the scope is empty, or the file type or size is not accepted.
        """
        snapshot = self._settings.snapshot()
        if not scope_id or not scope_id.strip():
            raise InvalidUploadError("scope_id is required")
        self._validate(content, file_name, snapshot.upload)

        logical_path = normalize_path(path or file_name)
        if not logical_path:
            raise InvalidUploadError("Document path is empty")

        await self._content.write(content_key(scope_id, logical_path), content)

        document = await self._documents.find_by_path(scope_id, logical_path)
        if document is None:
            document = Document(
                id=new_id(),
                scope_id=scope_id,
                path=logical_path,
                file_name=file_name,
                content_type=content_type,
                size_bytes=len(content),
                status=DocumentStatus.PENDING,
                metadata=dict(metadata or {}),
            )
            await self._documents.insert(document)
        else:
            if self._queue.cancel_for_document(document.id):
                logger.info("Re-upload of %s cancelled its running job", document.id)
            document.file_name = file_name
            document.content_type = content_type or document.content_type
            document.size_bytes = len(content)
            document.status = DocumentStatus.PENDING
            document.error_message = None
            document.updated_at = utcnow()
            document.metadata.update(metadata or {})
            await self._documents.update(document)

        job = IngestionJob(
            document_id=document.id,
            path=logical_path,
            options=IngestionOptions(
                scope_id=scope_id,
                file_name=file_name,
                content_type=content_type,
                chunking_strategy=chunking_strategy,
                metadata=dict(metadata or {}),
            ),
        )

        outcome = await self._queue.enqueue(job)
        if outcome == EnqueueOutcome.QUEUE_FULL:
            document.status = DocumentStatus.FAILED
            document.error_message = "Ingestion queue full"
            await self._documents.update(document)
            return SubmitResult(document_id=document.id, job_id=None, outcome=outcome)

        logger.info(
            "Accepted %s in scope %s as document %s (job %s)",
            sanitize(logical_path),
            sanitize(scope_id),
            document.id,
            job.job_id,
        )
        return SubmitResult(document_id=document.id, job_id=job.job_id, outcome=outcome)

    def _validate(self, content: bytes, file_name: str, upload: UploadSettings) -> None:
        ext = extension_of(file_name)
        if ext not in allowed_extensions(upload):
            raise InvalidUploadError(f"File type not allowed: {ext or '(none)'}")
        if self._parsers.get(file_name) is None:
            raise InvalidUploadError(f"No parser for file type: {ext}")

        limit = upload.max_file_size_mb * 1024 * 1024
        if len(content) > limit:
            raise InvalidUploadError(
                f"File exceeds maximum size of {upload.max_file_size_mb} MB"
            )

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def get_document(self, document_id: str) -> Document:
        document = await self._documents.get(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        return document

    async def list_documents(
        self,
        scope_id: Optional[str] = None,
        path_prefix: Optional[str] = None,
    ) -> List[Document]:
        return await self._documents.list(scope_id=scope_id, path_prefix=path_prefix)

    async def delete_document(self, document_id: str) -> None:
        """
        Cancel any job of the document, then delete it with its chunks, vectors
        and stored bytes.

        Raises
        ------
        DocumentNotFoundError
            If the document does not exist.
        """
        document = await self.get_document(document_id)
        self._queue.cancel_for_document(document_id)

        await self._vectors.delete_by_document(document_id)
        await self._documents.delete(document_id)
        await self._content.delete(content_key(document.scope_id, document.path))

        logger.info("Deleted document %s (%s)", document_id, sanitize(document.path))

    # ------------------------------------------------------------------
    # Jobs and reindexing
    # ------------------------------------------------------------------

    def get_job_status(self, job_id: str) -> Optional[IngestionJobStatus]:
        return self._queue.get_status(job_id)

    def list_jobs(self) -> List[IngestionJobStatus]:
        return self._queue.statuses.list_statuses()

    async def cancel(self, document_id: str) -> bool:
        await self.get_document(document_id)
        return self._queue.cancel_for_document(document_id)

    async def reindex(self, options: ReindexOptions) -> ReindexResult:
        return await self._reindexer.reindex(options)

    async def check_document(self, document_id: str) -> ReindexCheck:
        return await self._reindexer.check_document(document_id)
