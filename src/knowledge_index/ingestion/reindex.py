"""
Reindex Service

Decides, per document, whether it needs to be processed again and re-enqueues
the ones that do.

Decision order (first match wins):

1. Forced            -- ``force`` was requested; nothing is compared
2. FileNotFound      -- the original bytes are gone (skipped)
3. ContentChanged    -- SHA-256 of the current bytes differs from the stored hash
4. EmbeddingSettingsChanged -- provider, model or dimensions differ from the
   provenance recorded at last index
5. ChunkingSettingsChanged  -- strategy, max size or overlap differ
6. NeverIndexed      -- the document is not Ready or was never indexed
7. Unchanged         -- skipped

Settings comparisons only run when ``detect_settings_changes`` is set and the
document carries provenance for them. A failure while evaluating one document
is reported as ``Error`` for that document; the batch continues.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Dict, Optional

from ..config import RuntimeSettings, SettingsProvider
from ..core.errors import ContentNotFoundError, DocumentNotFoundError
from ..core.logging import sanitize
from ..storage.base import ContentSource, DocumentStore, VectorIndex
from ..storage.models import Document, DocumentStatus, content_key, new_id
from .hashing import content_hash, ensure_seekable
from .models import (
    EnqueueOutcome,
    IngestionJob,
    IngestionOptions,
    ReindexAction,
    ReindexCheck,
    ReindexDocumentResult,
    ReindexOptions,
    ReindexReason,
    ReindexResult,
)
from .pipeline import (
    CHUNKING_STRATEGY_KEY,
    EMBEDDING_MODEL_KEY,
    chunking_provenance,
    embedding_provenance,
)
from .queue import IngestionQueue

logger = logging.getLogger("kb.reindex")


def _differs(stored: Dict[str, str], current: Dict[str, str]) -> bool:
    """True if any recorded key disagrees with the current value."""
    return any(
        key in stored and str(stored[key]) != value
        for key, value in current.items()
    )


class ReindexService:
    def __init__(
        self,
        documents: DocumentStore,
        vectors: VectorIndex,
        content_source: ContentSource,
        queue: IngestionQueue,
        settings_provider: SettingsProvider,
    ) -> None:
        self._documents = documents
        self._vectors = vectors
        self._content = content_source
        self._queue = queue
        self._settings = settings_provider

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def reindex(self, options: ReindexOptions) -> ReindexResult:
        """
        Evaluate the selected documents and re-enqueue those that need it.

        Parameters
        ----------
        options : ReindexOptions
            Selection (scope and document ids combined, or everything), ``force``,
            ``detect_settings_changes`` and an optional strategy override.

        Returns
        -------
        ReindexResult
            Per-document outcomes, enqueued/skipped/failed counts and a
            histogram of reasons. Every enqueued job carries ``batch_id``.
        """
        snapshot = self._settings.snapshot()
        batch_id = new_id()

        documents = await self._documents.list(
            scope_id=options.scope_id,
            document_ids=options.document_ids or None,
        )
        result = ReindexResult(batch_id=batch_id, total_documents=len(documents))
        reasons: Counter = Counter()

        logger.info(
            "Reindex batch %s: evaluating %d documents (force=%s)",
            batch_id,
            len(documents),
            options.force,
        )

        for document in documents:
            entry = await self._process(document, options, snapshot, batch_id)
            result.documents.append(entry)
            reasons[entry.reason] += 1

            if entry.action == ReindexAction.ENQUEUED:
                result.enqueued_count += 1
            elif entry.action == ReindexAction.SKIPPED:
                result.skipped_count += 1
            else:
                result.failed_count += 1

        result.reason_counts = dict(reasons)

        logger.info(
            "Reindex batch %s: %d enqueued, %d skipped, %d failed",
            batch_id,
            result.enqueued_count,
            result.skipped_count,
            result.failed_count,
        )
        return result

    async def check_document(self, document_id: str) -> ReindexCheck:
        """
        Report whether a document needs reindexing, without enqueuing it.

        Raises
        ------
        DocumentNotFoundError
            If the document does not exist.
        """
        document = await self._documents.get(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        return await self._evaluate(document, ReindexOptions(), self._settings.snapshot())

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _process(
        self,
        document: Document,
        options: ReindexOptions,
        snapshot: RuntimeSettings,
        batch_id: str,
    ) -> ReindexDocumentResult:
        try:
            check = await self._evaluate(document, options, snapshot)
        except Exception as exc:
            logger.warning(
                "Reindex evaluation failed for %s (%s): %s",
                sanitize(document.file_name),
                document.id,
                exc,
            )
            return ReindexDocumentResult(
                document_id=document.id,
                file_name=document.file_name,
                action=ReindexAction.FAILED,
                reason=ReindexReason.ERROR,
                error_message=str(exc) or type(exc).__name__,
            )

        if not check.needs_reindex:
            return ReindexDocumentResult(
                document_id=document.id,
                file_name=document.file_name,
                action=ReindexAction.SKIPPED,
                reason=check.reason,
            )

        try:
            job_id = await self._requeue(document, options, batch_id)
        except Exception as exc:
            logger.exception("Reindex enqueue failed for document %s", document.id)
            return ReindexDocumentResult(
                document_id=document.id,
                file_name=document.file_name,
                action=ReindexAction.FAILED,
                reason=check.reason,
                error_message=str(exc) or type(exc).__name__,
            )

        if job_id is None:
            return ReindexDocumentResult(
                document_id=document.id,
                file_name=document.file_name,
                action=ReindexAction.FAILED,
                reason=check.reason,
                error_message="Ingestion queue full",
            )

        return ReindexDocumentResult(
            document_id=document.id,
            file_name=document.file_name,
            action=ReindexAction.ENQUEUED,
            reason=check.reason,
            job_id=job_id,
        )

    async def _evaluate(
        self,
        document: Document,
        options: ReindexOptions,
        snapshot: RuntimeSettings,
    ) -> ReindexCheck:
        strategy = options.strategy or snapshot.chunking.strategy
        stored = document.metadata

        def check(needs: bool, reason: ReindexReason, current_hash: Optional[str] = None) -> ReindexCheck:
            return ReindexCheck(
                document_id=document.id,
                needs_reindex=needs,
                reason=reason,
                current_hash=current_hash,
                stored_hash=document.content_hash or None,
                current_chunking_strategy=strategy,
                stored_chunking_strategy=stored.get(CHUNKING_STRATEGY_KEY),
                current_embedding_model=snapshot.embedding.model,
                stored_embedding_model=stored.get(EMBEDDING_MODEL_KEY),
            )

        if options.force:
            return check(True, ReindexReason.FORCED)

        try:
            stream = ensure_seekable(
                await self._content.open(content_key(document.scope_id, document.path))
            )
        except ContentNotFoundError:
            return check(False, ReindexReason.FILE_NOT_FOUND)

        try:
            current_hash = content_hash(stream)
        finally:
            stream.close()

        if current_hash != document.content_hash:
            return check(True, ReindexReason.CONTENT_CHANGED, current_hash)

        if options.detect_settings_changes:
            if _differs(stored, embedding_provenance(snapshot.embedding)):
                return check(True, ReindexReason.EMBEDDING_SETTINGS_CHANGED, current_hash)
            if _differs(stored, chunking_provenance(snapshot.chunking, strategy)):
                return check(True, ReindexReason.CHUNKING_SETTINGS_CHANGED, current_hash)

        if document.status != DocumentStatus.READY or document.last_indexed_at is None:
            return check(True, ReindexReason.NEVER_INDEXED, current_hash)

        return check(False, ReindexReason.UNCHANGED, current_hash)

    async def _requeue(
        self,
        document: Document,
        options: ReindexOptions,
        batch_id: str,
    ) -> Optional[str]:
        """
        Drop the document's chunks and vectors and enqueue a fresh job under
        the same document id. Returns the job id, or None if the queue is full.
        """
        self._queue.cancel_for_document(document.id)

        await self._vectors.delete_by_document(document.id)
        await self._documents.delete_chunks(document.id)

        document.status = DocumentStatus.PENDING
        document.error_message = None
        document.chunk_count = 0
        await self._documents.update(document)

        job = IngestionJob(
            document_id=document.id,
            path=document.path,
            options=IngestionOptions(
                scope_id=document.scope_id,
                file_name=document.file_name,
                content_type=document.content_type,
                chunking_strategy=options.strategy,
            ),
            batch_id=batch_id,
        )

        if await self._queue.enqueue(job) == EnqueueOutcome.QUEUE_FULL:
            document.status = DocumentStatus.FAILED
            document.error_message = "Reindex could not be queued: ingestion queue full"
            await self._documents.update(document)
            return None

        return job.job_id
