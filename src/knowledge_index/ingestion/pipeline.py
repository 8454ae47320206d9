"""
Ingestion Pipeline

Parse, chunk, embed and store a single document.

Flow
----
1. Buffer non-seekable input, then hash it (SHA-256).
2. Register the document row (update in place if the id exists, else insert)
   and mark it Processing.
3. Parse with the parser registered for the file extension.
4. Chunk with the strategy named by the job or by the settings snapshot.
5. Embed all chunk texts in provider-sized batches.
6. Replace the document's chunk rows, then upsert their vectors tagged with
   the embedding model id.
7. Update the document row again with status Ready, the chunk count and the
   indexing provenance used by reindex change detection.

Any failure in those steps is recorded on the document as Failed and reported
in the returned ``IngestionResult``; it is never raised to the caller.
Cancellation (``asyncio.CancelledError``) is not a failure and propagates.

Many pipelines run concurrently, one per in-flight job. Each run reads the
settings snapshot exactly once.
"""

from __future__ import annotations

import logging
import time
from typing import BinaryIO, Callable, Dict, List, Optional

from ..config import ChunkingSettings, EmbeddingSettings, RuntimeSettings, SettingsProvider
from ..core.errors import EmbeddingError, ParserError
from ..core.logging import sanitize
from ..embeddings.base import EmbeddingProvider
from ..embeddings.registry import get_provider
from ..storage.base import DocumentStore, VectorIndex
from ..storage.models import (
    Chunk,
    Document,
    DocumentStatus,
    VectorEntry,
    new_id,
    utcnow,
)
from .chunking.registry import ChunkerRegistry
from .hashing import content_hash, ensure_seekable, stream_size
from .models import ChunkInfo, IngestionOptions, IngestionPhase, IngestionResult
from .parsers import ParserRegistry

logger = logging.getLogger("kb.pipeline")

PhaseCallback = Callable[[IngestionPhase, float], None]
ProviderResolver = Callable[[EmbeddingSettings], EmbeddingProvider]


# ---------------------------------------------------------------------
# Indexing provenance (stored in Document.metadata)
# ---------------------------------------------------------------------

CHUNKING_STRATEGY_KEY = "IndexedChunkingStrategy"
CHUNKING_MAX_SIZE_KEY = "IndexedChunkingMaxSize"
CHUNKING_OVERLAP_KEY = "IndexedChunkingOverlap"
EMBEDDING_PROVIDER_KEY = "IndexedEmbeddingProvider"
EMBEDDING_MODEL_KEY = "IndexedEmbeddingModel"
EMBEDDING_DIMENSIONS_KEY = "IndexedEmbeddingDimensions"


def chunking_provenance(chunking: ChunkingSettings, strategy: str) -> Dict[str, str]:
    return {
        CHUNKING_STRATEGY_KEY: strategy,
        CHUNKING_MAX_SIZE_KEY: str(chunking.max_chunk_size),
        CHUNKING_OVERLAP_KEY: str(chunking.overlap),
    }


def embedding_provenance(embedding: EmbeddingSettings) -> Dict[str, str]:
    return {
        EMBEDDING_PROVIDER_KEY: embedding.provider,
        EMBEDDING_MODEL_KEY: embedding.model,
        EMBEDDING_DIMENSIONS_KEY: str(embedding.dimensions),
    }


def _noop_phase(phase: IngestionPhase, percent: float) -> None:
    return None


class IngestionPipeline:
    """
    Single-document orchestrator. Stateless between runs; safe to share.
    """

    def __init__(
        self,
        documents: DocumentStore,
        vectors: VectorIndex,
        settings_provider: SettingsProvider,
        parsers: Optional[ParserRegistry] = None,
        chunkers: Optional[ChunkerRegistry] = None,
        provider_resolver: ProviderResolver = get_provider,
    ) -> None:
        self._documents = documents
        self._vectors = vectors
        self._settings = settings_provider
        self._parsers = parsers or ParserRegistry()
        self._chunkers = chunkers or ChunkerRegistry()
        self._resolve_provider = provider_resolver

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def ingest(
        self,
        stream: BinaryIO,
        document_id: str,
        path: str,
        options: IngestionOptions,
        on_phase: Optional[PhaseCallback] = None,
    ) -> IngestionResult:
        """
        Ingest one document.

        Parameters
        ----------
        stream : BinaryIO
            Document bytes; need not be seekable.
        document_id : str
            Id to update in place, or to insert under if it does not exist yet.
        path : str
            Logical path of the document within its scope.
        options : IngestionOptions
            Scope, file name, content type, metadata and strategy override.
        on_phase : Optional[PhaseCallback]
            Called synchronously on every phase change with a percentage.

        Returns
        -------
        IngestionResult
            ``success`` is False when the document ended up Failed.
        """
        snapshot = self._settings.snapshot()
        report = on_phase or _noop_phase
        started = time.perf_counter()
        file_name = options.file_name or path.rsplit("/", 1)[-1]
        warnings: List[str] = []

        try:
            buffered = ensure_seekable(stream)
            digest = content_hash(buffered)
            size = stream_size(buffered)

            await self._register(document_id, path, file_name, digest, size, options)

            report(IngestionPhase.PARSING, 10.0)
            parsed = await self._parsers.parse(buffered, file_name)
            warnings.extend(parsed.warnings)

            report(IngestionPhase.CHUNKING, 30.0)
            strategy = options.chunking_strategy or snapshot.chunking.strategy
            provider = self._resolve_provider(snapshot.embedding)
            chunker = self._chunkers.resolve(strategy, provider)
            infos = await chunker.chunk(parsed, snapshot.chunking)

            if not infos:
                detail = "; ".join(parsed.warnings)
                raise ParserError(
                    "No extractable content" + (f": {detail}" if detail else "")
                )

            report(IngestionPhase.EMBEDDING, 50.0)
            embeddings = await provider.embed_batch([info.content for info in infos])
            if len(embeddings) != len(infos):
                raise EmbeddingError(
                    f"Provider returned {len(embeddings)} embeddings for {len(infos)} chunks"
                )
            provider.check_dimensions(embeddings)

            report(IngestionPhase.STORING, 80.0)
            await self._store(document_id, options.scope_id, infos, embeddings, provider)
            await self._complete(document_id, path, file_name, digest, size,
                                 options, snapshot, strategy, len(infos))

            report(IngestionPhase.COMPLETE, 100.0)

            duration = time.perf_counter() - started
            logger.info(
                "Ingested %s (%s): %d chunks in %.2fs",
                sanitize(file_name),
                document_id,
                len(infos),
                duration,
            )
            return IngestionResult(
                document_id=document_id,
                success=True,
                chunk_count=len(infos),
                duration_seconds=duration,
                warnings=warnings,
            )

        except Exception as exc:
            message = str(exc) or type(exc).__name__
            logger.error(
                "Ingestion failed for %s (%s): %s",
                sanitize(file_name),
                document_id,
                sanitize(message),
                exc_info=not isinstance(exc, (ParserError, EmbeddingError)),
            )
            await self.mark_failed(document_id, message)
            return IngestionResult(
                document_id=document_id,
                success=False,
                duration_seconds=time.perf_counter() - started,
                error_message=message,
                warnings=warnings,
            )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _register(
        self,
        document_id: str,
        path: str,
        file_name: str,
        digest: str,
        size: int,
        options: IngestionOptions,
    ) -> None:
        """
        Make sure the document row exists before chunk rows reference it.
        """
        document = await self._documents.get(document_id)
        if document is None:
            await self._documents.insert(
                Document(
                    id=document_id,
                    scope_id=options.scope_id,
                    path=path,
                    file_name=file_name,
                    content_type=options.content_type,
                    content_hash=digest,
                    size_bytes=size,
                    status=DocumentStatus.PROCESSING,
                    metadata=dict(options.metadata),
                )
            )
            return

        document.status = DocumentStatus.PROCESSING
        document.error_message = None
        document.content_hash = digest
        document.size_bytes = size
        await self._documents.update(document)

    async def _store(
        self,
        document_id: str,
        scope_id: str,
        infos: List[ChunkInfo],
        embeddings: List[List[float]],
        provider: EmbeddingProvider,
    ) -> None:
        chunks = [
            Chunk(
                id=new_id(),
                document_id=document_id,
                scope_id=scope_id,
                content=info.content,
                index=info.index,
                token_count=info.token_count,
                start_offset=info.start_offset,
                end_offset=info.end_offset,
                metadata=dict(info.metadata),
            )
            for info in infos
        ]
        await self._documents.replace_chunks(document_id, chunks)

        entries = [
            VectorEntry(
                chunk_id=chunk.id,
                document_id=document_id,
                scope_id=scope_id,
                embedding=list(vector),
                model_id=provider.model_id,
            )
            for chunk, vector in zip(chunks, embeddings)
        ]
        await self._vectors.upsert(entries)

    async def _complete(
        self,
        document_id: str,
        path: str,
        file_name: str,
        digest: str,
        size: int,
        options: IngestionOptions,
        snapshot: RuntimeSettings,
        strategy: str,
        chunk_count: int,
    ) -> None:
        """
        Upsert-or-insert the final document row. Looking the id up first is
        what lets a forced re-ingestion update instead of inserting twice.
        """
        now = utcnow()
        provenance = {
            **chunking_provenance(snapshot.chunking, strategy),
            **embedding_provenance(snapshot.embedding),
        }

        document = await self._documents.get(document_id)
        if document is None:
            document = Document(
                id=document_id,
                scope_id=options.scope_id,
                path=path,
                file_name=file_name,
                content_type=options.content_type,
                metadata=dict(options.metadata),
            )
            insert = True
        else:
            insert = False

        document.content_hash = digest
        document.size_bytes = size
        document.status = DocumentStatus.READY
        document.error_message = None
        document.chunk_count = chunk_count
        document.last_indexed_at = now
        document.metadata.update(options.metadata)
        document.metadata.update(provenance)

        if insert:
            await self._documents.insert(document)
        else:
            await self._documents.update(document)

    async def mark_failed(self, document_id: str, message: str) -> None:
        """Set the document Failed with ``message``; errors here are only logged."""
        try:
            document = await self._documents.get(document_id)
            if document is None:
                return
            document.status = DocumentStatus.FAILED
            document.error_message = message
            await self._documents.update(document)
        except Exception:
            logger.exception("Could not record failure for document %s", document_id)
