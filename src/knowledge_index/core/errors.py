"""
Errors and Global Error Handling

This module defines the exception hierarchy shared by the ingestion and search
core, plus the FastAPI exception handlers that translate them into responses.

Design Goals
------------
- Never leak internal exception details to clients
- Always return deterministic, machine-readable error responses
- Log full stack traces internally for debugging
- Keep backpressure (queue full) distinguishable from failures
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger("kb.errors")


# ---------------------------------------------------------------------
# Exception Hierarchy
# ---------------------------------------------------------------------

class KnowledgeIndexError(RuntimeError):
    """Base error for the knowledge index core."""


class ParserError(KnowledgeIndexError):
    """Raised when a document cannot be parsed at all."""


class EmbeddingError(KnowledgeIndexError):
    """Raised when embedding generation fails."""


class EmbeddingDimensionError(EmbeddingError):
    """Raised when a provider returns vectors of the wrong length."""


class StorageError(KnowledgeIndexError):
    """Raised when a storage collaborator rejects an operation."""


class DocumentNotFoundError(KnowledgeIndexError):
    """Raised when a document id does not exist."""


class ContentNotFoundError(KnowledgeIndexError):
    """Raised when the content source has no bytes for a logical path."""


class UnknownStrategyError(KnowledgeIndexError):
    """Raised when a chunker, parser or reranker name is not registered."""


class QueueFullError(KnowledgeIndexError):
    """Raised by callers that need an exception for a rejected enqueue."""


class InvalidUploadError(KnowledgeIndexError):
    """Raised when an upload is rejected before it is stored (type, size)."""


# ---------------------------------------------------------------------
# Public Exception Handlers
# ---------------------------------------------------------------------

async def document_not_found_handler(
    request: Request,
    exc: DocumentNotFoundError,
) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={"error": "document_not_found", "detail": str(exc)},
    )


async def invalid_upload_handler(
    request: Request,
    exc: InvalidUploadError,
) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "invalid_upload", "detail": str(exc)},
    )


async def queue_full_handler(
    request: Request,
    exc: QueueFullError,
) -> JSONResponse:
    """
    Report backpressure. Clients are expected to retry later, not immediately.
    """
    logger.warning("Ingestion queue full: %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=503,
        content={"error": "queue_full", "detail": "Ingestion queue is at capacity"},
        headers={"Retry-After": "5"},
    )


async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """
    Catch-all handler for uncaught exceptions.

    Behavior
    --------
    - Logs the full exception stack trace for internal diagnostics.
    - Returns a generic 500 error to the client with no internal details.
    """
    logger.exception(
        "Unhandled exception during request: %s %s",
        request.method,
        request.url.path,
        exc_info=exc,
    )

    payload: Dict[str, Any] = {
        "error": "internal_server_error",
        "detail": "Internal server error",
    }

    return JSONResponse(
        status_code=500,
        content=payload,
    )
