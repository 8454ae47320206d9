"""
Knowledge Index Application Entry Point

This module defines the FastAPI application instance, registers all routers,
configures global exception handling, and provides a test-friendly application
factory.

Startup Order
-------------
1. Configure logging from ``Settings.log_level``
2. Build the service container (unless one was injected)
3. Create the PostgreSQL schema when that backend is selected
4. Start the ingestion worker pool

Shutdown stops the worker pool, cancelling running jobs.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from .config import settings
from .container import Container, build_container
from .core.errors import (
    DocumentNotFoundError,
    InvalidUploadError,
    QueueFullError,
    document_not_found_handler,
    invalid_upload_handler,
    queue_full_handler,
    unhandled_exception_handler,
)
from .core.logging import configure_logging

from .api import (
    document_routes,
    health_routes,
    job_routes,
    reindex_routes,
    search_routes,
)


logger = logging.getLogger("kb.app")


# ---------------------------------------------------------------------
# Application Factory (Test-Friendly)
# ---------------------------------------------------------------------

def create_app(container: Optional[Container] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Parameters
    ----------
    container : Optional[Container]
        Pre-built collaborators (tests pass an in-memory container). When
        omitted, one is built from settings during startup.

    Returns
    -------
    FastAPI
        Fully configured FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(settings.log_level)
        logger.info("Starting knowledge-index")

        if getattr(app.state, "container", None) is None:
            app.state.container = build_container(settings)
        current: Container = app.state.container

        if current.backend == "postgres":
            from .db import init_schema

            await init_schema()
            logger.info("Database schema ready")

        await current.workers.start()
        try:
            yield
        finally:
            logger.info("Shutting down knowledge-index")
            await current.workers.stop()

    app = FastAPI(
        title="knowledge-index",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.container = container

    # --------------------------------------------------------------
    # Exception Handling
    # --------------------------------------------------------------

    app.add_exception_handler(DocumentNotFoundError, document_not_found_handler)
    app.add_exception_handler(InvalidUploadError, invalid_upload_handler)
    app.add_exception_handler(QueueFullError, queue_full_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # --------------------------------------------------------------
    # Router Registration
    # --------------------------------------------------------------

    app.include_router(health_routes.router)
    app.include_router(document_routes.router)
    app.include_router(job_routes.router)
    app.include_router(reindex_routes.router)
    app.include_router(search_routes.router)

    return app


# ---------------------------------------------------------------------
# Default Application Instance (for Uvicorn/Gunicorn)
# ---------------------------------------------------------------------

app = create_app()
