"""
Vector Service Application Entry Point

This module defines the FastAPI application instance, registers all routers,
configures global exception handling, and provides a test-friendly application
factory.

Design Goals
------------
- Deterministic startup: cluster gate, then index, then model warm-up
- Centralized router registration
- Global exception safety net
- Test-friendly via create_app()
"""

from __future__ import annotations

import contextlib
import logging
from typing import AsyncIterator

from fastapi import FastAPI

from .config import settings
from .core.errors import register_exception_handlers

from .api import (
    document_routes,
    embedding_routes,
    health_routes,
    search_routes,
)
from .api.dependencies import get_vector_service


logger = logging.getLogger("qv.app")


# ---------------------------------------------------------------------
# Application Factory (Test-Friendly)
# ---------------------------------------------------------------------

def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns
    -------
    FastAPI
        Fully configured FastAPI application.
    """
    logging.getLogger("qv").setLevel(settings.log_level.upper())

    def _service():
        provider = app.dependency_overrides.get(get_vector_service, get_vector_service)
        return provider()

    # --------------------------------------------------------------
    # Startup / Shutdown
    # --------------------------------------------------------------

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """
        Fail fast if the search store is unusable, and warm the model so the
        first request does not pay the load cost.
        """
        logger.info("Starting question-vector-service")

        service = _service()
        await service.startup()

        if await service.generator.test_connection():
            logger.info("Embedding model ready (%s)", service.generator.handle.runtime_name)
        else:
            # Requests retry the load; /health/embeddings reports 503 meanwhile.
            logger.error("Embedding model failed its warm-up probe")

        try:
            yield
        finally:
            logger.info("Shutting down question-vector-service")
            await service.shutdown()

    app = FastAPI(
        title="question-vector-service",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # --------------------------------------------------------------
    # Global Exception Handling
    # --------------------------------------------------------------

    register_exception_handlers(app)

    # --------------------------------------------------------------
    # Router Registration
    # --------------------------------------------------------------

    app.include_router(health_routes.router)
    app.include_router(embedding_routes.router)
    app.include_router(document_routes.router)
    app.include_router(search_routes.router)

    return app


# ---------------------------------------------------------------------
# Default Application Instance (for Uvicorn/Gunicorn)
# ---------------------------------------------------------------------

app = create_app()
