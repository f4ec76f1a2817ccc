"""
Error Taxonomy and Exception Handlers

This module defines the exceptions raised by the embedding and vector index
layers, and the FastAPI handlers that translate them into JSON responses.

Design Goals
------------
- One base class (VectorServiceError) for uniform translation
- Recoverable and fatal failures kept apart by type, not by message
- Never leak internal exception details to clients
- Log full stack traces internally for debugging
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger("qv.errors")


# ---------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------

class VectorServiceError(RuntimeError):
    """Base error for the embedding and vector index layers."""

    code = "vector_service_error"


class ModelLoadError(VectorServiceError):
    """Raised when the model artifact cannot be loaded or its context allocated."""

    code = "model_load_failed"


class ModelBusyError(VectorServiceError):
    """Raised when a dispose cannot drain outstanding inference in time."""

    code = "model_busy"


class InferenceError(VectorServiceError):
    """Raised when a single embedding call fails."""

    code = "inference_failed"


class InferenceQueueFullError(InferenceError):
    """Raised when the inference queue stays full past the enqueue timeout."""

    code = "inference_queue_full"


class InferenceTimeoutError(InferenceError):
    """Raised when one inference call exceeds its time cap."""

    code = "inference_timeout"


class DimensionMismatchError(VectorServiceError, ValueError):
    """Raised when a vector does not have the configured dimension."""

    code = "dimension_mismatch"

    def __init__(self, expected: int, actual: int, what: str = "embedding") -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{what} has dimension {actual}, expected {expected}"
        )


class InvalidSearchError(VectorServiceError, ValueError):
    """Raised for malformed similarity search parameters."""

    code = "invalid_search"


class IndexSchemaError(VectorServiceError):
    """Raised when the vector index cannot be created or is not ready."""

    code = "index_schema_error"


class StoreError(VectorServiceError):
    """Base error for search store failures."""

    code = "store_error"


class StoreConnectionError(StoreError):
    """Raised when the search store cannot be reached."""

    code = "store_unavailable"


class StoreTimeoutError(StoreConnectionError):
    """Raised when a store call exceeds the caller's timeout."""

    code = "store_timeout"

    def __init__(self, operation: str, timeout: float) -> None:
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"Store operation '{operation}' timed out after {timeout}s")


class StoreRequestError(StoreError):
    """Raised when the search store rejects a request."""

    code = "store_request_failed"

    def __init__(
        self,
        operation: str,
        status_code: Optional[int] = None,
        error: Optional[str] = None,
    ) -> None:
        self.operation = operation
        self.status_code = status_code
        self.error = error
        super().__init__(
            f"Store operation '{operation}' failed "
            f"(status={status_code}, error={error})"
        )


# ---------------------------------------------------------------------
# HTTP Translation
# ---------------------------------------------------------------------

_STATUS_BY_ERROR = (
    (DimensionMismatchError, 422),
    (InvalidSearchError, 422),
    (InferenceQueueFullError, 503),
    (InferenceTimeoutError, 504),
    (InferenceError, 502),
    (ModelLoadError, 503),
    (ModelBusyError, 503),
    (StoreTimeoutError, 504),
    (StoreConnectionError, 503),
    (StoreRequestError, 502),
    (IndexSchemaError, 500),
)


def status_for(exc: VectorServiceError) -> int:
    """Return the HTTP status code for a service error (first match wins)."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


async def vector_service_exception_handler(
    request: Request,
    exc: VectorServiceError,
) -> JSONResponse:
    """
    Translate a VectorServiceError into a deterministic JSON error.

    Client-side faults (dimension, search parameters) echo their message;
    everything else gets only its error code so no internals leak.
    """
    status_code = status_for(exc)

    if status_code >= 500:
        logger.error(
            "Service error during request %s %s: %s",
            request.method,
            request.url.path,
            exc,
            exc_info=exc,
        )
        detail = exc.code.replace("_", " ")
    else:
        detail = str(exc)

    payload: Dict[str, Any] = {"error": exc.code, "detail": detail}
    return JSONResponse(status_code=status_code, content=payload)


async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """
    Catch-all handler for uncaught exceptions.

    Logs the full traceback and returns a generic 500 with no internal details.
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


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(VectorServiceError, vector_service_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
