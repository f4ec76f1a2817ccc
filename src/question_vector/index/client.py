"""
Search Store Client

Construction of the async OpenSearch client and the single wrapper through
which every store call goes. The wrapper applies the caller's timeout and
maps transport failures onto the service error taxonomy, so no opensearch-py
exception type escapes the index layer.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Optional, TypeVar

from opensearchpy import AsyncOpenSearch
from opensearchpy import exceptions as search_exc

from ..core.errors import StoreConnectionError, StoreRequestError, StoreTimeoutError

if TYPE_CHECKING:
    from ..config import Settings

logger = logging.getLogger("qv.index.client")

T = TypeVar("T")


def build_client(settings: "Settings") -> AsyncOpenSearch:
    """Create the async OpenSearch client from configuration."""
    node = str(settings.opensearch_node).rstrip("/")
    return AsyncOpenSearch(
        hosts=[node],
        http_auth=(
            settings.opensearch_username,
            settings.opensearch_password.get_secret_value(),
        ),
        use_ssl=node.startswith("https://"),
        verify_certs=settings.opensearch_verify_certs,
        ssl_show_warn=False,
        timeout=settings.opensearch_request_timeout,
        max_retries=settings.opensearch_max_retries,
        retry_on_timeout=True,
    )


def _error_type(exc: search_exc.TransportError) -> Optional[str]:
    """Best-effort extraction of the store's error type, e.g. resource_already_exists_exception."""
    info = getattr(exc, "info", None)
    if isinstance(info, dict):
        error = info.get("error")
        if isinstance(error, dict) and error.get("type"):
            return str(error["type"])
        if isinstance(error, str):
            return error
    error = getattr(exc, "error", None)
    return str(error) if error is not None else None


async def call_store(
    awaitable: Awaitable[T],
    operation: str,
    timeout: Optional[float] = None,
) -> T:
    """
    Await one store call.

    Parameters
    ----------
    awaitable : Awaitable
        The client call, e.g. ``client.search(...)``.

    operation : str
        Short operation name for errors and logs.

    timeout : Optional[float]
        Caller timeout in seconds. On expiry the call is cancelled.

    Raises
    ------
    StoreTimeoutError
        If the timeout expires.
    StoreConnectionError
        If the store cannot be reached.
    StoreRequestError
        If the store rejects the request.
    """
    try:
        if timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        logger.warning("Store operation %s timed out after %ss", operation, timeout)
        raise StoreTimeoutError(operation, timeout) from exc
    except search_exc.ConnectionError as exc:
        logger.error("Store unreachable during %s: %s", operation, exc)
        raise StoreConnectionError(
            f"Search store unreachable during '{operation}': {type(exc).__name__}"
        ) from exc
    except search_exc.TransportError as exc:
        status_code = exc.status_code if isinstance(exc.status_code, int) else None
        raise StoreRequestError(
            operation,
            status_code=status_code,
            error=_error_type(exc),
        ) from exc
