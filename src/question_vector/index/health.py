"""
Cluster Health Monitor

A direct pass-through read of the search store's cluster health. Nothing is
cached; every call hits the store.
"""

from __future__ import annotations

from typing import Optional

from opensearchpy import AsyncOpenSearch
from pydantic import ValidationError

from ..core.errors import StoreRequestError
from .client import call_store
from .models import ClusterStatus, HealthStatus


class ClusterHealthMonitor:

    def __init__(self, client: AsyncOpenSearch, timeout: Optional[float] = None) -> None:
        self._client = client
        self._timeout = timeout

    async def get_health(self) -> HealthStatus:
        response = await call_store(
            self._client.cluster.health(),
            "cluster.health",
            self._timeout,
        )
        try:
            return HealthStatus.model_validate(response)
        except ValidationError as exc:
            raise StoreRequestError(
                "cluster.health",
                error=f"unexpected health payload: {exc.error_count()} error(s)",
            ) from exc

    async def is_available(self) -> bool:
        """True unless the cluster reports red."""
        health = await self.get_health()
        return health.status is not ClusterStatus.RED
