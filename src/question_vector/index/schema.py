"""
Index Schema Manager

Guarantees that a vector index exists with the expected k-NN mapping before
anything is written to or searched in it.

Key Properties
--------------
- Idempotent: existence is checked first, create happens at most once
- Race tolerant: a concurrent creator winning is not an error
- Dimension safe: a schema or an existing index whose vector dimension
  disagrees with the model fails at startup, not at query time
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Set

from opensearchpy import AsyncOpenSearch

from ..core.errors import (
    DimensionMismatchError,
    IndexSchemaError,
    StoreRequestError,
)
from .client import call_store
from .models import IndexSchema

logger = logging.getLogger("qv.index.schema")

_ALREADY_EXISTS = "resource_already_exists_exception"


class IndexSchemaManager:
    """Creates and verifies vector indexes."""

    def __init__(
        self,
        client: AsyncOpenSearch,
        expected_dimension: int,
        timeout: Optional[float] = None,
    ) -> None:
        """
        Parameters
        ----------
        client : AsyncOpenSearch
            Search store client.

        expected_dimension : int
            The model's embedding dimension; every managed schema must match.

        timeout : Optional[float]
            Per-call store timeout in seconds.
        """
        self._client = client
        self._expected_dimension = expected_dimension
        self._timeout = timeout
        self._ready: Set[str] = set()

    @property
    def expected_dimension(self) -> int:
        return self._expected_dimension

    def is_ready(self, name: str) -> bool:
        return name in self._ready

    def require_ready(self, name: str) -> None:
        """Raise IndexSchemaError unless ``ensure_index`` succeeded for ``name``."""
        if name not in self._ready:
            raise IndexSchemaError(
                f"Index '{name}' has not been initialized; call ensure_index first."
            )

    def check_schema(self, schema: IndexSchema) -> None:
        if schema.dimension != self._expected_dimension:
            raise DimensionMismatchError(
                self._expected_dimension, schema.dimension, what=f"index '{schema.name}'"
            )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def ensure_index(self, schema: IndexSchema) -> None:
        """
        Create the index if it does not exist.

        Raises
        ------
        DimensionMismatchError
            If the schema, or the mapping of an existing index, declares a
            vector dimension other than the model's.
        IndexSchemaError
            If creation fails for any reason other than the index already
            existing.
        StoreConnectionError
            If the store cannot be reached.
        """
        self.check_schema(schema)

        exists = await call_store(
            self._client.indices.exists(index=schema.name),
            "indices.exists",
            self._timeout,
        )

        if exists:
            await self._verify_existing(schema)
        else:
            await self._create(schema)

        self._ready.add(schema.name)

    async def delete_index(self, name: str) -> bool:
        """Delete an index. Returns False if it did not exist."""
        self._ready.discard(name)

        exists = await call_store(
            self._client.indices.exists(index=name),
            "indices.exists",
            self._timeout,
        )
        if not exists:
            return False

        try:
            await call_store(
                self._client.indices.delete(index=name),
                "indices.delete",
                self._timeout,
            )
        except StoreRequestError as exc:
            if exc.status_code == 404:
                return False
            raise IndexSchemaError(f"Failed to delete index '{name}': {exc}") from exc

        logger.info("Deleted index %s", name)
        return True

    async def recreate_index(self, schema: IndexSchema) -> None:
        """Drop the index (and all its documents) and create it again."""
        self.check_schema(schema)
        await self.delete_index(schema.name)
        await self.ensure_index(schema)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _create(self, schema: IndexSchema) -> None:
        try:
            await call_store(
                self._client.indices.create(index=schema.name, body=schema.to_mapping()),
                "indices.create",
                self._timeout,
            )
        except StoreRequestError as exc:
            if exc.error == _ALREADY_EXISTS:
                logger.info("Index %s was created concurrently; continuing.", schema.name)
                return
            raise IndexSchemaError(
                f"Failed to create index '{schema.name}': {exc}"
            ) from exc

        logger.info(
            "Created index %s (dimension=%d, metric=%s)",
            schema.name,
            schema.dimension,
            schema.metric.value,
        )

    async def _verify_existing(self, schema: IndexSchema) -> None:
        try:
            response = await call_store(
                self._client.indices.get_mapping(index=schema.name),
                "indices.get_mapping",
                self._timeout,
            )
        except StoreRequestError as exc:
            raise IndexSchemaError(
                f"Failed to read mapping of index '{schema.name}': {exc}"
            ) from exc

        dimension = _vector_dimension(response, schema)
        if dimension is None:
            raise IndexSchemaError(
                f"Index '{schema.name}' exists without a '{schema.vector_field}' vector field."
            )
        if dimension != schema.dimension:
            raise DimensionMismatchError(
                schema.dimension, dimension, what=f"existing index '{schema.name}'"
            )


def _vector_dimension(response: Dict[str, Any], schema: IndexSchema) -> Optional[int]:
    """Pull the vector field dimension out of a get_mapping response."""
    for index_body in response.values():
        properties = index_body.get("mappings", {}).get("properties", {})
        field = properties.get(schema.vector_field)
        if field and "dimension" in field:
            return int(field["dimension"])
    return None
