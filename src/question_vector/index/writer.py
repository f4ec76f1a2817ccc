"""
Document Store Writer

Persists documents with their embeddings into the vector index. Each write
is one full document body keyed by the document id; storing the same id
again replaces it.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from opensearchpy import AsyncOpenSearch

from ..core.errors import DimensionMismatchError, StoreRequestError
from .client import call_store
from .models import Document, IndexSchema
from .schema import IndexSchemaManager

logger = logging.getLogger("qv.index.writer")


class DocumentStoreWriter:
    """Writes and deletes documents in one vector index."""

    def __init__(
        self,
        client: AsyncOpenSearch,
        schemas: IndexSchemaManager,
        schema: IndexSchema,
        refresh: str = "false",
        timeout: Optional[float] = None,
    ) -> None:
        self._client = client
        self._schemas = schemas
        self._schema = schema
        self._refresh = refresh
        self._timeout = timeout

    async def store_document(self, doc: Document) -> None:
        """
        Write (or overwrite) one document.

        Raises
        ------
        DimensionMismatchError
            If the embedding width differs from the index dimension. Raised
            before any network call.
        IndexSchemaError
            If the index has not been ensured yet.
        StoreError
            If the store is unreachable or rejects the write.
        """
        if len(doc.embedding) != self._schema.dimension:
            raise DimensionMismatchError(
                self._schema.dimension, len(doc.embedding), what=f"document '{doc.id}'"
            )

        self._schemas.require_ready(self._schema.name)

        await call_store(
            self._client.index(
                index=self._schema.name,
                id=doc.id,
                body=self._build_body(doc),
                refresh=self._refresh,
            ),
            "index",
            self._timeout,
        )
        logger.debug("Stored document %s in %s", doc.id, self._schema.name)

    async def delete_document(self, doc_id: str) -> bool:
        """Delete one document. Returns False if it did not exist."""
        self._schemas.require_ready(self._schema.name)

        try:
            await call_store(
                self._client.delete(
                    index=self._schema.name,
                    id=doc_id,
                    refresh=self._refresh,
                ),
                "delete",
                self._timeout,
            )
        except StoreRequestError as exc:
            if exc.status_code == 404:
                return False
            raise

        logger.debug("Deleted document %s from %s", doc_id, self._schema.name)
        return True

    def _build_body(self, doc: Document) -> Dict[str, Any]:
        return {
            "document_id": doc.id,
            "content": doc.content,
            self._schema.vector_field: list(doc.embedding),
            "metadata": dict(doc.metadata),
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
