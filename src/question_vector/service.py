"""
Vector Service

Composition root that wires the model handle, embedding generator, and
vector index components from configuration, and owns their startup and
shutdown.

Design Goals
------------
- One place where model and index dimensions are reconciled
- Explicit startup order: cluster gate, then index, then traffic
- Test-friendly: runtime and store client are injectable
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Mapping, Optional, Sequence

from opensearchpy import AsyncOpenSearch
from pydantic import BaseModel, Field

from .config import Settings
from .core.errors import (
    DimensionMismatchError,
    StoreConnectionError,
    StoreRequestError,
    VectorServiceError,
)
from .embeddings.embedder import EmbeddingGenerator
from .embeddings.handle import ModelHandle
from .embeddings.models import ModelConfig
from .embeddings.runtime import ModelRuntime, build_runtime
from .index import (
    ClusterHealthMonitor,
    ClusterStatus,
    Document,
    DocumentStoreWriter,
    IndexSchema,
    IndexSchemaManager,
    SearchResult,
    SimilarityMetric,
    SimilaritySearcher,
    build_client,
)

logger = logging.getLogger("qv.service")


class IngestReport(BaseModel):
    """Outcome of a bulk ingest: ids stored and ids whose embedding or write failed."""

    stored: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)


class VectorService:
    """Embedding generation plus vector index operations behind one object."""

    def __init__(
        self,
        generator: EmbeddingGenerator,
        client: AsyncOpenSearch,
        schema: IndexSchema,
        store_timeout: Optional[float] = None,
        refresh: str = "false",
    ) -> None:
        if generator.dimension != schema.dimension:
            raise DimensionMismatchError(
                generator.dimension, schema.dimension, what=f"index '{schema.name}'"
            )

        self.generator = generator
        self.client = client
        self.schema = schema
        self.schemas = IndexSchemaManager(client, generator.dimension, timeout=store_timeout)
        self.writer = DocumentStoreWriter(
            client, self.schemas, schema, refresh=refresh, timeout=store_timeout
        )
        self.searcher = SimilaritySearcher(client, self.schemas, schema, timeout=store_timeout)
        self.health = ClusterHealthMonitor(client, timeout=store_timeout)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        runtime: Optional[ModelRuntime] = None,
        client: Optional[AsyncOpenSearch] = None,
    ) -> "VectorService":
        config = ModelConfig.from_settings(settings)
        handle = ModelHandle(
            config,
            runtime or build_runtime(settings),
            queue_depth=settings.inference_queue_depth,
            enqueue_timeout=settings.inference_enqueue_timeout,
            item_timeout=settings.inference_item_timeout,
            dispose_grace_period=settings.model_dispose_grace_period,
        )
        generator = EmbeddingGenerator(handle, probe_text=settings.embedding_probe_text)
        schema = IndexSchema.with_keyword_fields(
            name=settings.index_name,
            dimension=config.embedding_dimension,
            metric=SimilarityMetric(settings.index_similarity_metric),
            fields=settings.metadata_field_names,
        )
        return cls(
            generator,
            client or build_client(settings),
            schema,
            store_timeout=settings.store_operation_timeout,
            refresh=settings.index_refresh,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def startup(self) -> None:
        """
        Gate on cluster health, then make sure the index exists.

        Raises
        ------
        StoreConnectionError
            If the cluster is unreachable or reports red.
        IndexSchemaError, DimensionMismatchError
            If the index cannot be created or has the wrong shape.
        """
        health = await self.health.get_health()
        if health.status is ClusterStatus.RED:
            raise StoreConnectionError(
                f"Cluster '{health.cluster_name}' is red; refusing to start."
            )

        await self.schemas.ensure_index(self.schema)
        logger.info("Vector service ready on index %s", self.schema.name)

    async def shutdown(self) -> None:
        try:
            await self.generator.handle.dispose()
        finally:
            await self.client.close()
        logger.info("Vector service stopped.")

    # ------------------------------------------------------------------
    # Text-level operations
    # ------------------------------------------------------------------

    async def index_text(
        self,
        doc_id: str,
        content: str,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> Document:
        """Embed ``content`` and store it under ``doc_id``."""
        embedding = await self.generator.generate_embedding(content)
        doc = Document(
            id=doc_id,
            content=content,
            metadata=dict(metadata or {}),
            embedding=embedding,
        )
        await self.writer.store_document(doc)
        return doc

    async def index_batch(self, items: Sequence[Mapping[str, Any]]) -> IngestReport:
        """
        Embed and store many items of the form
        ``{"id": ..., "content": ..., "metadata": {...}}``.

        Items whose embedding fell back to the sentinel are reported as
        failed and not written, so sentinels never reach the index. A write
        the store rejects is reported as failed and the remaining items are
        still attempted; losing the connection stops the batch.
        """
        report = IngestReport()
        if not items:
            return report

        result = await self.generator.generate_batch_embeddings_with_report(
            [item["content"] for item in items]
        )
        failed = set(result.failed_indexes)

        for position, (item, embedding) in enumerate(zip(items, result.embeddings)):
            doc_id = str(item["id"])
            if position in failed:
                report.failed.append(doc_id)
                continue

            try:
                await self.writer.store_document(
                    Document(
                        id=doc_id,
                        content=item["content"],
                        metadata=dict(item.get("metadata") or {}),
                        embedding=embedding,
                    )
                )
            except StoreRequestError as exc:
                logger.warning("Store rejected document %s: %s", doc_id, exc)
                report.failed.append(doc_id)
                continue

            report.stored.append(doc_id)

        logger.info(
            "Ingested %d document(s) into %s, %d failed",
            len(report.stored),
            self.schema.name,
            len(report.failed),
        )
        return report

    async def search_text(self, query: str, k: int = 5) -> List[SearchResult]:
        """Embed ``query`` and return the ``k`` most similar documents."""
        vector = await self.generator.generate_embedding(query)
        return await self.searcher.search_similar(vector, k)

    async def self_test(self) -> Dict[str, Any]:
        """
        Exercise the full round trip: health, index, store, search, delete.

        Never raises for service errors; the outcome is in the returned dict.
        """
        probe_id = f"self-test-{uuid.uuid4().hex}"
        error: Optional[VectorServiceError] = None
        written = False
        try:
            health = await self.health.get_health()
            await self.schemas.ensure_index(self.schema)
            doc = await self.index_text(
                probe_id,
                "What is 2 + 2?",
                {"difficulty": "easy", "topic": "arithmetic"},
            )
            written = True
            results = await self.searcher.search_similar(doc.embedding, 1)
        except VectorServiceError as exc:
            error = exc
        finally:
            # The self-test document must not linger in a live index.
            if written:
                try:
                    await self.writer.delete_document(probe_id)
                except VectorServiceError as exc:
                    logger.warning("Self-test could not delete %s: %s", probe_id, exc)
                    error = error or exc

        if error is not None:
            logger.error("Self-test failed (%s): %s", type(error).__name__, error)
            return {
                "status": False,
                "message": f"Self-test failed: {error}",
                "details": {"error": error.code},
            }

        return {
            "status": True,
            "message": "Search store and embedding model passed all operations",
            "details": {
                "cluster_health": health.model_dump(mode="json"),
                "search_results": [r.model_dump() for r in results],
            },
        }
