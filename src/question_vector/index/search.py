"""
Similarity Searcher

Executes k-nearest-neighbour queries against the vector index and converts
raw hits into ranked SearchResult objects.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Optional, Sequence

from opensearchpy import AsyncOpenSearch

from ..core.errors import DimensionMismatchError, InvalidSearchError
from .client import call_store
from .models import IndexSchema, SearchResult
from .schema import IndexSchemaManager

logger = logging.getLogger("qv.index.search")


class SimilaritySearcher:
    """Nearest-neighbour search over one vector index."""

    def __init__(
        self,
        client: AsyncOpenSearch,
        schemas: IndexSchemaManager,
        schema: IndexSchema,
        timeout: Optional[float] = None,
    ) -> None:
        self._client = client
        self._schemas = schemas
        self._schema = schema
        self._timeout = timeout

    def build_query(self, query_vector: Sequence[float], k: int) -> Dict[str, Any]:
        return {
            "size": k,
            "query": {
                "knn": {
                    self._schema.vector_field: {
                        "vector": list(query_vector),
                        "k": k,
                    },
                },
            },
            "_source": {"excludes": [self._schema.vector_field]},
        }

    async def search_similar(
        self,
        query_vector: Sequence[float],
        k: int = 5,
    ) -> List[SearchResult]:
        """
        Return up to ``k`` documents closest to ``query_vector``.

        Results are in non-increasing score order; hits with equal scores
        keep the order the store returned them in.

        Raises
        ------
        DimensionMismatchError
            If the query vector width differs from the index dimension.
        InvalidSearchError
            If ``k`` is less than 1.
        IndexSchemaError
            If the index has not been ensured yet.
        StoreError
            If the store is unreachable or rejects the query.
        """
        if len(query_vector) != self._schema.dimension:
            raise DimensionMismatchError(
                self._schema.dimension, len(query_vector), what="query vector"
            )
        if k < 1:
            raise InvalidSearchError(f"k must be >= 1, got {k}")

        self._schemas.require_ready(self._schema.name)

        response = await call_store(
            self._client.search(
                index=self._schema.name,
                body=self.build_query(query_vector, k),
            ),
            "search",
            self._timeout,
        )

        hits = response.get("hits", {}).get("hits", [])
        results = [r for r in (self._to_result(hit) for hit in hits) if r is not None]

        # sorted() is stable, so equal scores keep store order.
        return sorted(results, key=lambda r: r.score, reverse=True)[:k]

    def _to_result(self, hit: Dict[str, Any]) -> Optional[SearchResult]:
        source = hit.get("_source") or {}
        score = hit.get("_score")
        doc_id = source.get("document_id", hit.get("_id"))
        content = source.get("content")

        if score is None or doc_id is None or content is None:
            logger.warning(
                "Skipping search hit %s missing score, id or content.",
                hit.get("_id", "<unknown>"),
            )
            return None

        try:
            score = float(score)
        except (TypeError, ValueError):
            score = math.nan
        if not math.isfinite(score):
            logger.warning(
                "Skipping search hit %s with non-numeric score %r.",
                hit.get("_id", "<unknown>"),
                hit.get("_score"),
            )
            return None

        metadata = source.get("metadata")
        return SearchResult(
            id=str(doc_id),
            content=str(content),
            score=score,
            metadata=metadata if isinstance(metadata, dict) else {},
        )
