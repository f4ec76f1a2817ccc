"""
Vector Index Data Models

This module defines the canonical shapes exchanged with the search store:
the index schema (rendered into an OpenSearch k-NN mapping), the documents
written to it, the ranked results read back, and the cluster health snapshot.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Sequence

from pydantic import BaseModel, ConfigDict, Field


class SimilarityMetric(str, Enum):
    COSINE = "cosine"
    L2 = "l2"

    @property
    def space_type(self) -> str:
        """OpenSearch k-NN space type for this metric."""
        return "cosinesimil" if self is SimilarityMetric.COSINE else "l2"


class ClusterStatus(str, Enum):
    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"


class IndexSchema(BaseModel):
    """
    Declaration of one vector index.

    The vector field's dimension must equal the model's embedding dimension;
    the schema manager refuses a schema that disagrees.
    """

    name: str = Field(
        ...,
        min_length=1,
        description="Index name in the search store.",
    )

    dimension: int = Field(
        ...,
        gt=0,
        description="Width of the knn_vector field.",
    )

    metric: SimilarityMetric = Field(
        default=SimilarityMetric.COSINE,
        description="Similarity metric used by nearest-neighbour queries.",
    )

    metadata_fields: Dict[str, str] = Field(
        default_factory=dict,
        description="Metadata field name -> store field type (e.g. keyword).",
    )

    vector_field: str = "embedding"

    model_config = ConfigDict(extra="forbid", frozen=True)

    @classmethod
    def with_keyword_fields(
        cls,
        name: str,
        dimension: int,
        metric: SimilarityMetric = SimilarityMetric.COSINE,
        fields: Sequence[str] = (),
    ) -> "IndexSchema":
        return cls(
            name=name,
            dimension=dimension,
            metric=metric,
            metadata_fields={field: "keyword" for field in fields},
        )

    def to_mapping(self) -> Dict[str, Any]:
        """Render the OpenSearch create-index body."""
        return {
            "settings": {
                "index": {
                    "knn": True,
                },
            },
            "mappings": {
                "properties": {
                    "document_id": {"type": "keyword"},
                    "content": {"type": "text"},
                    self.vector_field: {
                        "type": "knn_vector",
                        "dimension": self.dimension,
                        "method": {
                            "name": "hnsw",
                            "space_type": self.metric.space_type,
                            "engine": "lucene",
                        },
                    },
                    "metadata": {
                        "type": "object",
                        "properties": {
                            field: {"type": field_type}
                            for field, field_type in self.metadata_fields.items()
                        },
                    },
                    "created_at": {"type": "date"},
                },
            },
        }


class Document(BaseModel):
    """
    A document with its embedding.

    Writes are full replacements keyed by ``id``; the embedding width is
    checked by the writer, not here, so the check happens before any I/O.
    """

    id: str = Field(..., min_length=1)
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    embedding: List[float]

    model_config = ConfigDict(extra="forbid", frozen=True)


class SearchResult(BaseModel):
    """A single ranked hit from a similarity search."""

    id: str
    content: str
    score: float
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid", frozen=True)


class HealthStatus(BaseModel):
    """
    Read-only cluster health snapshot.

    Extra fields reported by the store are kept, so ``model_dump(mode="json")``
    reproduces the store's payload exactly.
    """

    status: ClusterStatus
    cluster_name: str

    model_config = ConfigDict(extra="allow", frozen=True)
