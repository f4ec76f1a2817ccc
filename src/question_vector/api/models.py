"""
API Models

Pydantic request/response models for the embedding, document, search and
health endpoints.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

class OperationResult(BaseModel):
    """
    Standardized mutation operation result.
    Used for create/update/delete-style endpoints.
    """
    status: Literal["updated", "deleted", "not_found"]
    id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------
# Embeddings
# ---------------------------------------------------------------------

class EmbeddingRequest(BaseModel):
    text: str

    model_config = ConfigDict(extra="forbid")


class EmbeddingResponse(BaseModel):
    embedding: List[float]
    dimension: int


class BatchEmbeddingRequest(BaseModel):
    texts: List[str] = Field(..., max_length=1000)

    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------
# Documents & Search
# ---------------------------------------------------------------------

class DocumentUpsertRequest(BaseModel):
    """
    Document body. When ``embedding`` is omitted the content is embedded
    server-side.
    """
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    embedding: Optional[List[float]] = None

    model_config = ConfigDict(extra="forbid")


class SearchRequest(BaseModel):
    """
    Similarity search by query text or by a precomputed vector (exactly one).
    """
    query: Optional[str] = None
    vector: Optional[List[float]] = None
    k: int = Field(default=5, ge=1, le=100)

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _one_of_query_or_vector(self) -> "SearchRequest":
        if (self.query is None) == (self.vector is None):
            raise ValueError("Provide exactly one of 'query' or 'vector'.")
        return self
