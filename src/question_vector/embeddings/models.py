"""
Embedding Data Models

This module defines the configuration and result models shared by the model
handle, the inference queue, and the embedding generator.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, List

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from ..config import Settings


class HandleState(str, Enum):
    """Lifecycle of a ModelHandle."""

    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    DISPOSED = "disposed"


class ModelConfig(BaseModel):
    """
    Immutable configuration of one loaded inference model.

    The embedding dimension declared here is authoritative: every vector the
    handle produces, and every vector the index stores or queries with, must
    have exactly this many elements.
    """

    model_path: str = Field(
        ...,
        min_length=1,
        description="Filesystem path (or runtime model name) of the model artifact.",
    )

    thread_count: int = Field(
        default=4,
        gt=0,
        description="Inference parallelism inside the runtime.",
    )

    context_size: int = Field(
        default=2048,
        gt=0,
        description="Maximum input tokens per inference call.",
    )

    batch_size: int = Field(
        default=512,
        gt=0,
        description="Maximum tokens processed per inference batch.",
    )

    embedding_dimension: int = Field(
        ...,
        gt=0,
        description="Expected output width of every embedding.",
    )

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        protected_namespaces=(),
    )

    @classmethod
    def from_settings(cls, settings: "Settings") -> "ModelConfig":
        if settings.model_runtime == "ollama":
            model_path = settings.ollama_model
        else:
            model_path = settings.model_path

        return cls(
            model_path=model_path,
            thread_count=settings.model_thread_count,
            context_size=settings.model_context_size,
            batch_size=settings.model_batch_size,
            embedding_dimension=settings.embedding_dimension,
        )


class EmbeddingFailure(BaseModel):
    """One batch item that fell back to the sentinel vector."""

    index: int = Field(..., ge=0)
    error: str
    attempts: int = Field(..., ge=1)

    model_config = ConfigDict(extra="forbid", frozen=True)


class BatchEmbeddingResult(BaseModel):
    """
    Embeddings for one batch plus the items that failed.

    ``embeddings`` is always positionally aligned with the input texts;
    slots listed in ``failures`` hold the all-zero sentinel.
    """

    embeddings: List[List[float]]
    failures: List[EmbeddingFailure] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")

    @property
    def failed_indexes(self) -> List[int]:
        return [failure.index for failure in self.failures]


class DiagnosticsSnapshot(BaseModel):
    """Cumulative batch embedding counters."""

    batches: int = 0
    items: int = 0
    retries: int = 0
    sentinels: int = 0
    recent_failures: List[EmbeddingFailure] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")
