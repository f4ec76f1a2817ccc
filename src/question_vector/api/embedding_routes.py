"""
Embeddings Routes

This module exposes the embedding generator directly:
- Embedding one text
- Embedding a batch of texts with per-item failure reporting
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from .dependencies import get_generator
from .models import BatchEmbeddingRequest, EmbeddingRequest, EmbeddingResponse
from ..embeddings.embedder import EmbeddingGenerator
from ..embeddings.models import BatchEmbeddingResult

router = APIRouter(prefix="/embeddings", tags=["embeddings"])


@router.post(
    "",
    response_model=EmbeddingResponse,
    summary="Embed a single text",
)
async def embed_text(
    req: EmbeddingRequest,
    generator: Annotated[EmbeddingGenerator, Depends(get_generator)],
) -> EmbeddingResponse:
    # Global exception handlers map model failures to 4xx/5xx
    vector = await generator.generate_embedding(req.text)
    return EmbeddingResponse(embedding=vector, dimension=len(vector))


@router.post(
    "/batch",
    response_model=BatchEmbeddingResult,
    summary="Embed a batch of texts",
)
async def embed_batch(
    req: BatchEmbeddingRequest,
    generator: Annotated[EmbeddingGenerator, Depends(get_generator)],
) -> BatchEmbeddingResult:
    """
    Embed every text in order.

    Items that fail twice come back as all-zero vectors and are listed in
    ``failures``; the request itself still succeeds.
    """
    return await generator.generate_batch_embeddings_with_report(req.texts)
