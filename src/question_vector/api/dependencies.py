from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from ..config import settings
from ..embeddings.embedder import EmbeddingGenerator
from ..service import VectorService


@lru_cache
def get_vector_service() -> VectorService:
    # One model handle and one store client per process.
    return VectorService.from_settings(settings)


def get_generator(
    service: Annotated[VectorService, Depends(get_vector_service)],
) -> EmbeddingGenerator:
    return service.generator
