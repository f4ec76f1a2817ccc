from typing import Annotated, List

from fastapi import APIRouter, Depends

from .dependencies import get_vector_service
from .models import SearchRequest
from ..index.models import SearchResult
from ..service import VectorService

router = APIRouter(prefix="/search", tags=["search"])


@router.post("", response_model=List[SearchResult])
async def search(
    req: SearchRequest,
    service: Annotated[VectorService, Depends(get_vector_service)],
) -> List[SearchResult]:
    """
    k-nearest-neighbour search by query text or by raw vector.
    Results are ordered by descending score.
    """
    if req.query is not None:
        return await service.search_text(req.query, req.k)
    return await service.searcher.search_similar(req.vector, req.k)
