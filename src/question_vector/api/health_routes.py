from typing import Annotated, Any, Dict

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ..config import settings
from ..service import VectorService
from .dependencies import get_vector_service

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
def health():
    return {"status": "ok", "index": settings.index_name}


@router.get("/cluster")
async def cluster_health(
    service: Annotated[VectorService, Depends(get_vector_service)],
) -> Dict[str, Any]:
    """
    Raw cluster health as reported by the search store.
    """
    status = await service.health.get_health()
    return status.model_dump(mode="json")


@router.get("/embeddings")
async def embeddings_health(
    service: Annotated[VectorService, Depends(get_vector_service)],
):
    """
    Probe the embedding model. Responds 503 while it cannot embed.
    """
    info = await service.generator.get_service_info()
    info["diagnostics"] = service.generator.diagnostics.snapshot().model_dump()

    if info["status"] != "connected":
        return JSONResponse(status_code=503, content=info)
    return info
