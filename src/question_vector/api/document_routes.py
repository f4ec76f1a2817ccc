"""
Document Routes

Create, replace and delete documents in the vector index.
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from .dependencies import get_vector_service
from .models import DocumentUpsertRequest, OperationResult
from ..index.models import Document
from ..service import VectorService

router = APIRouter(prefix="/documents", tags=["documents"])


@router.put(
    "/{doc_id}",
    summary="Create or replace a document",
    response_model=OperationResult,
)
async def upsert_document(
    doc_id: str,
    req: DocumentUpsertRequest,
    service: Annotated[VectorService, Depends(get_vector_service)],
) -> OperationResult:
    """
    Store a document under ``doc_id``.

    Workflow
    --------
    1. Embed the content unless a precomputed embedding is supplied.
    2. Write the document (the writer checks the vector width first).
    """
    if req.embedding is None:
        await service.index_text(doc_id, req.content, req.metadata)
        embedded = True
    else:
        await service.writer.store_document(
            Document(
                id=doc_id,
                content=req.content,
                metadata=req.metadata,
                embedding=req.embedding,
            )
        )
        embedded = False

    return OperationResult(
        status="updated",
        id=doc_id,
        details={"embedded": embedded},
    )


@router.delete(
    "/{doc_id}",
    summary="Delete a document",
    response_model=OperationResult,
)
async def delete_document(
    doc_id: str,
    service: Annotated[VectorService, Depends(get_vector_service)],
) -> OperationResult:
    deleted = await service.writer.delete_document(doc_id)
    return OperationResult(status="deleted" if deleted else "not_found", id=doc_id)
