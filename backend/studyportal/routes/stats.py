"""
Study Portal Backend — Stats Route Handlers
=============================================

What:  Document counts per type and the site visit counter.
Who:   Dashboard widgets on the portal's landing page.
"""

from fastapi import APIRouter, Depends

from studyportal.dependencies import get_document_service
from studyportal.schemas.document import CountsResponse, VisitsResponse
from studyportal.services.document_service import DocumentService

router = APIRouter(prefix="/api/stats", tags=["Stats"])


@router.get("/counts", response_model=CountsResponse, summary="Document counts by type")
async def get_counts(
    documents: DocumentService = Depends(get_document_service),
) -> CountsResponse:
    counts = await documents.get_counts()
    return CountsResponse(
        material_count=counts.material,
        imp_material_count=counts.imp_material,
        total_count=counts.total,
    )


@router.get("/visits", response_model=VisitsResponse, summary="Current visit count")
async def get_visits(
    documents: DocumentService = Depends(get_document_service),
) -> VisitsResponse:
    return VisitsResponse(visits=await documents.get_visits())


@router.post("/visits", response_model=VisitsResponse, summary="Record one visit")
async def record_visit(
    documents: DocumentService = Depends(get_document_service),
) -> VisitsResponse:
    return VisitsResponse(visits=await documents.record_visit())
