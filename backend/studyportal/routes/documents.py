"""
Study Portal Backend — Document Route Handlers
================================================

What:  Public read endpoints: document list, single document, PDF download.
How:   Extracts query/path parameters, delegates to DocumentService, adds
       payload presence (`hasFile`) from FileService.
Who:   Called by the study portal frontend.

Caching Strategy:
    - GET /api/documents: no-cache (uploads and deletes change the list)
    - GET /api/documents/{id}/file: PDFs are immutable once stored, 24h cache
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import FileResponse

from studyportal.dependencies import get_document_service, get_file_service
from studyportal.schemas.document import Document, DocumentResponse, ErrorResponse
from studyportal.services.document_service import DocumentService
from studyportal.services.file_service import FileService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Documents"])


def build_document_response(document: Document, files: FileService) -> DocumentResponse:
    return DocumentResponse.model_validate(
        {**document.model_dump(), "has_file": files.has_file(document.filename)}
    )


@router.get(
    "/documents",
    response_model=List[DocumentResponse],
    responses={
        200: {"description": "Documents, newest first"},
        400: {"description": "Unknown document type", "model": ErrorResponse},
    },
    summary="List study documents",
    description=(
        "Returns document metadata, newest first, optionally filtered by type "
        "(`material` or `imp-material`). Served from the primary database when it is "
        "reachable and from the local store otherwise."
    ),
)
async def list_documents(
    response: Response,
    type: Optional[str] = Query(default=None, description="material or imp-material"),
    documents: DocumentService = Depends(get_document_service),
    files: FileService = Depends(get_file_service),
) -> List[DocumentResponse]:
    result = await documents.get_documents(type_filter=type)
    response.headers["Cache-Control"] = "no-cache"
    response.headers["X-Total-Count"] = str(len(result))
    return [build_document_response(doc, files) for doc in result]


@router.get(
    "/documents/{document_id}",
    response_model=DocumentResponse,
    responses={
        404: {"description": "Document not found", "model": ErrorResponse},
    },
    summary="Get one document's metadata",
)
async def get_document(
    document_id: str,
    documents: DocumentService = Depends(get_document_service),
    files: FileService = Depends(get_file_service),
) -> DocumentResponse:
    document = await documents.get_document(document_id)
    return build_document_response(document, files)


@router.get(
    "/documents/{document_id}/file",
    summary="Download or view a document's PDF",
    responses={
        200: {"description": "PDF file", "content": {"application/pdf": {}}},
        404: {"description": "Document or file not found", "model": ErrorResponse},
    },
)
async def download_document(
    document_id: str,
    download: bool = Query(default=False, description="Send as attachment instead of inline"),
    documents: DocumentService = Depends(get_document_service),
    files: FileService = Depends(get_file_service),
) -> FileResponse:
    """
    Serve the PDF for a document.

    `download=true` sets Content-Disposition to attachment (save dialog);
    the default is inline (viewer).
    """
    document = await documents.get_document(document_id)
    path = files.resolve(document.filename)
    filename = document.name if document.name.lower().endswith(".pdf") else f"{document.display_name}.pdf"
    return FileResponse(
        path=str(path),
        media_type="application/pdf",
        filename=filename,
        content_disposition_type="attachment" if download else "inline",
        headers={"Cache-Control": "public, max-age=86400"},
    )
