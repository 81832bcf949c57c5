"""
Study Portal Backend — Admin Route Handlers
=============================================

What:  POST /api/admin/documents (upload) and DELETE /api/admin/documents/{id}.
How:   Reads the multipart form, delegates to DocumentService, reports which
       stores hold the result (`database`: primary+fallback, fallback, primary).

Request Flow (upload):
    1. FastAPI parses multipart (python-multipart)
    2. Route rejects a reported size over MAX_FILE_SIZE, then reads the file
    3. DocumentService.add_document() validates, stores, persists, mirrors
    4. 201 with the stored document

Error responses (global exception handlers):
    400  missing metadata, not a PDF, empty or oversized file
    404  unknown document id (delete)
    503  neither store accepted the metadata
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile

from studyportal.dependencies import get_document_service, get_file_service
from studyportal.routes.documents import build_document_response
from studyportal.schemas.document import (
    DeleteResponse,
    DocumentMetadata,
    ErrorResponse,
    UploadResponse,
)
from studyportal.services.document_service import DocumentService
from studyportal.services.file_service import FileService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["Admin"])


@router.post(
    "/documents",
    status_code=201,
    response_model=UploadResponse,
    responses={
        201: {"description": "PDF uploaded", "model": UploadResponse},
        400: {"description": "Invalid metadata or file", "model": ErrorResponse},
        503: {"description": "No store accepted the document", "model": ErrorResponse},
    },
    summary="Upload a PDF study document",
    description=(
        "Upload a PDF (max 10MB) with display name, type and icon. The document is "
        "saved to the local store first and mirrored to the primary database when it "
        "is reachable."
    ),
)
async def upload_document(
    file: UploadFile = File(..., description="PDF file, max 10MB"),
    display_name: Optional[str] = Form(None, alias="displayName"),
    type: Optional[str] = Form(None),
    icon: Optional[str] = Form(None),
    color: Optional[str] = Form(None),
    name: Optional[str] = Form(None),
    documents: DocumentService = Depends(get_document_service),
    files: FileService = Depends(get_file_service),
) -> UploadResponse:
    try:
        files.validate_declared_size(file.size)
        content = await file.read()
        logger.info(
            "Received upload: filename=%s, size=%d bytes",
            file.filename or "unknown",
            len(content),
        )
        result = await documents.add_document(
            metadata=DocumentMetadata(
                display_name=display_name,
                type=type,
                icon=icon,
                color=color,
                name=name,
            ),
            filename=file.filename or "upload.pdf",
            content=content,
            content_length=file.size,
        )
    finally:
        await file.close()

    return UploadResponse(
        document=build_document_response(result.document, files),
        database=result.stores,
    )


@router.delete(
    "/documents/{document_id}",
    response_model=DeleteResponse,
    responses={
        404: {"description": "Document not found", "model": ErrorResponse},
    },
    summary="Delete a document and its PDF",
)
async def delete_document(
    document_id: str,
    documents: DocumentService = Depends(get_document_service),
) -> DeleteResponse:
    result = await documents.delete_document(document_id)
    return DeleteResponse(database=result.stores)
