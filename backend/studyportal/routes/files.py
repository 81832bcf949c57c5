"""
Study Portal Backend — Uploaded File Route
============================================

What:  Serves stored PDFs at their recorded retrieval path, /uploads/<filename>.
Who:   Links built from a document's `path` field.

Security:
    FileService.resolve() only returns files directly inside the upload
    directory; anything else is a 404.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse

from studyportal.dependencies import get_file_service
from studyportal.services.file_service import FileService

router = APIRouter(tags=["Files"])


@router.get(
    "/uploads/{filename}",
    summary="Serve an uploaded PDF",
    responses={
        200: {"description": "PDF file", "content": {"application/pdf": {}}},
        404: {"description": "File not found"},
    },
)
async def serve_upload(
    filename: str,
    files: FileService = Depends(get_file_service),
) -> FileResponse:
    path = files.resolve(filename)
    return FileResponse(
        path=str(path),
        media_type="application/pdf",
        content_disposition_type="inline",
        filename=path.name,
        headers={"Cache-Control": "public, max-age=86400"},
    )
