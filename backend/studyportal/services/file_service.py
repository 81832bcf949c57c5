"""
Study Portal Backend — File Storage Service
=============================================

What:  Validates, stores, serves and removes uploaded PDF payloads.
How:   Validates extension, size and MIME type, then writes the bytes to the
       upload directory under a generated filename.
Who:   DocumentService (store on upload, cleanup on delete or failed save),
       routes (payload presence, safe path resolution for downloads).
When:  Before any metadata is written for an upload.

Security Model:
    1. Extension check:  only `.pdf`
    2. Size check:       non-empty, at most MAX_FILE_SIZE (10MB by default)
    3. MIME type check:  libmagic inspects the header bytes; must be application/pdf
    4. Generated name:   `<ms timestamp>-<8 hex>.pdf`, no user input reaches the path
    5. Path resolution:  served filenames are resolved inside the upload
                         directory; anything escaping it is rejected

Layout:
    public/uploads/
    ├── 1705312800000-a1b2c3d4.pdf
    └── 1705312800123-e5f6a7b8.pdf

    Retrieval path stored with the metadata: /uploads/<filename>
"""

import logging
import os
import time
import uuid
from pathlib import Path
from typing import Optional, Tuple

import aiofiles

from studyportal.config import settings
from studyportal.exceptions import FileStorageError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

# ── Allowed File Types ────────────────────────────────────────────────────
ALLOWED_MIME_TYPES = {"application/pdf"}
ALLOWED_EXTENSIONS = {".pdf"}

# Retrieval paths stored with document metadata
PUBLIC_PREFIX = "/uploads"


class FileService:
    """
    Manages the PDF payload lifecycle.

    Lifecycle of an uploaded file:
        1. Route reads the multipart upload → DocumentService.add_document()
        2. validate_and_store(): extension → size → MIME → write
        3. Filename and retrieval path are recorded in the document metadata
        4. On failed save or on delete: cleanup_file() removes the payload
    """

    def __init__(self, upload_dir: Optional[str] = None, max_file_size: Optional[int] = None):
        """
        Args:
            upload_dir: Override the configured upload directory (used in tests).
            max_file_size: Override the configured size limit in bytes.
        """
        self.upload_dir = Path(upload_dir or settings.upload_dir).resolve()
        self.max_file_size = max_file_size or settings.max_file_size
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        logger.info("FileService initialized with upload_dir=%s", self.upload_dir)

    # ── Validation ────────────────────────────────────────────────────────

    def validate_extension(self, filename: str) -> str:
        """
        Returns: Normalized extension (lowercase with dot).
        Raises:  ValidationError if the extension is not `.pdf`.
        """
        ext = Path(filename or "").suffix.lower()
        if ext not in ALLOWED_EXTENSIONS:
            raise ValidationError(
                message="Only PDF files are allowed!",
                field="file",
                context={"extension": ext, "allowed": sorted(ALLOWED_EXTENSIONS)},
            )
        return ext

    def validate_declared_size(self, content_length: Optional[int]) -> None:
        """
        Reject an upload whose reported size is over the limit, before its
        bytes are read. An unknown size passes; validate_size() checks the
        real byte count later.
        """
        if content_length and content_length > self.max_file_size:
            max_mb = self.max_file_size / (1024 * 1024)
            raise ValidationError(
                message=f"File size exceeds maximum of {max_mb:.0f}MB.",
                field="file",
                context={"max_size_mb": max_mb, "reported_size": content_length},
            )

    def validate_size(self, content_length: Optional[int], actual_size: int) -> None:
        """
        Checks the Content-Length hint first, then the real byte count.

        Raises:
            ValidationError for empty or oversized payloads.
        """
        max_mb = self.max_file_size / (1024 * 1024)

        if actual_size == 0:
            raise ValidationError(message="The uploaded file is empty.", field="file")

        self.validate_declared_size(content_length)

        if actual_size > self.max_file_size:
            raise ValidationError(
                message=f"File size ({actual_size / (1024 * 1024):.1f}MB) exceeds maximum of {max_mb:.0f}MB.",
                field="file",
                context={"max_size_mb": max_mb, "actual_size": actual_size},
            )

    def detect_mime_type(self, file_content: bytes) -> str:
        """
        Detect the MIME type from the header bytes with libmagic.

        Raises:
            FileStorageError if detection itself fails.
        """
        import magic

        try:
            return magic.from_buffer(file_content[:2048], mime=True)
        except Exception as e:
            logger.error("MIME type detection failed: %s", str(e))
            raise FileStorageError(
                message="Could not verify file type. Please try again.",
                context={"error": str(e)},
            )

    def validate_mime_type(self, file_content: bytes) -> str:
        """
        Returns: Detected MIME type.
        Raises:  ValidationError if the content is not a PDF.
        """
        mime_type = self.detect_mime_type(file_content)
        if mime_type not in ALLOWED_MIME_TYPES:
            raise ValidationError(
                message=f"File content type '{mime_type}' is not supported. The file must be a valid PDF.",
                field="file",
                context={"detected_mime": mime_type, "allowed": sorted(ALLOWED_MIME_TYPES)},
            )
        return mime_type

    # ── Storage ───────────────────────────────────────────────────────────

    @staticmethod
    def generate_filename(extension: str = ".pdf") -> str:
        """`<ms timestamp>-<8 hex chars><ext>`, e.g. 1705312800000-a1b2c3d4.pdf"""
        return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}{extension}"

    @staticmethod
    def public_path(filename: str) -> str:
        return f"{PUBLIC_PREFIX}/{filename}"

    async def store_file(self, content: bytes, extension: str = ".pdf") -> Tuple[str, str]:
        """
        Write validated content to the upload directory.

        Returns: (filename, public_path)
        Raises:  FileStorageError if the write fails.
        """
        filename = self.generate_filename(extension)
        absolute_path = self.upload_dir / filename
        try:
            self.upload_dir.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(absolute_path, "wb") as f:
                await f.write(content)
        except OSError as e:
            logger.error("Failed to store file at %s: %s", absolute_path, str(e))
            raise FileStorageError(
                message="Failed to save uploaded PDF. Please try again.",
                context={"path": str(absolute_path), "os_error": str(e)},
            )

        logger.info("File stored: %s (%d bytes)", filename, len(content))
        return filename, self.public_path(filename)

    async def validate_and_store(
        self,
        filename: str,
        content: bytes,
        content_length: Optional[int] = None,
    ) -> Tuple[str, str]:
        """
        Complete validation and storage pipeline.

        Validation order (cheapest first):
            1. Extension
            2. Size
            3. MIME type via magic bytes
            4. Write to disk

        Returns: (stored filename, public path)
        """
        ext = self.validate_extension(filename)
        self.validate_size(content_length, len(content))
        self.validate_mime_type(content)
        return await self.store_file(content, ext)

    # ── Lookup & Cleanup ──────────────────────────────────────────────────

    def resolve(self, filename: str) -> Path:
        """
        Absolute path of a stored payload.

        Raises:
            NotFoundError: the name escapes the upload directory or no such file exists.
        """
        candidate = (self.upload_dir / filename).resolve()
        if candidate.parent != self.upload_dir or not candidate.is_file():
            raise NotFoundError(resource="file", resource_id=filename)
        return candidate

    def has_file(self, filename: str) -> bool:
        if not filename:
            return False
        try:
            self.resolve(filename)
        except NotFoundError:
            return False
        return True

    async def cleanup_file(self, filename: str) -> None:
        """
        Remove a payload if present.

        Best-effort: a missing file is only logged at debug level and OS
        errors are logged as warnings, never raised.
        """
        if not filename:
            return
        path = self.upload_dir / Path(filename).name
        try:
            if path.exists():
                os.remove(path)
                logger.info("Cleaned up file: %s", path.name)
            else:
                logger.debug("Cleanup: file already gone: %s", path.name)
        except OSError as e:
            logger.warning("Failed to clean up file %s: %s", filename, str(e))
