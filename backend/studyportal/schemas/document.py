"""
Study Portal Backend — Document Types & API Schemas
=====================================================

What:  Pydantic models for the store-agnostic Document record and the API
       contract between frontend and backend.
How:   Python attributes are snake_case; JSON (both the API and the local
       snapshot file) uses camelCase aliases, e.g. display_name ↔ displayName.
Who:   Every store and service exchanges `Document`; routes return the
       response models below.

Why one Document type for both stores:
    The local snapshot and the primary table hold the same fields. A single
    typed record with explicit optional fields replaces ad hoc dict merging;
    `origin` tags where a copy was read from.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DocumentType = Literal["material", "imp-material"]
DOCUMENT_TYPES = ("material", "imp-material")

DEFAULT_COLOR = "#6a11cb"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentOrigin(str, Enum):
    """Where a copy of a document was read from."""
    LOCAL = "local"
    PRIMARY = "primary"
    BOTH = "both"


# ══════════════════════════════════════════════════════════════════════════
# Domain Record
# ══════════════════════════════════════════════════════════════════════════


class Document(BaseModel):
    """
    One uploaded study document (metadata only; the PDF lives on disk).

    Residency:
        synced=False  → pending: only in the local store, awaiting mirroring
        synced=True   → present in the primary store as well

    `origin` is never serialized; it only exists on in-memory copies.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default="", description="Writer-assigned id, identical in both stores")
    name: str = Field(default="", description="Original document name")
    display_name: str = Field(alias="displayName", description="Title shown to users")
    filename: str = Field(default="", description="Stored payload filename")
    path: str = Field(default="", description="Retrieval path of the payload")
    type: DocumentType = Field(description="material or imp-material")
    icon: str = Field(description="Icon identifier, e.g. fa-book")
    color: str = Field(default=DEFAULT_COLOR)
    date_added: datetime = Field(default_factory=utcnow, alias="dateAdded")
    size_bytes: Optional[int] = Field(default=None, alias="sizeBytes")
    synced: bool = Field(default=False)
    origin: DocumentOrigin = Field(default=DocumentOrigin.LOCAL, exclude=True)

    @field_validator("date_added")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        """Naive timestamps (SQLite, older snapshots) are taken as UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def pending(self) -> bool:
        return not self.synced

    def to_json(self) -> dict:
        """Snapshot/API representation (camelCase, ISO timestamps)."""
        return self.model_dump(by_alias=True, mode="json")


class DocumentMetadata(BaseModel):
    """
    Raw admin-supplied metadata for a new upload.

    All fields are optional; DocumentService checks the required ones and
    reports what is missing as a 400.
    """
    display_name: Optional[str] = None
    type: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    name: Optional[str] = None


class DocumentCounts(BaseModel):
    """Per-type and total document counts."""
    by_type: Dict[str, int] = Field(default_factory=dict, alias="byType")
    total: int = 0

    model_config = ConfigDict(populate_by_name=True)

    @property
    def material(self) -> int:
        return self.by_type.get("material", 0)

    @property
    def imp_material(self) -> int:
        return self.by_type.get("imp-material", 0)


# ══════════════════════════════════════════════════════════════════════════
# Response Models — What the API returns to clients
# ══════════════════════════════════════════════════════════════════════════


class DocumentResponse(Document):
    """
    What:  Document metadata plus payload presence.
    Who:   GET /api/documents, GET /api/documents/{id}, POST /api/admin/documents.
    """
    has_file: bool = Field(default=False, alias="hasFile")


class UploadResponse(BaseModel):
    success: bool = True
    message: str = "PDF uploaded successfully!"
    document: DocumentResponse
    database: str = Field(description="Stores holding the document: primary+fallback or fallback")


class DeleteResponse(BaseModel):
    success: bool = True
    message: str = "PDF deleted successfully"
    database: str


class CountsResponse(BaseModel):
    """Shape kept from the original public API."""
    material_count: int = Field(alias="materialCount")
    imp_material_count: int = Field(alias="impMaterialCount")
    total_count: int = Field(alias="totalCount")

    model_config = ConfigDict(populate_by_name=True)


class VisitsResponse(BaseModel):
    visits: int


class DatabaseHealth(BaseModel):
    primary: str = Field(description="connected or disconnected")
    fallback: str = Field(default="active")


class DataHealth(BaseModel):
    total: int
    by_type: Dict[str, int] = Field(alias="byType")
    fallback_count: int = Field(alias="fallbackCount")

    model_config = ConfigDict(populate_by_name=True)


class HealthResponse(BaseModel):
    """
    What:  Health check response showing service and store status.
    Who:   GET /api/health.
    """
    status: str = Field(default="OK")
    version: str
    database: DatabaseHealth
    data: DataHealth
    uptime_seconds: float = Field(alias="uptimeSeconds")

    model_config = ConfigDict(populate_by_name=True)


class FallbackStatus(BaseModel):
    count: int
    visits: int
    last_updated: Optional[str] = Field(default=None, alias="lastUpdated")

    model_config = ConfigDict(populate_by_name=True)


class SyncStatusResponse(BaseModel):
    pending_count: int = Field(alias="pendingCount")
    pending_delete_count: int = Field(alias="pendingDeleteCount")
    last_sync_time: Optional[datetime] = Field(default=None, alias="lastSyncTime")
    next_reconnect_at: Optional[datetime] = Field(default=None, alias="nextReconnectAt")
    last_error: Optional[str] = Field(default=None, alias="lastError")

    model_config = ConfigDict(populate_by_name=True)


class DatabaseStatusResponse(BaseModel):
    """
    What:  Diagnostic snapshot of both stores and the sync state.
    Who:   GET /api/database/status.
    """
    primary: str
    fallback: FallbackStatus
    sync: SyncStatusResponse


class ReconciliationSummary(BaseModel):
    upserted: int = 0
    deleted: int = 0
    refreshed: int = 0


class ReconnectResponse(BaseModel):
    success: bool
    message: str
    connected: bool
    reconciliation: Optional[ReconciliationSummary] = None


class ErrorResponse(BaseModel):
    """
    Standardized error response format for all API errors.

    Example:
        {
            "error": "validation_error",
            "message": "Missing required fields: displayName, icon",
            "details": {"field": "displayName"},
            "request_id": "a1b2c3d4"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


__all__: List[str] = [
    "DEFAULT_COLOR",
    "DOCUMENT_TYPES",
    "Document",
    "DocumentCounts",
    "DocumentMetadata",
    "DocumentOrigin",
    "DocumentResponse",
    "DocumentType",
]
