"""
Study Portal Backend — Document Service (Unified Access Façade)
=================================================================

What:  Single entry point for document reads and writes used by the routes.
How:   Composes LocalStore, PrimaryStoreClient, FileService and SyncState.
Who:   Route handlers, through the StoragePortal container.
When:  Every document request.

Write path (add_document):
    ┌──────────┐    ┌─────────────┐    ┌──────────────┐    ┌──────────────┐
    │ Validate │───▶│ Store PDF   │───▶│ Local store  │───▶│ Primary      │
    │ metadata │    │ (FileServ)  │    │ append       │    │ (if up)      │
    └──────────┘    └─────────────┘    └──────────────┘    └──────────────┘

    Local append fails, primary succeeds  → success, record lives in the primary
    Local append succeeds, primary fails  → success, record stays pending
    Both fail                             → StorageError, PDF removed again

Read path:
    Primary reachable   → primary results, plus local pending records, minus
                          ids tombstoned locally
    Primary unreachable → local store
    A primary failure mid-read flips reachability and the same call is
    answered from the local store.

Ownership:
    The local store decides whether a document exists. The primary decides
    the content of synced records while it is reachable.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from studyportal.exceptions import (
    LocalStoreWriteError,
    NotFoundError,
    PrimaryUnavailableError,
    StorageError,
    ValidationError,
)
from studyportal.schemas.document import (
    DEFAULT_COLOR,
    DOCUMENT_TYPES,
    Document,
    DocumentCounts,
    DocumentMetadata,
    DocumentOrigin,
)
from studyportal.services.file_service import FileService
from studyportal.services.local_store import LocalSnapshot, LocalStore
from studyportal.services.primary_store import PrimaryStoreClient
from studyportal.services.sync_state import SyncState, SyncStateSnapshot

logger = logging.getLogger(__name__)

# Labels reported to clients for where a write landed
STORES_BOTH = "primary+fallback"
STORES_LOCAL = "fallback"
STORES_PRIMARY = "primary"


@dataclass
class WriteResult:
    document: Document
    stores: str


def _newest_first(documents: List[Document]) -> List[Document]:
    return sorted(documents, key=lambda doc: doc.date_added, reverse=True)


class DocumentService:
    """
    Business logic layer for study documents.

    Responsibilities:
        - get_documents() / get_document() / get_counts(): routed reads
        - add_document(): validate → store PDF → local append → mirror
        - delete_document(): local removal, primary removal or tombstone
        - get_status(), record_visit(), get_visits()
    """

    def __init__(
        self,
        local: LocalStore,
        primary: PrimaryStoreClient,
        files: FileService,
        state: SyncState,
        default_color: str = DEFAULT_COLOR,
    ):
        self.local = local
        self.primary = primary
        self.files = files
        self.state = state
        self.default_color = default_color

    # ── Helpers ───────────────────────────────────────────────────────────

    async def refresh_pending(self) -> LocalSnapshot:
        snapshot = await self.local.snapshot()
        self.state.record_pending(len(snapshot.pending), len(snapshot.pending_deletes))
        return snapshot

    @staticmethod
    def _validate_type_filter(type_filter: Optional[str]) -> Optional[str]:
        if type_filter is not None and type_filter not in DOCUMENT_TYPES:
            raise ValidationError(
                message=f"Unknown document type '{type_filter}'. Expected one of: {', '.join(DOCUMENT_TYPES)}",
                field="type",
            )
        return type_filter

    def validate_metadata(self, metadata: DocumentMetadata) -> Dict[str, str]:
        """
        Check required admin metadata.

        Returns: cleaned values keyed by Document field name.
        Raises:  ValidationError listing every missing field, or for an unknown type.
        """
        values = {
            "displayName": (metadata.display_name or "").strip(),
            "type": (metadata.type or "").strip(),
            "icon": (metadata.icon or "").strip(),
        }
        missing = [key for key, value in values.items() if not value]
        if missing:
            raise ValidationError(
                message=f"Missing required fields: {', '.join(missing)}",
                field=missing[0],
                context={"missing": missing},
            )
        self._validate_type_filter(values["type"])
        return {
            "display_name": values["displayName"],
            "type": values["type"],
            "icon": values["icon"],
            "color": (metadata.color or "").strip() or self.default_color,
            "name": (metadata.name or "").strip(),
        }

    @staticmethod
    def _merge_with_local(
        primary_docs: List[Document],
        snapshot: LocalSnapshot,
        type_filter: Optional[str],
    ) -> List[Document]:
        tombstoned = set(snapshot.pending_deletes)
        local_ids = {doc.id for doc in snapshot.documents}
        merged: Dict[str, Document] = {}
        for doc in primary_docs:
            if doc.id in tombstoned:
                continue
            origin = DocumentOrigin.BOTH if doc.id in local_ids else DocumentOrigin.PRIMARY
            merged[doc.id] = doc.model_copy(update={"origin": origin})
        for doc in snapshot.pending:
            if type_filter and doc.type != type_filter:
                continue
            merged[doc.id] = doc.model_copy(update={"origin": DocumentOrigin.LOCAL})
        return list(merged.values())

    # ── Reads ─────────────────────────────────────────────────────────────

    async def get_documents(self, type_filter: Optional[str] = None) -> List[Document]:
        """All documents (optionally of one type), newest first."""
        self._validate_type_filter(type_filter)
        snapshot = await self.local.snapshot()

        if self.state.primary_reachable:
            try:
                primary_docs = await self.primary.find({"type": type_filter})
            except PrimaryUnavailableError:
                logger.warning("Primary read failed; serving document list from the local store")
            else:
                return _newest_first(self._merge_with_local(primary_docs, snapshot, type_filter))

        docs = [
            doc.model_copy(update={"origin": DocumentOrigin.LOCAL})
            for doc in snapshot.documents
            if type_filter is None or doc.type == type_filter
        ]
        return _newest_first(docs)

    async def get_document(self, document_id: str) -> Document:
        """
        Raises:
            NotFoundError: unknown id, or an id deleted locally.
        """
        snapshot = await self.local.snapshot()
        if document_id in snapshot.pending_deletes:
            raise NotFoundError(resource="Document", resource_id=document_id)
        local_doc = snapshot.find(document_id)

        if self.state.primary_reachable and not (local_doc is not None and local_doc.pending):
            try:
                doc = await self.primary.get_by_id(document_id)
            except PrimaryUnavailableError:
                logger.warning("Primary read failed; serving document %s from the local store", document_id)
            else:
                if doc is not None:
                    origin = DocumentOrigin.BOTH if local_doc is not None else DocumentOrigin.PRIMARY
                    return doc.model_copy(update={"origin": origin})

        if local_doc is None:
            raise NotFoundError(resource="Document", resource_id=document_id)
        return local_doc.model_copy(update={"origin": DocumentOrigin.LOCAL})

    async def get_counts(self) -> DocumentCounts:
        """Per-type and total counts, with the same store routing as reads."""
        by_type = {doc_type: 0 for doc_type in DOCUMENT_TYPES}

        if self.state.primary_reachable:
            snapshot = await self.local.snapshot()
            try:
                if snapshot.pending or snapshot.pending_deletes:
                    docs = self._merge_with_local(await self.primary.find(), snapshot, None)
                    for doc in docs:
                        by_type[doc.type] = by_type.get(doc.type, 0) + 1
                else:
                    by_type.update(await self.primary.count_grouped())
                return DocumentCounts(by_type=by_type, total=sum(by_type.values()))
            except PrimaryUnavailableError:
                logger.warning("Primary count failed; counting from the local store")
                by_type = {doc_type: 0 for doc_type in DOCUMENT_TYPES}

        for doc in await self.local.read_all():
            by_type[doc.type] = by_type.get(doc.type, 0) + 1
        return DocumentCounts(by_type=by_type, total=sum(by_type.values()))

    # ── Writes ────────────────────────────────────────────────────────────

    async def add_document(
        self,
        metadata: DocumentMetadata,
        filename: str,
        content: bytes,
        content_length: Optional[int] = None,
    ) -> WriteResult:
        """
        Validate and persist a new PDF with its metadata.

        Raises:
            ValidationError: missing metadata or an invalid payload (nothing stored)
            FileStorageError: the PDF could not be written
            StorageError: neither store accepted the metadata (PDF removed again)
        """
        fields = self.validate_metadata(metadata)
        stored_filename, public_path = await self.files.validate_and_store(
            filename=filename,
            content=content,
            content_length=content_length,
        )

        document = Document(
            name=fields["name"] or filename,
            display_name=fields["display_name"],
            filename=stored_filename,
            path=public_path,
            type=fields["type"],
            icon=fields["icon"],
            color=fields["color"],
            size_bytes=len(content),
            synced=False,
        )

        local_error: Optional[LocalStoreWriteError] = None
        try:
            document = await self.local.append(document)
        except LocalStoreWriteError as e:
            local_error = e
            document = document.model_copy(update={"id": LocalStore.generate_id(())})
            logger.error("Local store rejected %s: %s", document.id, e.message)

        mirrored = False
        if self.state.primary_reachable:
            try:
                await self.primary.insert_many([document])
                mirrored = True
            except PrimaryUnavailableError as e:
                logger.warning(
                    "Document %s not mirrored, kept pending: %s",
                    document.id,
                    e.context.get("error", e.message),
                )

        if local_error is not None and not mirrored:
            await self.files.cleanup_file(stored_filename)
            raise StorageError(
                context={"local_error": local_error.context, "primary_reachable": self.state.primary_reachable},
            )

        if local_error is not None:
            logger.warning("Document %s stored in the primary database only", document.id)
            stores = STORES_PRIMARY
            document = document.model_copy(update={"synced": True, "origin": DocumentOrigin.PRIMARY})
        elif mirrored:
            stores = STORES_BOTH
            try:
                await self.local.mark_synced([document.id])
                document = document.model_copy(update={"synced": True, "origin": DocumentOrigin.BOTH})
            except LocalStoreWriteError as e:
                logger.warning("Document %s mirrored but still marked pending locally: %s", document.id, e.message)
            if await self.local.get_by_id(document.id) is None:
                await self._retract_mirror(document.id)
        else:
            stores = STORES_LOCAL

        await self.refresh_pending()
        logger.info("Document added: %s '%s' (%s)", document.id, document.display_name, stores)
        return WriteResult(document=document, stores=stores)

    async def delete_document(self, document_id: str) -> WriteResult:
        """
        Delete a document's metadata and its PDF.

        The local removal writes a tombstone. While the primary is reachable
        the id is deleted there too and the tombstone dropped; otherwise the
        tombstone queues the deletion for reconciliation. For a pending
        record the primary delete is a no-op unless a mirror write raced
        with this call.

        Raises:
            NotFoundError: the id is unknown locally and (when reachable) in the primary.
        """
        removed = await self.local.remove_by_id(document_id, tombstone=True)

        if removed is None:
            return await self._delete_primary_only(document_id)

        await self.files.cleanup_file(removed.filename)
        stores = STORES_LOCAL

        if self.state.primary_reachable:
            try:
                held = await self.primary.delete_by_id(document_id)
            except PrimaryUnavailableError:
                logger.warning("Primary delete of %s failed; queued for reconciliation", document_id)
            else:
                if removed.synced or held:
                    stores = STORES_BOTH
                await self._drop_tombstone(document_id)
        else:
            logger.info("Primary unreachable; deletion of %s queued for reconciliation", document_id)

        await self.refresh_pending()
        logger.info("Document deleted: %s (%s)", document_id, stores)
        return WriteResult(document=removed, stores=stores)

    async def _retract_mirror(self, document_id: str) -> None:
        """Undo a mirror write whose local record was deleted meanwhile."""
        logger.warning("Document %s was deleted while being mirrored; removing it from the primary", document_id)
        try:
            await self.local.queue_deletes([document_id])
        except LocalStoreWriteError as e:
            logger.warning("Could not tombstone %s: %s", document_id, e.message)
        try:
            await self.primary.delete_by_id(document_id)
        except PrimaryUnavailableError:
            logger.warning("Primary delete of %s failed; queued for reconciliation", document_id)
        else:
            await self._drop_tombstone(document_id)

    async def _drop_tombstone(self, document_id: str) -> None:
        try:
            await self.local.drop_tombstones([document_id])
        except LocalStoreWriteError as e:
            # Replaying an applied delete is a no-op.
            logger.warning("Tombstone for %s kept: %s", document_id, e.message)

    async def _delete_primary_only(self, document_id: str) -> WriteResult:
        if not self.state.primary_reachable:
            raise NotFoundError(resource="Document", resource_id=document_id)
        try:
            doc = await self.primary.get_by_id(document_id)
            if doc is None:
                raise NotFoundError(resource="Document", resource_id=document_id)
            await self.primary.delete_by_id(document_id)
        except PrimaryUnavailableError:
            raise NotFoundError(resource="Document", resource_id=document_id)
        await self.files.cleanup_file(doc.filename)
        logger.info("Document deleted from the primary database only: %s", document_id)
        return WriteResult(document=doc, stores=STORES_PRIMARY)

    # ── Status & Visits ───────────────────────────────────────────────────

    async def get_status(self) -> SyncStateSnapshot:
        await self.refresh_pending()
        return self.state.snapshot()

    async def record_visit(self) -> int:
        return await self.local.record_visit()

    async def get_visits(self) -> int:
        return await self.local.get_visits()
