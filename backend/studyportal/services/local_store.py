"""
Study Portal Backend — Durable Local Store
============================================

What:  JSON snapshot file that always accepts reads and writes, whatever the
       state of the primary database.
How:   Every mutation reads the full snapshot, applies the change, and
       rewrites the file atomically (write to `<file>.tmp`, then os.replace).
       An asyncio.Lock serializes mutations so read-modify-write windows of
       concurrent requests never interleave.
Who:   DocumentService (writes land here first), ReconciliationEngine
       (pending set, tombstones, mirror refresh), status endpoints.

Snapshot format:
    {
        "documents": [ {Document as camelCase JSON, incl. "synced"}, ... ],
        "pendingDeletes": ["<id>", ...],
        "visits": 0,
        "lastUpdated": "2024-01-15T12:00:00+00:00"
    }

    documents:       every known document; synced=false marks a pending one
    pendingDeletes:  ids deleted locally that the primary may still hold
                     (replayed on reconnect, dropped once applied)
    visits:          site visit counter

A snapshot written by the earlier Node server stores documents under "pdfs";
it is still read, with every entry treated as pending.

Failure handling:
    Unreadable or corrupt file → logged, moved aside to
    `<file>.corrupt-<timestamp>`, treated as empty. Reads never raise.
    Write failure → LocalStoreWriteError.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import aiofiles
import aiofiles.os
from pydantic import ValidationError as PydanticValidationError

from studyportal.exceptions import LocalStoreCorruptionError, LocalStoreWriteError
from studyportal.schemas.document import Document, DocumentOrigin

logger = logging.getLogger(__name__)


@dataclass
class LocalSnapshot:
    """In-memory form of the snapshot file."""
    documents: List[Document] = field(default_factory=list)
    pending_deletes: List[str] = field(default_factory=list)
    visits: int = 0
    last_updated: Optional[str] = None

    @property
    def pending(self) -> List[Document]:
        return [doc for doc in self.documents if not doc.synced]

    def find(self, document_id: str) -> Optional[Document]:
        for doc in self.documents:
            if doc.id == document_id:
                return doc
        return None

    def to_json(self) -> dict:
        return {
            "documents": [doc.to_json() for doc in self.documents],
            "pendingDeletes": list(self.pending_deletes),
            "visits": self.visits,
            "lastUpdated": self.last_updated,
        }


class LocalStore:
    """
    Always-available persistence for document metadata.

    The store holds every document, not just pending ones: when the primary
    database is down, reads are answered from here, so synced records must be
    kept too. "Pruning" a reconciled record means flipping it to synced.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    # ── Snapshot I/O ──────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Create an empty snapshot when none exists yet."""
        async with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            if await aiofiles.os.path.exists(self.path):
                snapshot = await self._read()
                # A corrupt file has been moved aside by _read(); recreate it below.
                if await aiofiles.os.path.exists(self.path):
                    logger.info(
                        "Local store loaded: %s (%d documents, %d pending)",
                        self.path,
                        len(snapshot.documents),
                        len(snapshot.pending),
                    )
                    return
            await self._write(LocalSnapshot())
            logger.info("Local store created: %s", self.path)

    @staticmethod
    def _parse(raw: str) -> LocalSnapshot:
        """
        Parse snapshot text.

        Raises:
            LocalStoreCorruptionError: invalid JSON or wrong top-level shape.
                Individual malformed documents are skipped with a warning.
        """
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise LocalStoreCorruptionError(context={"error": str(e)})
        if not isinstance(data, dict):
            raise LocalStoreCorruptionError(
                context={"error": f"top level is {type(data).__name__}, expected object"}
            )

        legacy = "documents" not in data and "pdfs" in data
        items = data.get("pdfs" if legacy else "documents") or []
        if not isinstance(items, list):
            raise LocalStoreCorruptionError(context={"error": "documents is not a list"})

        documents: List[Document] = []
        seen = set()
        for item in items:
            try:
                doc = Document.model_validate(item)
            except PydanticValidationError as e:
                logger.warning("Skipping malformed document in local store: %s", e.errors()[:1])
                continue
            if not doc.id or doc.id in seen:
                logger.warning("Skipping document with missing or duplicate id: %r", doc.id)
                continue
            if legacy:
                doc.synced = False
            seen.add(doc.id)
            documents.append(doc)

        pending_deletes = [str(i) for i in data.get("pendingDeletes") or [] if i]
        try:
            visits = int(data.get("visits") or 0)
        except (TypeError, ValueError):
            visits = 0

        return LocalSnapshot(
            documents=documents,
            pending_deletes=pending_deletes,
            visits=visits,
            last_updated=data.get("lastUpdated"),
        )

    async def _read(self) -> LocalSnapshot:
        """Caller must hold the lock."""
        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                raw = await f.read()
        except FileNotFoundError:
            return LocalSnapshot()
        except OSError as e:
            logger.error("Local store unreadable at %s: %s", self.path, e)
            return LocalSnapshot()

        try:
            return self._parse(raw)
        except LocalStoreCorruptionError as e:
            await self._quarantine(e)
            return LocalSnapshot()

    async def _quarantine(self, error: LocalStoreCorruptionError) -> None:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
        target = self.path.with_name(f"{self.path.name}.corrupt-{stamp}")
        logger.error(
            "Local store %s is corrupt (%s); moving it to %s and starting empty",
            self.path,
            error.context.get("error"),
            target.name,
        )
        try:
            await aiofiles.os.replace(self.path, target)
        except OSError as e:
            logger.error("Could not move corrupt local store aside: %s", e)

    async def _write(self, snapshot: LocalSnapshot) -> None:
        """Atomically rewrite the snapshot. Caller must hold the lock."""
        snapshot.last_updated = datetime.now(timezone.utc).isoformat()
        payload = json.dumps(snapshot.to_json(), indent=2)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(payload)
                await f.flush()
            await aiofiles.os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error("Failed to write local store %s: %s", self.path, e)
            try:
                await aiofiles.os.remove(tmp_path)
            except OSError as cleanup_error:
                logger.debug("Temp snapshot not removed: %s", cleanup_error)
            raise LocalStoreWriteError(context={"path": str(self.path), "os_error": str(e)})

    # ── Reads ─────────────────────────────────────────────────────────────

    async def snapshot(self) -> LocalSnapshot:
        async with self._lock:
            return await self._read()

    async def read_all(self) -> List[Document]:
        snapshot = await self.snapshot()
        return [doc.model_copy(update={"origin": DocumentOrigin.LOCAL}) for doc in snapshot.documents]

    async def get_by_id(self, document_id: str) -> Optional[Document]:
        snapshot = await self.snapshot()
        doc = snapshot.find(document_id)
        if doc is None:
            return None
        return doc.model_copy(update={"origin": DocumentOrigin.LOCAL})

    async def pending(self) -> List[Document]:
        snapshot = await self.snapshot()
        return snapshot.pending

    async def stats(self) -> Dict[str, object]:
        snapshot = await self.snapshot()
        return {
            "count": len(snapshot.documents),
            "pending": len(snapshot.pending),
            "pendingDeletes": len(snapshot.pending_deletes),
            "visits": snapshot.visits,
            "lastUpdated": snapshot.last_updated,
        }

    # ── Mutations ─────────────────────────────────────────────────────────

    @staticmethod
    def generate_id(existing: Iterable[str]) -> str:
        """Millisecond timestamp, bumped until unique."""
        taken = set(existing)
        candidate = int(time.time() * 1000)
        while str(candidate) in taken:
            candidate += 1
        return str(candidate)

    async def append(self, document: Document) -> Document:
        """
        Add a new document and persist the snapshot.

        Assigns an id when the document has none. The returned copy is what
        was written.

        Raises:
            ValueError: a document with the same id already exists.
            LocalStoreWriteError: the snapshot could not be rewritten.
        """
        async with self._lock:
            snapshot = await self._read()
            existing = [doc.id for doc in snapshot.documents]
            if not document.id:
                document = document.model_copy(update={"id": self.generate_id(existing)})
            elif document.id in existing:
                raise ValueError(f"Document id '{document.id}' already exists in the local store")

            stored = document.model_copy(update={"origin": DocumentOrigin.LOCAL})
            snapshot.documents.append(stored)
            await self._write(snapshot)
            logger.info("Local store: appended %s (synced=%s)", stored.id, stored.synced)
            return stored

    async def remove_by_id(self, document_id: str, tombstone: bool = False) -> Optional[Document]:
        """
        Remove a document; returns the removed record or None when absent.

        With tombstone=True the id is queued in pendingDeletes in the same
        write, so the deletion reaches the primary even if the process stops
        right after. Pending records are queued as well, since an in-flight
        mirror write may still land them in the primary; replaying a delete
        for an id the primary never received is a no-op.
        """
        async with self._lock:
            snapshot = await self._read()
            doc = snapshot.find(document_id)
            if doc is None:
                return None
            snapshot.documents = [d for d in snapshot.documents if d.id != document_id]
            if tombstone and document_id not in snapshot.pending_deletes:
                snapshot.pending_deletes.append(document_id)
            await self._write(snapshot)
            logger.info("Local store: removed %s (tombstone=%s)", document_id, tombstone)
            return doc

    async def replace_all(self, documents: Iterable[Document]) -> None:
        """Replace the document set, keeping visits and tombstones."""
        async with self._lock:
            snapshot = await self._read()
            snapshot.documents = list(documents)
            await self._write(snapshot)

    async def queue_deletes(self, ids: Iterable[str]) -> int:
        """
        Tombstone ids that are absent from the local store.

        Ids still present locally are skipped; their existence here wins.
        Returns the number of tombstones added.
        """
        wanted = list(dict.fromkeys(ids))
        if not wanted:
            return 0
        async with self._lock:
            snapshot = await self._read()
            present = {doc.id for doc in snapshot.documents}
            added = [
                i for i in wanted
                if i not in present and i not in snapshot.pending_deletes
            ]
            if added:
                snapshot.pending_deletes.extend(added)
                await self._write(snapshot)
            return len(added)

    async def drop_tombstones(self, ids: Iterable[str]) -> int:
        drop = set(ids)
        if not drop:
            return 0
        async with self._lock:
            snapshot = await self._read()
            before = len(snapshot.pending_deletes)
            snapshot.pending_deletes = [i for i in snapshot.pending_deletes if i not in drop]
            removed = before - len(snapshot.pending_deletes)
            if removed:
                await self._write(snapshot)
            return removed

    async def mark_synced(self, ids: Iterable[str], applied_deletes: Iterable[str] = ()) -> int:
        """
        Flip exactly the given documents to synced and drop exactly the given
        tombstones. Documents appended after the caller's snapshot are left
        pending. Returns the number of documents flipped.
        """
        synced_ids = set(ids)
        deletes = set(applied_deletes)
        if not synced_ids and not deletes:
            return 0
        async with self._lock:
            snapshot = await self._read()
            flipped = 0
            for doc in snapshot.documents:
                if doc.id in synced_ids and not doc.synced:
                    doc.synced = True
                    flipped += 1
            snapshot.pending_deletes = [i for i in snapshot.pending_deletes if i not in deletes]
            await self._write(snapshot)
            return flipped

    async def upsert_synced(self, documents: Iterable[Document]) -> int:
        """
        Mirror primary records into the local store.

        Records missing locally (and not tombstoned) are added as synced.
        Synced local records take the primary's content. Pending local
        records are left alone. Returns the number of records added.
        """
        incoming = list(documents)
        if not incoming:
            return 0
        async with self._lock:
            snapshot = await self._read()
            index = {doc.id: i for i, doc in enumerate(snapshot.documents)}
            tombstoned = set(snapshot.pending_deletes)
            added = 0
            changed = False
            for doc in incoming:
                if doc.id in tombstoned:
                    continue
                mirrored = doc.model_copy(update={"synced": True, "origin": DocumentOrigin.LOCAL})
                pos = index.get(doc.id)
                if pos is None:
                    snapshot.documents.append(mirrored)
                    index[doc.id] = len(snapshot.documents) - 1
                    added += 1
                    changed = True
                elif snapshot.documents[pos].synced and snapshot.documents[pos] != mirrored:
                    snapshot.documents[pos] = mirrored
                    changed = True
            if changed:
                await self._write(snapshot)
            return added

    async def record_visit(self) -> int:
        async with self._lock:
            snapshot = await self._read()
            snapshot.visits += 1
            await self._write(snapshot)
            return snapshot.visits

    async def get_visits(self) -> int:
        snapshot = await self.snapshot()
        return snapshot.visits
