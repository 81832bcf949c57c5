"""
Study Portal Backend — Reconciliation Engine
==============================================

What:  Brings the primary database back in line with the local store after
       an outage.
How:   1. Snapshot the local store: pending documents and pendingDeletes.
       2. Replay the tombstones on the primary (delete_many).
       3. Upsert every pending document by its existing id (insert_many).
       4. Flip exactly those documents to synced and drop exactly those
          tombstones; anything appended meanwhile stays pending, and pushed
          ids deleted meanwhile are deleted from the primary as well.
       5. Refresh the local mirror from the primary (records the local
          store lost, e.g. after a corrupt snapshot was moved aside).
Who:   ConnectionMonitor, once per unreachable → reachable transition and on
       every manual reconnect.

Idempotency:
    Upserts are keyed by id and deletes of missing rows are no-ops, so
    running a pass twice (or crashing between steps 3 and 4 and running it
    again) leaves the primary in the same state as running it once.

Failure:
    Any primary failure before step 4 leaves the local store untouched and
    raises ReconciliationError. A failed mirror refresh (step 5) is only
    logged; the pending set is already correct at that point.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from studyportal.exceptions import (
    LocalStoreWriteError,
    PrimaryUnavailableError,
    ReconciliationError,
)
from studyportal.services.local_store import LocalStore
from studyportal.services.primary_store import PrimaryStoreClient
from studyportal.services.sync_state import SyncState

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationResult:
    upserted: int = 0
    deleted: int = 0
    refreshed: int = 0
    remaining: int = 0
    completed_at: Optional[datetime] = None

    @property
    def success(self) -> bool:
        return self.completed_at is not None


class ReconciliationEngine:
    """Merges pending local state into the primary store."""

    def __init__(self, local: LocalStore, primary: PrimaryStoreClient, state: SyncState):
        self.local = local
        self.primary = primary
        self.state = state

    async def _remove_vanished(self, pushed_ids: List[str]) -> int:
        """
        Delete from the primary the pushed ids that were deleted locally
        while the pass was running. They are tombstoned first and the
        tombstones are dropped once the primary delete succeeds; otherwise
        they wait for the next pass.
        """
        if not pushed_ids:
            return 0
        snapshot = await self.local.snapshot()
        vanished = [i for i in pushed_ids if snapshot.find(i) is None]
        if not vanished:
            return 0

        logger.info("%d document(s) deleted during reconciliation; removing them from the primary", len(vanished))
        try:
            await self.local.queue_deletes(vanished)
        except LocalStoreWriteError as e:
            logger.warning("Could not tombstone %s: %s", vanished, e.message)
        try:
            deleted = await self.primary.delete_many(vanished)
        except PrimaryUnavailableError as e:
            logger.warning("Deferred primary delete of %s: %s", vanished, e.context.get("error", e.message))
            return 0
        try:
            await self.local.drop_tombstones(vanished)
        except LocalStoreWriteError as e:
            logger.warning("Tombstones for %s kept: %s", vanished, e.message)
        return deleted

    async def reconcile(self) -> ReconciliationResult:
        """
        Run one reconciliation pass.

        Raises:
            ReconciliationError: the primary failed mid-pass or the local store
                could not record the outcome. Nothing is pruned in that case.
        """
        snapshot = await self.local.snapshot()
        pending = snapshot.pending
        tombstones = list(snapshot.pending_deletes)
        result = ReconciliationResult()

        if pending or tombstones:
            logger.info(
                "Reconciling %d pending document(s) and %d pending deletion(s)",
                len(pending),
                len(tombstones),
            )

        try:
            if tombstones:
                result.deleted = await self.primary.delete_many(tombstones)
            if pending:
                result.upserted = await self.primary.insert_many(pending)
        except PrimaryUnavailableError as e:
            self.state.record_pending(len(pending), len(tombstones))
            raise ReconciliationError(
                message="Primary database failed during reconciliation",
                pending=len(pending) + len(tombstones),
                context={"error": e.context.get("error", e.message)},
            )

        try:
            await self.local.mark_synced([doc.id for doc in pending], applied_deletes=tombstones)
        except LocalStoreWriteError as e:
            # The primary already holds the records; the next pass re-upserts them by id.
            raise ReconciliationError(
                message="Could not record reconciliation in the local store",
                pending=len(pending) + len(tombstones),
                context=e.context,
            )

        result.deleted += await self._remove_vanished([doc.id for doc in pending])

        try:
            mirror = await self.primary.find()
            result.refreshed = await self.local.upsert_synced(mirror)
        except PrimaryUnavailableError as e:
            logger.warning("Skipping local mirror refresh: %s", e.context.get("error", e.message))
        except LocalStoreWriteError as e:
            logger.warning("Local mirror refresh not written: %s", e.message)

        after = await self.local.snapshot()
        result.remaining = len(after.pending)
        result.completed_at = datetime.now(timezone.utc)
        self.state.record_pending(len(after.pending), len(after.pending_deletes))
        self.state.record_sync(result.completed_at)

        logger.info(
            "Reconciliation complete: %d upserted, %d deleted, %d restored locally, %d still pending",
            result.upserted,
            result.deleted,
            result.refreshed,
            result.remaining,
        )
        return result
