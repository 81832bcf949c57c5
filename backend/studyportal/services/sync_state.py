"""
Study Portal Backend — Sync State
===================================

What:  Process-wide record of primary-store reachability and mirroring progress.
How:   One SyncState instance lives in the StoragePortal container. Its fields
       are read through properties and changed only through the transition
       methods below, so every change is logged in one place.
Who:   Written by PrimaryStoreClient (outages), ConnectionMonitor (recovery,
       schedule), ReconciliationEngine and DocumentService (pending counts).
       Read by the façade on every request and by the status endpoints.

Not persisted: after a restart the monitor's first tick rebuilds it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncStateSnapshot:
    """Immutable copy of the sync state, safe to hand to response builders."""
    primary_reachable: bool
    next_reconnect_at: Optional[datetime]
    pending_count: int
    pending_delete_count: int
    last_sync_time: Optional[datetime]
    last_error: Optional[str]


class SyncState:
    """
    Shared reachability flag plus mirroring bookkeeping.

    primary_reachable is the routing flag: while False, reads are served by
    the local store and writes are not mirrored. It starts False and only the
    connection monitor sets it back to True, after reconciliation has run.
    """

    def __init__(self) -> None:
        self._primary_reachable = False
        self._next_reconnect_at: Optional[datetime] = None
        self._pending_count = 0
        self._pending_delete_count = 0
        self._last_sync_time: Optional[datetime] = None
        self._last_error: Optional[str] = None

    # ── Read access ───────────────────────────────────────────────────────

    @property
    def primary_reachable(self) -> bool:
        return self._primary_reachable

    @property
    def next_reconnect_at(self) -> Optional[datetime]:
        return self._next_reconnect_at

    @property
    def pending_count(self) -> int:
        return self._pending_count

    @property
    def pending_delete_count(self) -> int:
        return self._pending_delete_count

    @property
    def last_sync_time(self) -> Optional[datetime]:
        return self._last_sync_time

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    # ── Transitions ───────────────────────────────────────────────────────

    def mark_reachable(self) -> None:
        if not self._primary_reachable:
            logger.info("Primary database marked reachable")
        self._primary_reachable = True
        self._next_reconnect_at = None

    def mark_unreachable(self, reason: Optional[str] = None) -> None:
        if self._primary_reachable:
            logger.warning("Primary database marked unreachable: %s", reason or "unknown")
        self._primary_reachable = False
        if reason:
            self._last_error = reason

    def record_pending(self, documents: int, deletes: int = 0) -> None:
        self._pending_count = max(documents, 0)
        self._pending_delete_count = max(deletes, 0)

    def record_sync(self, when: Optional[datetime] = None) -> None:
        """A reconciliation pass completed; clears the last error."""
        self._last_sync_time = when or datetime.now(timezone.utc)
        self._last_error = None

    def record_error(self, message: str) -> None:
        self._last_error = message

    def schedule_next_attempt(self, when: Optional[datetime]) -> None:
        self._next_reconnect_at = when

    def snapshot(self) -> SyncStateSnapshot:
        return SyncStateSnapshot(
            primary_reachable=self._primary_reachable,
            next_reconnect_at=self._next_reconnect_at,
            pending_count=self._pending_count,
            pending_delete_count=self._pending_delete_count,
            last_sync_time=self._last_sync_time,
            last_error=self._last_error,
        )
