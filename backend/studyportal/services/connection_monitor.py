"""
Study Portal Backend — Connection Monitor
===========================================

What:  Watches primary-store reachability and restores it after outages.
How:   One asyncio task, started by the application lifespan, runs tick()
       immediately and then every PRIMARY_RECONNECT_INTERVAL seconds until
       stop() cancels it. The manual reconnect endpoint calls reconnect().
Who:   Owned by the StoragePortal container; reads/writes SyncState.

Edge-triggered reconciliation:
    tick() does nothing while the primary is reachable. When it is not,
    tick() connects, reconciles, and only then marks the primary reachable,
    so reads stay on the local store until the primary holds every pending
    record. Reconciliation therefore runs once per unreachable → reachable
    transition.

    A reconciliation failure is logged and recorded in SyncState. If the link
    itself is still up the primary is marked reachable anyway (fresh writes
    get mirrored again); the leftover pending records are retried on the
    next manual reconnect or the next outage recovery.

Concurrency:
    An asyncio.Lock serializes timer ticks and manual reconnects, so two
    reconciliation passes never overlap.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from studyportal.exceptions import ReconciliationError
from studyportal.services.primary_store import PrimaryStoreClient
from studyportal.services.reconciliation import ReconciliationEngine, ReconciliationResult
from studyportal.services.sync_state import SyncState

logger = logging.getLogger(__name__)


@dataclass
class ReconnectResult:
    success: bool
    connected: bool
    message: str
    reconciliation: Optional[ReconciliationResult] = None


class ConnectionMonitor:
    def __init__(
        self,
        primary: PrimaryStoreClient,
        reconciler: ReconciliationEngine,
        state: SyncState,
        interval: float = 30.0,
    ):
        self.primary = primary
        self.reconciler = reconciler
        self.state = state
        self.interval = interval
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ── Background Task ───────────────────────────────────────────────────

    def start(self) -> None:
        """Start the periodic task (no-op if already running)."""
        if self.running:
            return
        if not self.primary.enabled:
            logger.warning("Primary database not configured; serving from the local store only")
            return
        self._task = asyncio.create_task(self._run_forever(), name="primary-connection-monitor")
        logger.info("Connection monitor started (interval=%.0fs)", self.interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Connection monitor stopped")

    async def _run_forever(self) -> None:
        await self.tick()
        while True:
            self.state.schedule_next_attempt(
                datetime.now(timezone.utc) + timedelta(seconds=self.interval)
            )
            await asyncio.sleep(self.interval)
            await self.tick()

    # ── Attempts ──────────────────────────────────────────────────────────

    async def tick(self) -> bool:
        """
        One timer attempt. Returns the reachability afterwards.

        Never raises: connection and reconciliation failures are logged and
        recorded in SyncState.
        """
        if self.state.primary_reachable:
            return True
        async with self._lock:
            if self.state.primary_reachable:
                return True
            try:
                await self._attempt()
            except Exception as e:
                logger.error("Connection monitor tick failed: %s", e, exc_info=True)
                self.state.record_error(str(e))
        return self.state.primary_reachable

    async def reconnect(self) -> ReconnectResult:
        """Manual reconnect: always reconnects and reconciles."""
        async with self._lock:
            return await self._attempt()

    async def _attempt(self) -> ReconnectResult:
        """Connect, reconcile, then mark reachable. Caller holds the lock."""
        result = await self.primary.connect()
        if not result.connected:
            return ReconnectResult(
                success=False,
                connected=False,
                message=f"Could not connect to primary database: {result.error}",
            )

        try:
            summary = await self.reconciler.reconcile()
        except ReconciliationError as e:
            logger.error("%s (%d item(s) left pending)", e.message, e.pending)
            self.state.record_error(f"{e.message}: {e.context.get('error', '')}".rstrip(": "))
            connected = self.primary.is_reachable()
            if connected:
                self.state.mark_reachable()
            return ReconnectResult(
                success=False,
                connected=connected,
                message=e.message,
            )

        connected = self.primary.is_reachable()
        if connected:
            self.state.mark_reachable()
        return ReconnectResult(
            success=connected,
            connected=connected,
            message=(
                "Reconnected to primary database"
                if connected
                else "Primary database dropped during reconciliation"
            ),
            reconciliation=summary,
        )
