"""
Study Portal Backend — Database Status Route Handlers
=======================================================

What:  Diagnostics for the two stores and a manual reconnect trigger.
How:   Status reads SyncState and local store stats; reconnect runs the
       connection monitor's manual path (connect → reconcile → reachable).
Who:   Operators and the admin page.

Endpoints:
    GET  /api/database/status     primary connected/disconnected, local store
                                  stats, pending counts, last sync, last error
    POST /api/database/reconnect  synchronous reconnect + reconciliation
"""

import logging

from fastapi import APIRouter, Depends

from studyportal.dependencies import StoragePortal, get_portal
from studyportal.schemas.document import (
    DatabaseStatusResponse,
    FallbackStatus,
    ReconciliationSummary,
    ReconnectResponse,
    SyncStatusResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/database", tags=["Database"])


@router.get("/status", response_model=DatabaseStatusResponse, summary="Store and sync status")
async def database_status(portal: StoragePortal = Depends(get_portal)) -> DatabaseStatusResponse:
    sync = await portal.documents.get_status()
    stats = await portal.local.stats()
    return DatabaseStatusResponse(
        primary="connected" if sync.primary_reachable else "disconnected",
        fallback=FallbackStatus(
            count=stats["count"],
            visits=stats["visits"],
            last_updated=stats["lastUpdated"],
        ),
        sync=SyncStatusResponse(
            pending_count=sync.pending_count,
            pending_delete_count=sync.pending_delete_count,
            last_sync_time=sync.last_sync_time,
            next_reconnect_at=sync.next_reconnect_at,
            last_error=sync.last_error,
        ),
    )


@router.post(
    "/reconnect",
    response_model=ReconnectResponse,
    summary="Reconnect to the primary database now",
    description=(
        "Attempts a connection immediately and, on success, reconciles pending "
        "local records before routing reads back to the primary database."
    ),
)
async def reconnect(portal: StoragePortal = Depends(get_portal)) -> ReconnectResponse:
    logger.info("Manual reconnect requested")
    result = await portal.monitor.reconnect()
    summary = None
    if result.reconciliation is not None:
        summary = ReconciliationSummary(
            upserted=result.reconciliation.upserted,
            deleted=result.reconciliation.deleted,
            refreshed=result.reconciliation.refreshed,
        )
    return ReconnectResponse(
        success=result.success,
        message=result.message,
        connected=result.connected,
        reconciliation=summary,
    )
