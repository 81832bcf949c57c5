"""
Study Portal Backend — Health Check Route
===========================================

What:  Health check endpoint for monitoring and load balancer probes.
How:   Reports primary reachability from SyncState (no extra database round
       trip) and document counts through the façade.
Who:   Docker health checks, load balancers, monitoring.

Health Check Philosophy:
    The service keeps serving from the local store while the primary is down,
    so an unreachable primary does not make the service unhealthy. Status is
    always "OK" when this handler runs; `database.primary` tells monitoring
    whether the primary is in use.
"""

import logging
import time

from fastapi import APIRouter, Depends

from studyportal import __version__
from studyportal.dependencies import StoragePortal, get_portal
from studyportal.schemas.document import DatabaseHealth, DataHealth, HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    description="Returns service status, primary database reachability and document counts.",
)
async def health_check(portal: StoragePortal = Depends(get_portal)) -> HealthResponse:
    counts = await portal.documents.get_counts()
    stats = await portal.local.stats()
    return HealthResponse(
        version=__version__,
        database=DatabaseHealth(
            primary="connected" if portal.state.primary_reachable else "disconnected",
        ),
        data=DataHealth(
            total=counts.total,
            by_type=counts.by_type,
            fallback_count=stats["count"],
        ),
        uptime_seconds=round(time.time() - _start_time, 2),
    )
