"""
Attendance API — Health Check Route
===================================

What:  Health check endpoint for monitoring and load balancer probes.
How:   Pings the record store and reports uptime.
Who:   Called by Docker health checks, load balancers and monitoring.

Status levels:
    - healthy:   Store reachable (HTTP 200)
    - unhealthy: Store unreachable (HTTP 503, stop routing traffic)
"""

import logging
import time

from fastapi import APIRouter, Response

from attendance_api import __version__
from attendance_api.config import settings
from attendance_api.dependencies import ping_record_store
from attendance_api.exceptions import StoreUnavailableError
from attendance_api.schemas.attendance import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(response: Response) -> HealthResponse:
    """
    Check the health of the service and its record store.

    SQL backend: SELECT 1 on a pooled connection.
    Memory backend: always reachable, reported as "memory".
    """
    store_status = "memory" if settings.store_backend == "memory" else "connected"
    overall = "healthy"

    try:
        await ping_record_store()
    except StoreUnavailableError as e:
        store_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: record store unreachable: %s", e.context.get("reason"))

    if overall == "unhealthy":
        response.status_code = 503

    return HealthResponse(
        status=overall,
        version=__version__,
        store=store_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
