"""
Affirmly Backend — Health Check Route
======================================

What:  Liveness/readiness probe for load balancers and container health checks.
How:   SELECT 1 against the database plus the broadcast scheduler's state.

Status levels:
    - healthy:   database reachable, scheduler running (or disabled)
    - degraded:  database reachable, scheduler enabled but not running
    - unhealthy: database unreachable (HTTP 503)
"""

import logging
import time

from fastapi import APIRouter, Request, Response, status
from sqlalchemy import text

from app import __version__
from app.config import settings
from app.database import engine
from app.schemas.common import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get("/health", response_model=HealthResponse, summary="Service health check")
async def health_check(request: Request, response: Response) -> HealthResponse:
    db_status = "connected"
    overall = "healthy"

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    scheduler = getattr(request.app.state, "scheduler", None)
    if not settings.scheduler_enabled:
        scheduler_status = "disabled"
    elif scheduler is not None and scheduler.running:
        scheduler_status = "running"
    else:
        scheduler_status = "stopped"
        if overall == "healthy":
            overall = "degraded"

    if overall == "unhealthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        scheduler=scheduler_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
