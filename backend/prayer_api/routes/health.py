"""
Prayer API Backend: Health Check Route
========================================

What:  GET /health for the platform's health probe and uptime monitors.
How:   Runs `SELECT 1` against the database and reads the push provider's
       state; never calls Firebase.

Status levels:
    healthy:   database reachable, push available
    degraded:  database reachable, push disabled or its circuit is open
    unhealthy: database unreachable (HTTP 503)
"""

import logging
import time

from fastapi import APIRouter, Depends, Response
from sqlalchemy import text

from prayer_api import __version__
from prayer_api.database import engine
from prayer_api.dependencies import get_dispatcher
from prayer_api.schemas.common import HealthResponse
from prayer_api.services.notification_dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    description=(
        "Database connectivity and push provider state. Returns 503 when the "
        "database cannot be reached."
    ),
)
async def health_check(
    response: Response,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> HealthResponse:
    db_status = "connected"
    overall = "healthy"

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    push_status = dispatcher.provider.status()
    if push_status != "available" and overall == "healthy":
        overall = "degraded"

    if overall == "unhealthy":
        response.status_code = 503

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        push=push_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
