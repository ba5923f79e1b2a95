"""
Prayer API Backend: Statistics & Maintenance Routes
=====================================================

What:  Wall-wide statistics, the expiry sweep and the active-gauge reset.
Who:   Stats: the app's home screen. Cleanup: an external scheduler (cron or
       a platform job). Reset: operators, while debugging drifted gauges.

These endpoints are unauthenticated, like the rest of the API; deployments
that expose them publicly should restrict them at the proxy.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from prayer_api.database import get_db_session
from prayer_api.schemas.common import ErrorResponse
from prayer_api.schemas.prayer import (
    CleanupResponse,
    ResetActivePrayersResponse,
    StatsResponse,
)
from prayer_api.services.participation_store import participation_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Maintenance"])


@router.get(
    "/stats",
    response_model=StatsResponse,
    summary="Prayer statistics over active requests",
    description=(
        "Sums of prayer_count and active_prayers and the number of completed "
        "joins, over requests that have not expired. Reports zeros rather "
        "than failing when the database is unavailable."
    ),
)
async def get_stats(db: AsyncSession = Depends(get_db_session)) -> StatsResponse:
    return await participation_store.get_stats(db)


@router.delete(
    "/cleanup-expired",
    response_model=CleanupResponse,
    responses={500: {"description": "Server error", "model": ErrorResponse}},
    summary="Delete expired prayer requests",
    description="Idempotent sweep of requests past expires_at, together with their joins.",
)
async def cleanup_expired(db: AsyncSession = Depends(get_db_session)) -> CleanupResponse:
    deleted = await participation_store.cleanup_expired(db)
    return CleanupResponse(
        message=f"Cleaned up {deleted} expired requests",
        deleted_count=deleted,
    )


@router.post(
    "/reset-active-prayers",
    response_model=ResetActivePrayersResponse,
    responses={500: {"description": "Server error", "model": ErrorResponse}},
    summary="Reset every active_prayers gauge to zero",
)
async def reset_active_prayers(
    db: AsyncSession = Depends(get_db_session),
) -> ResetActivePrayersResponse:
    updated = await participation_store.reset_active_prayers(db)
    return ResetActivePrayersResponse(
        message="All active_prayers counts reset to zero",
        updated_count=updated,
    )
