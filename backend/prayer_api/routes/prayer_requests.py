"""
Prayer API Backend: Prayer Request Route Handlers
===================================================

What:  Submission, listing and the participation calls on one request
       (join, start/stop praying, complete and the legacy endpoints).
How:   Extracts path/body values, delegates to the ParticipationStore, returns
       the updated request row.
Who:   Called by the mobile app's prayer wall and prayer detail screens.

Routes stay thin: every rule about counters, expiry and dedup lives in the
store. The only extra work here is scheduling the "someone joined" push after
a first join, which runs once the response is sent.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from prayer_api.database import get_db_session
from prayer_api.dependencies import get_dispatcher
from prayer_api.schemas.common import ErrorResponse, MessageResponse
from prayer_api.schemas.prayer import (
    ActivePrayerRequest,
    CreatePrayerRequestBody,
    DeviceActionBody,
    PrayerRequestResponse,
)
from prayer_api.services.notification_dispatcher import NotificationDispatcher
from prayer_api.services.participation_store import (
    participation_store,
    require_device_id,
)

logger = logging.getLogger(__name__)

# ── Router Configuration ──────────────────────────────────────────────────
router = APIRouter(prefix="/api/prayer-requests", tags=["Prayer Requests"])

_not_found = {404: {"description": "Prayer request not found or expired", "model": ErrorResponse}}
_bad_request = {400: {"description": "Missing device ID", "model": ErrorResponse}}
_server_error = {500: {"description": "Server error", "model": ErrorResponse}}


@router.post(
    "",
    response_model=PrayerRequestResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"description": "Missing or unknown topic", "model": ErrorResponse},
        **_server_error,
    },
    summary="Submit a prayer request",
    description=(
        "Creates a prayer request under a topic. It is visible on the wall for "
        "24 hours, after which it expires and is eventually swept."
    ),
)
async def create_prayer_request(
    body: CreatePrayerRequestBody,
    db: AsyncSession = Depends(get_db_session),
) -> PrayerRequestResponse:
    return await participation_store.create_request(
        db,
        topic_id=body.topic_id,
        description=body.description,
        device_id=body.device_id,
    )


@router.get(
    "",
    response_model=List[ActivePrayerRequest],
    responses=_server_error,
    summary="List active prayer requests",
    description="All non-expired requests, newest first, with topic and main category titles.",
)
async def list_prayer_requests(
    db: AsyncSession = Depends(get_db_session),
) -> List[ActivePrayerRequest]:
    return await participation_store.list_active(db)


@router.post(
    "/{request_id}/join",
    response_model=PrayerRequestResponse,
    responses={**_bad_request, **_not_found, **_server_error},
    summary="Join a prayer request",
    description=(
        "Counts the device toward the request's prayer_count, at most once per "
        "device. Joining again returns the unchanged request. A first join "
        "notifies the request's creator in the background."
    ),
)
async def join_prayer_request(
    request_id: int,
    background_tasks: BackgroundTasks,
    body: Optional[DeviceActionBody] = None,
    db: AsyncSession = Depends(get_db_session),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> PrayerRequestResponse:
    device_id = require_device_id(body.device_id if body else None)
    result = await participation_store.join(db, request_id, device_id)

    if not result.already_joined:
        background_tasks.add_task(
            dispatcher.notify_prayer_joined_in_background,
            request_id,
            device_id,
        )
    return result.request


@router.post(
    "/{request_id}/start-praying",
    response_model=PrayerRequestResponse,
    responses={**_not_found, **_server_error},
    summary="Start praying (active_prayers + 1)",
)
async def start_praying(
    request_id: int,
    db: AsyncSession = Depends(get_db_session),
) -> PrayerRequestResponse:
    # Older clients send a device_id body; the gauge does not track devices.
    return await participation_store.start_praying(db, request_id)


@router.post(
    "/{request_id}/stop-praying",
    response_model=PrayerRequestResponse,
    responses={**_not_found, **_server_error},
    summary="Stop praying (active_prayers - 1, never below zero)",
)
async def stop_praying(
    request_id: int,
    db: AsyncSession = Depends(get_db_session),
) -> PrayerRequestResponse:
    return await participation_store.stop_praying(db, request_id)


@router.post(
    "/{request_id}/pray",
    response_model=PrayerRequestResponse,
    responses={**_not_found, **_server_error},
    summary="Legacy: pray (both counters + 1, no dedup)",
    deprecated=True,
)
async def pray(
    request_id: int,
    db: AsyncSession = Depends(get_db_session),
) -> PrayerRequestResponse:
    return await participation_store.pray(db, request_id)


@router.post(
    "/{request_id}/complete",
    response_model=MessageResponse,
    responses={
        **_bad_request,
        404: {
            "description": "Not joined, already completed, or request expired",
            "model": ErrorResponse,
        },
        **_server_error,
    },
    summary="Complete a joined prayer",
    description=(
        "Marks the device's participation as completed and decrements "
        "active_prayers. Completing twice, or without joining, returns 404."
    ),
)
async def complete_prayer(
    request_id: int,
    body: Optional[DeviceActionBody] = None,
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    await participation_store.complete(db, request_id, body.device_id if body else None)
    return MessageResponse(message="Prayer completed successfully")


@router.delete(
    "/{request_id}/complete",
    response_model=MessageResponse,
    responses={**_not_found, **_server_error},
    summary="Legacy: complete without a device (active_prayers - 1)",
    deprecated=True,
)
async def legacy_complete_prayer(
    request_id: int,
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    await participation_store.legacy_complete(db, request_id)
    return MessageResponse(message="Prayer completed successfully")
