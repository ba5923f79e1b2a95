"""
Prayer API Backend: Device Route Handlers
===========================================

What:  Push registration, the device list and per-device views.
How:   Delegates to the DeviceRegistry (registration, diagnostics) and the
       ParticipationStore (the device's joined prayers).
Who:   Registration runs on every app launch; the rest are diagnostics.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from prayer_api.database import get_db_session
from prayer_api.dependencies import get_dispatcher
from prayer_api.schemas.common import ErrorResponse
from prayer_api.schemas.device import (
    DeviceInfoResponse,
    DeviceListItem,
    RegisterDeviceBody,
    RegisterDeviceResponse,
)
from prayer_api.schemas.prayer import DevicePrayerItem
from prayer_api.services.device_registry import device_registry
from prayer_api.services.notification_dispatcher import NotificationDispatcher
from prayer_api.services.participation_store import participation_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Devices"])

_server_error = {500: {"description": "Server error", "model": ErrorResponse}}


@router.post(
    "/register-device",
    response_model=RegisterDeviceResponse,
    responses={
        400: {"description": "Device ID and platform are required", "model": ErrorResponse},
        **_server_error,
    },
    summary="Register or refresh a device's push token",
    description=(
        "Upsert keyed on device_id. Re-registering updates the push token, "
        "platform and last_active of the existing device."
    ),
)
async def register_device(
    body: RegisterDeviceBody,
    db: AsyncSession = Depends(get_db_session),
) -> RegisterDeviceResponse:
    device = await device_registry.register(
        db,
        device_id=body.device_id,
        push_token=body.push_token,
        platform=body.platform,
    )
    return RegisterDeviceResponse(device=device)


@router.get(
    "/devices",
    response_model=List[DeviceListItem],
    responses=_server_error,
    summary="List registered devices",
    description="Most recently active first. Push tokens are reported as yes/no only.",
)
async def list_devices(db: AsyncSession = Depends(get_db_session)) -> List[DeviceListItem]:
    return await device_registry.list_devices(db)


@router.get(
    "/device/{device_id}/prayers",
    response_model=List[DevicePrayerItem],
    responses=_server_error,
    summary="Active prayer requests a device has joined",
)
async def device_prayers(
    device_id: str,
    db: AsyncSession = Depends(get_db_session),
) -> List[DevicePrayerItem]:
    return await participation_store.list_for_device(db, device_id)


@router.get(
    "/device/{device_id}/info",
    response_model=DeviceInfoResponse,
    responses=_server_error,
    summary="Device diagnostics",
    description=(
        "Registration row, participation counts, the five most recent joins "
        "and whether push notifications can reach the device."
    ),
)
async def device_info(
    device_id: str,
    db: AsyncSession = Depends(get_db_session),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> DeviceInfoResponse:
    return await device_registry.device_info(
        db, device_id, push_available=dispatcher.provider.available
    )
