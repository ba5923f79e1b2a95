"""
Prayer API Backend: Device Registry
=====================================

What:  Push-token registry and per-device diagnostics.
Who:   Device routes (register, list, info); the notification dispatcher
       resolves push tokens through it.

Registration is an upsert keyed on device_id: a device re-registering after
a token refresh, or switching platform, updates its row in place.
"""

import logging
from typing import List, Optional

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from prayer_api.database import (
    ConflictPolicy,
    conditional_insert,
    storage_operation,
    utcnow,
)
from prayer_api.exceptions import ValidationError
from prayer_api.models.device import Device
from prayer_api.models.prayer import DevicePrayerLink, PrayerRequest, Topic
from prayer_api.schemas.device import (
    DeviceInfoResponse,
    DeviceListItem,
    DevicePrayerStats,
    DeviceResponse,
    RecentActivity,
)

logger = logging.getLogger(__name__)

devices_table = Device.__table__

RECENT_ACTIVITY_LIMIT = 5


class DeviceRegistry:
    """Stateless; every method takes the session to use."""

    def __init__(self, clock=utcnow):
        self._clock = clock

    async def register(
        self,
        db: AsyncSession,
        device_id: Optional[str],
        push_token: Optional[str],
        platform: Optional[str],
    ) -> DeviceResponse:
        """
        Insert or refresh a device.

        On conflict the existing row keeps its created_at; push_token,
        platform and last_active are overwritten. A null push_token clears
        the stored one (the user turned notifications off).

        Raises:
            ValidationError: device_id or platform missing
        """
        if not device_id or not platform:
            raise ValidationError(message="Device ID and platform are required")

        now = self._clock()
        stmt = conditional_insert(
            db.get_bind().dialect.name,
            devices_table,
            {
                "device_id": device_id,
                "push_token": push_token,
                "platform": platform,
                "last_active": now,
                "created_at": now,
            },
            index_elements=["device_id"],
            policy=ConflictPolicy.UPDATE,
            update_columns=["push_token", "platform", "last_active"],
        ).returning(*devices_table.c)

        async with storage_operation(db, "register_device", device_id=device_id):
            result = await db.execute(stmt)
            row = result.one()
            await db.commit()

        logger.info("Device registered: %s (%s)", device_id, platform)
        return DeviceResponse.model_validate(row)

    async def get(self, db: AsyncSession, device_id: str) -> Optional[DeviceResponse]:
        async with storage_operation(db, "get_device", device_id=device_id):
            result = await db.execute(
                select(*devices_table.c).where(devices_table.c.device_id == device_id)
            )
            row = result.one_or_none()
        return DeviceResponse.model_validate(row) if row is not None else None

    async def list_devices(self, db: AsyncSession) -> List[DeviceListItem]:
        """Every device, most recently active first. Tokens are not exposed."""
        has_token = case(
            (devices_table.c.push_token.is_not(None), "yes"),
            else_="no",
        ).label("has_push_token")
        async with storage_operation(db, "list_devices"):
            result = await db.execute(
                select(
                    devices_table.c.device_id,
                    devices_table.c.platform,
                    devices_table.c.last_active,
                    devices_table.c.created_at,
                    has_token,
                ).order_by(devices_table.c.last_active.desc())
            )
            rows = result.all()
        return [DeviceListItem.model_validate(row, from_attributes=True) for row in rows]

    async def push_tokens(
        self, db: AsyncSession, exclude_device_id: Optional[str] = None
    ) -> List[str]:
        """Tokens of every device that has one, optionally skipping one device."""
        query = select(devices_table.c.push_token).where(
            devices_table.c.push_token.is_not(None)
        )
        if exclude_device_id:
            query = query.where(devices_table.c.device_id != exclude_device_id)
        async with storage_operation(db, "push_tokens"):
            result = await db.execute(query)
            return list(result.scalars().all())

    async def device_info(
        self, db: AsyncSession, device_id: str, push_available: bool
    ) -> DeviceInfoResponse:
        """
        Diagnostics for one device: registration, participation counts over
        all of its links (expired requests included) and its latest activity.
        """
        link = DevicePrayerLink.__table__.c
        stats_query = select(
            func.count(link.id).label("joined"),
            func.count(case((link.completed_at.is_not(None), 1))).label("completed"),
            func.count(case((link.completed_at.is_(None), 1))).label("active"),
        ).where(link.device_id == device_id)

        activity_query = (
            select(
                PrayerRequest.id.label("prayer_id"),
                PrayerRequest.description,
                Topic.title.label("topic_title"),
                DevicePrayerLink.joined_at,
                DevicePrayerLink.completed_at,
            )
            .join(PrayerRequest, DevicePrayerLink.prayer_request_id == PrayerRequest.id)
            .join(Topic, PrayerRequest.topic_id == Topic.id)
            .where(DevicePrayerLink.device_id == device_id)
            .order_by(DevicePrayerLink.joined_at.desc())
            .limit(RECENT_ACTIVITY_LIMIT)
        )

        device = await self.get(db, device_id)
        async with storage_operation(db, "device_info", device_id=device_id):
            stats = (await db.execute(stats_query)).one()
            activity = (await db.execute(activity_query)).all()

        logger.debug("Device info requested for %s", device_id)
        return DeviceInfoResponse(
            device_id=device_id,
            registered=device is not None,
            registration_info=device,
            prayer_stats=DevicePrayerStats(
                total_joined_prayers=int(stats.joined or 0),
                completed_prayers=int(stats.completed or 0),
                currently_active_prayers=int(stats.active or 0),
            ),
            recent_activity=[
                RecentActivity.model_validate(row, from_attributes=True) for row in activity
            ],
            push_notification_ready=bool(device and device.push_token),
            push_available=push_available,
        )


device_registry = DeviceRegistry()
