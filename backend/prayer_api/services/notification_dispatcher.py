"""
Prayer API Backend: Notification Dispatcher
=============================================

What:  Every push flow of the app: "someone joined your prayer", new-request
       broadcast, daily reminder and the per-device test notification.
How:   Looks up targets in the device registry, then fans out through the
       PushProvider with bounded concurrency and join-all result collection.
Who:   Notification routes; the join route schedules the joined-notification
       as a background task.

Session ownership:
    The dispatcher opens its own sessions from the session factory instead
    of borrowing the request's session. A background task runs after the
    response is sent, when the request-scoped session is already closed.

Failure model:
    A single failed delivery never fails a flow: fan-out reports how many
    targets were attempted and how many the provider accepted. Only input
    problems (missing fields, unknown request/device) raise.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from prayer_api.config import settings
from prayer_api.exceptions import NotFoundError, PushUnavailableError, ValidationError
from prayer_api.models.device import Device
from prayer_api.models.prayer import PrayerRequest
from prayer_api.schemas.device import (
    FanOutResponse,
    NotificationPayload,
    NotificationResultResponse,
    SendTestNotificationResponse,
)
from prayer_api.services.device_registry import device_registry
from prayer_api.services.participation_store import require_device_id
from prayer_api.services.push_base import PushProvider

logger = logging.getLogger(__name__)

PRAYER_JOINED_TITLE = "❤️ Someone Joined Your Prayer"
PRAYER_REQUEST_TITLE = "🙏 New Prayer Request"
DAILY_REMINDER_TITLE = "🕐 Daily Prayer Time"
DAILY_REMINDER_BODY = "Take a moment to connect with God and pray for others in your community."
TEST_TITLE = "🧪 Test Notification"
TEST_BODY = "This is a test notification from Prayer Warriors app!"

PREVIEW_LENGTH = 80


def prayer_joined_body(prayer_count: int) -> str:
    noun = "person is" if prayer_count == 1 else "people are"
    return f"{prayer_count} {noun} now praying with you!"


def prayer_request_body(requester_name: str, prayer_text: str) -> str:
    preview = prayer_text[:PREVIEW_LENGTH]
    if len(prayer_text) > PREVIEW_LENGTH:
        preview += "..."
    return f"{requester_name} is asking for prayer: {preview}"


class NotificationDispatcher:
    """
    Args:
        provider: Where notifications go (Firebase or the null provider)
        session_factory: Opens the sessions used for target lookups
        max_concurrency: Upper bound on in-flight sends per fan-out
    """

    def __init__(
        self,
        provider: PushProvider,
        session_factory: async_sessionmaker,
        max_concurrency: Optional[int] = None,
    ):
        self.provider = provider
        self._session_factory = session_factory
        self._max_concurrency = max_concurrency or settings.push_max_concurrency

    # ── Fan-out ───────────────────────────────────────────────────────────
    async def fan_out(
        self,
        tokens: Sequence[str],
        title: str,
        body: str,
        data: Optional[Dict[str, str]] = None,
    ) -> Tuple[int, int]:
        """
        Send one notification to many tokens.

        At most `max_concurrency` sends are in flight. Every send runs to
        completion; a send that raises counts as not delivered.

        Returns:
            (attempted, delivered)
        """
        if not tokens:
            return 0, 0

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def send_one(token: str) -> bool:
            async with semaphore:
                return await self.provider.send(token, title, body, data)

        results = await asyncio.gather(
            *(send_one(token) for token in tokens),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                logger.error("Push send raised: %s", str(result))
        delivered = sum(1 for result in results if result is True)
        return len(tokens), delivered

    # ══════════════════════════════════════════════════════════════════════
    # Flows
    # ══════════════════════════════════════════════════════════════════════

    async def notify_prayer_joined(
        self, prayer_request_id: Optional[int], joiner_device_id: Optional[str] = None
    ) -> NotificationResultResponse:
        """
        Tell a request's creator that someone joined.

        Skipped (success, nothing sent) when the creator has no push token
        or when the joiner is the creator.

        Raises:
            ValidationError: prayer_request_id missing
            NotFoundError: no such request, or it has no creator device
        """
        if prayer_request_id is None:
            raise ValidationError(
                message="Prayer request ID is required", field="prayer_request_id"
            )

        async with self._session_factory() as db:
            result = await db.execute(
                select(
                    PrayerRequest.device_id,
                    PrayerRequest.prayer_count,
                    Device.push_token,
                )
                .outerjoin(Device, Device.device_id == PrayerRequest.device_id)
                .where(
                    PrayerRequest.id == prayer_request_id,
                    PrayerRequest.device_id.is_not(None),
                )
            )
            row = result.first()

        if row is None:
            raise NotFoundError(
                resource="prayer request",
                resource_id=str(prayer_request_id),
                message="Prayer request not found or no device info",
            )
        if not row.push_token:
            return NotificationResultResponse(
                success=True, message="No push token available for prayer creator"
            )
        if row.device_id == joiner_device_id:
            return NotificationResultResponse(
                success=True, message="Not sending notification to same device"
            )

        delivered = await self.provider.send(
            row.push_token,
            PRAYER_JOINED_TITLE,
            prayer_joined_body(row.prayer_count),
            {
                "type": "prayer_joined",
                "prayer_request_id": str(prayer_request_id),
                "prayer_count": str(row.prayer_count),
            },
        )
        if delivered:
            logger.info("Prayer joined notification sent to %s", row.device_id)
        return NotificationResultResponse(
            success=delivered,
            message="Prayer joined notification sent" if delivered else "Failed to send notification",
        )

    async def notify_prayer_joined_in_background(
        self, prayer_request_id: int, joiner_device_id: str
    ) -> None:
        """Background-task wrapper: logs failures, never raises."""
        try:
            outcome = await self.notify_prayer_joined(prayer_request_id, joiner_device_id)
            logger.debug(
                "Joined notification for request %s: %s", prayer_request_id, outcome.message
            )
        except NotFoundError:
            logger.debug("Request %s has no creator device; nothing to notify", prayer_request_id)
        except Exception as e:
            logger.error(
                "Joined notification for request %s failed: %s",
                prayer_request_id,
                str(e),
                exc_info=True,
            )

    async def broadcast_prayer_request(
        self,
        requester_name: Optional[str],
        prayer_text: Optional[str],
        requester_device_id: Optional[str] = None,
    ) -> FanOutResponse:
        """Notify every device with a push token except the requester's."""
        if not requester_name or not prayer_text:
            raise ValidationError(message="Requester name and prayer text are required")

        tokens = await self._push_tokens(exclude_device_id=requester_device_id)
        logger.info("Sending prayer request to %d devices", len(tokens))
        attempted, delivered = await self.fan_out(
            tokens,
            PRAYER_REQUEST_TITLE,
            prayer_request_body(requester_name, prayer_text),
            {
                "type": "prayer_request",
                "requesterName": requester_name,
                "prayerText": prayer_text,
            },
        )
        logger.info("Prayer request notifications sent: %d/%d successful", delivered, attempted)
        return FanOutResponse(
            message="Prayer request sent to all devices",
            devices_notified=attempted,
            successful_notifications=delivered,
        )

    async def send_daily_reminder(self) -> FanOutResponse:
        tokens = await self._push_tokens()
        logger.info("Sending daily reminder to %d devices", len(tokens))
        attempted, delivered = await self.fan_out(
            tokens,
            DAILY_REMINDER_TITLE,
            DAILY_REMINDER_BODY,
            {"type": "daily_reminder"},
        )
        logger.info("Daily reminder notifications sent: %d/%d successful", delivered, attempted)
        return FanOutResponse(
            message="Daily reminder sent to all devices",
            devices_notified=attempted,
            successful_notifications=delivered,
        )

    async def send_test_notification(
        self,
        device_id: Optional[str],
        title: Optional[str] = None,
        body: Optional[str] = None,
        data: Optional[Dict[str, str]] = None,
    ) -> SendTestNotificationResponse:
        """
        Send a diagnostic notification to one registered device.

        Raises:
            ValidationError: device_id missing, or the device has no token
            NotFoundError: device not registered
            PushUnavailableError: no live push provider
        """
        device_id = require_device_id(device_id)

        async with self._session_factory() as db:
            device = await device_registry.get(db, device_id)
        if device is None:
            raise NotFoundError(resource="device", resource_id=device_id, message="Device not found")
        if not device.push_token:
            raise ValidationError(
                message="Device has no push token registered", field="push_token"
            )
        if not self.provider.available:
            raise PushUnavailableError()

        payload = NotificationPayload(
            title=title or TEST_TITLE,
            body=body or TEST_BODY,
            data=data or {"type": "test"},
        )
        delivered = await self.provider.send(
            device.push_token, payload.title, payload.body, payload.data
        )
        logger.info(
            "Test notification to %s: %s", device_id, "success" if delivered else "failed"
        )
        return SendTestNotificationResponse(
            success=delivered,
            message=(
                "Test notification sent successfully"
                if delivered
                else "Failed to send test notification"
            ),
            device_id=device_id,
            platform=device.platform,
            notification=payload,
        )

    # ── Helpers ───────────────────────────────────────────────────────────
    async def _push_tokens(self, exclude_device_id: Optional[str] = None) -> List[str]:
        async with self._session_factory() as db:
            return await device_registry.push_tokens(db, exclude_device_id=exclude_device_id)
