"""
Prayer API Backend: Notification Route Handlers
=================================================

What:  Endpoints that trigger push notifications.
How:   Each route hands its body to the NotificationDispatcher and returns
       its delivery summary.
Who:   The mobile app (new request, joined), a scheduler (daily reminder)
       and developers (test notification).

Delivery failures are reported in the body (`success`, counts), never as
HTTP errors. Only bad input, unknown targets and a disabled push provider
produce error statuses.
"""

from fastapi import APIRouter, Depends

from prayer_api.dependencies import get_dispatcher
from prayer_api.schemas.common import ErrorResponse
from prayer_api.schemas.device import (
    BroadcastPrayerRequestBody,
    FanOutResponse,
    NotificationResultResponse,
    PrayerJoinedBody,
    SendTestNotificationBody,
    SendTestNotificationResponse,
)
from prayer_api.services.notification_dispatcher import NotificationDispatcher

router = APIRouter(prefix="/api", tags=["Notifications"])

_server_error = {500: {"description": "Server error", "model": ErrorResponse}}


@router.post(
    "/send-prayer-request",
    response_model=FanOutResponse,
    responses={
        400: {"description": "Requester name and prayer text are required", "model": ErrorResponse},
        **_server_error,
    },
    summary="Broadcast a new prayer request",
    description="Notifies every device with a push token except the requester's.",
)
async def send_prayer_request(
    body: BroadcastPrayerRequestBody,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> FanOutResponse:
    return await dispatcher.broadcast_prayer_request(
        requester_name=body.requester_name,
        prayer_text=body.prayer_text,
        requester_device_id=body.requester_device_id,
    )


@router.post(
    "/send-prayer-joined",
    response_model=NotificationResultResponse,
    responses={
        400: {"description": "Prayer request ID is required", "model": ErrorResponse},
        404: {"description": "Request not found or has no creator device", "model": ErrorResponse},
        **_server_error,
    },
    summary="Notify a request's creator that someone joined",
)
async def send_prayer_joined(
    body: PrayerJoinedBody,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> NotificationResultResponse:
    return await dispatcher.notify_prayer_joined(
        body.prayer_request_id, body.joiner_device_id
    )


@router.post(
    "/send-daily-reminder",
    response_model=FanOutResponse,
    responses=_server_error,
    summary="Send the daily prayer reminder to every device",
)
async def send_daily_reminder(
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> FanOutResponse:
    return await dispatcher.send_daily_reminder()


@router.post(
    "/send-test-notification",
    response_model=SendTestNotificationResponse,
    responses={
        400: {"description": "Missing device ID, or device has no push token", "model": ErrorResponse},
        404: {"description": "Device not found", "model": ErrorResponse},
        503: {"description": "Push notifications not available", "model": ErrorResponse},
        **_server_error,
    },
    summary="Send a test notification to one device",
)
async def send_test_notification(
    body: SendTestNotificationBody,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> SendTestNotificationResponse:
    return await dispatcher.send_test_notification(
        body.device_id, title=body.title, body=body.body, data=body.data
    )
