"""
Prayer API Backend: Device & Notification Schemas
===================================================

What:  Payloads for device registration, diagnostics and the push endpoints.
How:   Notification bodies accept the camelCase names older clients send
       (`requesterName`, `prayerText`, ...) as well as snake_case.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import AliasChoices, BaseModel, Field


# ══════════════════════════════════════════════════════════════════════════
# Device Registry
# ══════════════════════════════════════════════════════════════════════════


class RegisterDeviceBody(BaseModel):
    device_id: Optional[str] = None
    push_token: Optional[str] = None
    platform: Optional[str] = Field(default=None, description="ios, android or web")


class DeviceResponse(BaseModel):
    device_id: str
    push_token: Optional[str] = None
    platform: str
    last_active: datetime
    created_at: datetime

    model_config = {"from_attributes": True}


class RegisterDeviceResponse(BaseModel):
    success: bool = True
    message: str = "Device registered successfully"
    device: DeviceResponse


class DeviceListItem(BaseModel):
    """Registry listing entry. The push token itself is never exposed."""
    device_id: str
    platform: str
    last_active: datetime
    created_at: datetime
    has_push_token: str = Field(description="'yes' or 'no'")


class DevicePrayerStats(BaseModel):
    total_joined_prayers: int = 0
    completed_prayers: int = 0
    currently_active_prayers: int = 0


class RecentActivity(BaseModel):
    prayer_id: int
    description: Optional[str] = None
    topic_title: str
    joined_at: datetime
    completed_at: Optional[datetime] = None


class DeviceInfoResponse(BaseModel):
    device_id: str
    registered: bool
    registration_info: Optional[DeviceResponse] = None
    prayer_stats: DevicePrayerStats
    recent_activity: List[RecentActivity]
    push_notification_ready: bool
    push_available: bool


# ══════════════════════════════════════════════════════════════════════════
# Notifications
# ══════════════════════════════════════════════════════════════════════════


class BroadcastPrayerRequestBody(BaseModel):
    requester_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("requester_name", "requesterName"),
    )
    prayer_text: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("prayer_text", "prayerText"),
    )
    requester_device_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("requester_device_id", "requesterDeviceId"),
    )


class PrayerJoinedBody(BaseModel):
    prayer_request_id: Optional[int] = None
    joiner_device_id: Optional[str] = None


class SendTestNotificationBody(BaseModel):
    device_id: Optional[str] = None
    title: Optional[str] = None
    body: Optional[str] = None
    data: Optional[Dict[str, str]] = None


class FanOutResponse(BaseModel):
    """Result of a broadcast: how many targets were tried and how many accepted."""
    success: bool = True
    message: str
    devices_notified: int
    successful_notifications: int


class NotificationResultResponse(BaseModel):
    success: bool
    message: str


class NotificationPayload(BaseModel):
    title: str
    body: str
    data: Dict[str, str]


class SendTestNotificationResponse(BaseModel):
    success: bool
    message: str
    device_id: str
    platform: str
    notification: NotificationPayload
