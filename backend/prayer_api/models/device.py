"""
Prayer API Backend: Device SQLAlchemy Model
=============================================

What:  ORM model for the `devices` table (push-notification registry).
Who:   Written by the device registry (register upsert); read by the
       notification dispatcher to resolve push tokens.

The Participation Store never touches this table: a device may join and
complete prayers without ever registering for push.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from prayer_api.database import Base, utcnow


class Device(Base):
    """An anonymous client that may receive push notifications."""

    __tablename__ = "devices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    device_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    # FCM registration token; NULL when the user declined notifications.
    push_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    platform: Mapped[str] = mapped_column(String(20), nullable=False)
    last_active: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    __table_args__ = (
        Index("idx_devices_last_active", "last_active"),
    )

    def __repr__(self) -> str:
        return f"<Device(device_id='{self.device_id}', platform='{self.platform}')>"
