"""
Prayer API Backend: Prayer SQLAlchemy Models
==============================================

What:  ORM models for `prayer_topics`, `prayer_requests` and `device_prayers`.
Who:   Used by the Participation Store and Topic Catalog; read by Alembic.

Table Design Rationale:
    - Integer primary keys: topic ids are fixed reference data (1..20) that
      clients hard-code; requests follow the same convention.
    - prayer_count / active_prayers live on the request row and are only
      ever changed with single-statement arithmetic (`col = col + 1`).
    - device_prayers is the source of truth for "has this device been
      counted". Its unique (device_id, prayer_request_id) constraint is what
      keeps prayer_count equal to the number of links.
    - Timestamps are timezone-aware and always written in UTC by the
      services (never by a server default), so expiry comparisons use one
      clock.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from prayer_api.database import Base, utcnow


class Topic(Base):
    """
    A prayer topic. Main categories have parent_id = NULL; subcategories
    point at their main category. Nesting is exactly one level deep.
    """

    __tablename__ = "prayer_topics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    parent_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("prayer_topics.id"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    __table_args__ = (
        Index("idx_prayer_topics_parent_id", "parent_id"),
    )

    def __repr__(self) -> str:
        return f"<Topic(id={self.id}, title='{self.title}', parent_id={self.parent_id})>"


class PrayerRequest(Base):
    """
    A time-limited unit of community prayer focus.

    Lifecycle:
        1. Created on submission with expires_at = created_at + TTL
        2. Counters mutated by join / start / stop / complete / pray
        3. Invisible to reads once expires_at <= now
        4. Physically deleted by the cleanup sweep (links cascade)

    Counters:
        prayer_count:   distinct devices that ever joined (monotonic)
        active_prayers: devices currently holding the pray button (gauge, >= 0)
    """

    __tablename__ = "prayer_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    topic_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("prayer_topics.id"),
        nullable=False,
    )
    # Creator device; NULL for requests submitted by pre-device-id clients.
    device_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    prayer_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )
    active_prayers: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_prayer_requests_expires_at", "expires_at"),
        Index("idx_prayer_requests_topic_id", "topic_id"),
        Index("idx_prayer_requests_device_id", "device_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<PrayerRequest(id={self.id}, topic_id={self.topic_id}, "
            f"prayer_count={self.prayer_count}, active_prayers={self.active_prayers})>"
        )


class DevicePrayerLink(Base):
    """
    "Device X is or was participating in request Y."

    State per (device, request) pair:
        NOT_JOINED (no row) → JOINED (completed_at NULL) → COMPLETED (terminal)
    """

    __tablename__ = "device_prayers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    device_id: Mapped[str] = mapped_column(String(255), nullable=False)
    prayer_request_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("prayer_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    __table_args__ = (
        UniqueConstraint(
            "device_id",
            "prayer_request_id",
            name="uq_device_prayers_device_request",
        ),
        Index("idx_device_prayers_device_id", "device_id"),
        Index("idx_device_prayers_request_id", "prayer_request_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<DevicePrayerLink(device_id='{self.device_id}', "
            f"prayer_request_id={self.prayer_request_id}, completed_at={self.completed_at})>"
        )
