"""
Prayer API Backend: Prayer Request/Response Schemas
=====================================================

What:  Pydantic models for topics, prayer requests, participation and stats.
How:   Response models are built from SQLAlchemy rows (`from_attributes`);
       request bodies are deliberately lenient (all fields optional) so that
       a missing identifier becomes our own 400 ValidationError with a stable
       message instead of FastAPI's generic 422.

Field names follow the wire format existing mobile clients already parse
(snake_case, `prayer_count`, `active_prayers`, ...).
"""

from datetime import datetime
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, Field


# ══════════════════════════════════════════════════════════════════════════
# Topic Catalog
# ══════════════════════════════════════════════════════════════════════════


class TopicSummary(BaseModel):
    id: int
    title: str


class TopicGroup(BaseModel):
    """
    A main category with its subcategories nested underneath.

    Example:
        {"id": 1, "title": "Job", "subcategories": [{"id": 16, "title": "I just lost my job"}]}
    """
    id: int = Field(description="Main category topic id")
    title: str = Field(description="Main category title")
    subcategories: List[TopicSummary] = Field(default_factory=list)


# ══════════════════════════════════════════════════════════════════════════
# Request Bodies
# ══════════════════════════════════════════════════════════════════════════


class CreatePrayerRequestBody(BaseModel):
    """Body of POST /api/prayer-requests. Older clients send `topicId`."""
    topic_id: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("topic_id", "topicId"),
        description="Topic (main category or subcategory) the request is filed under",
    )
    description: Optional[str] = Field(default=None, description="Free text; no length limit")
    device_id: Optional[str] = Field(default=None, description="Creator device")


class DeviceActionBody(BaseModel):
    """Body of join / start-praying / stop-praying / complete."""
    device_id: Optional[str] = Field(default=None, description="Acting device")


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class PrayerRequestResponse(BaseModel):
    """The raw prayer request row, returned by every mutating operation."""
    id: int
    topic_id: int
    device_id: Optional[str] = None
    description: Optional[str] = None
    prayer_count: int = Field(description="Distinct devices that joined")
    active_prayers: int = Field(description="Devices currently praying")
    created_at: datetime
    expires_at: datetime

    model_config = {"from_attributes": True}


class ActivePrayerRequest(PrayerRequestResponse):
    """A listed request, enriched with its topic and main category titles."""
    topic_title: str
    category: str
    main_category: str


class DevicePrayerItem(BaseModel):
    """A request the device has joined, with the device's own link state."""
    id: int
    topic_id: int
    description: Optional[str] = None
    prayer_count: int
    active_prayers: int
    created_at: datetime
    expires_at: datetime
    topic_title: str
    category: str
    main_category: str
    joined_at: datetime
    completed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class JoinResult(BaseModel):
    """
    Outcome of a join.

    already_joined=True is the duplicate-join branch: nothing was written and
    `request` is the current, unchanged state.
    """
    request: PrayerRequestResponse
    already_joined: bool


class StatsResponse(BaseModel):
    """Aggregates over active (non-expired) requests only."""
    total_prayers: int = 0
    active_prayers: int = 0
    completed_prayers: int = 0


class CleanupResponse(BaseModel):
    message: str
    deleted_count: int


class ResetActivePrayersResponse(BaseModel):
    success: bool = True
    message: str
    updated_count: int
