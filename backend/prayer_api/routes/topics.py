"""
Prayer API Backend: Topic Catalog Route
=========================================

What:  GET /api/prayer-topics, the grouped topic hierarchy.
Who:   Called by the app's "new prayer request" topic picker.
"""

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from prayer_api.database import get_db_session
from prayer_api.schemas.common import ErrorResponse
from prayer_api.schemas.prayer import TopicGroup
from prayer_api.services.topic_catalog import topic_catalog

router = APIRouter(prefix="/api", tags=["Topics"])


@router.get(
    "/prayer-topics",
    response_model=List[TopicGroup],
    responses={500: {"description": "Server error", "model": ErrorResponse}},
    summary="List prayer topics grouped by main category",
    description=(
        "Main categories ordered by id, each with its subcategories nested "
        "underneath. Categories without subcategories are included."
    ),
)
async def list_prayer_topics(
    db: AsyncSession = Depends(get_db_session),
) -> List[TopicGroup]:
    return await topic_catalog.list_grouped(db)
