"""
Prayer API Backend: Participation Store (Core State Machine)
==============================================================

What:  Durable prayer requests and the per-device join / complete state.
Who:   Called by the prayer request and maintenance routes.
When:  Every submission, listing and participation call.

Counters:
    prayer_count    monotonic, deduplicated: +1 only when a device's first
                    join inserts its DevicePrayerLink (or via legacy `pray`)
    active_prayers  live gauge: +1 on start-praying / pray, -1 (floored at
                    zero) on stop-praying / complete

    The two are updated independently and never derived from each other.

Per-(device, request) state machine:
    NOT_JOINED ──join──▶ JOINED ──complete──▶ COMPLETED (terminal)
    A second join is a no-op; a second complete is NotFound.

Concurrency:
    No in-process state. Each counter change is one conditional UPDATE
    (`SET col = col + 1 WHERE id = :id AND expires_at > :now`), never a
    read-modify-write from Python. Join runs its existence check, the
    `INSERT ... ON CONFLICT DO NOTHING RETURNING id` of the link and the
    increment in one transaction; the unique constraint on
    (device_id, prayer_request_id) decides which of two concurrent joins
    counts. A conflicting insert returns no row and takes the
    "already joined" branch.

    Every mutating method commits before returning, so the transaction
    boundary is the operation itself, not the HTTP request.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import case, delete, func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from prayer_api.config import settings
from prayer_api.database import (
    ConflictPolicy,
    conditional_insert,
    storage_operation,
    utcnow,
)
from prayer_api.exceptions import NotFoundError, StorageFailure, ValidationError
from prayer_api.models.prayer import DevicePrayerLink, PrayerRequest, Topic
from prayer_api.schemas.prayer import (
    ActivePrayerRequest,
    DevicePrayerItem,
    JoinResult,
    PrayerRequestResponse,
    StatsResponse,
)

logger = logging.getLogger(__name__)

requests_table = PrayerRequest.__table__
links_table = DevicePrayerLink.__table__
topics_table = Topic.__table__

REQUEST_NOT_FOUND = "Prayer request not found or expired"
LINK_NOT_FOUND = "Prayer not found for this device or already completed"

# max(active_prayers - 1, 0), portable across PostgreSQL and SQLite
_decrement_active = case(
    (requests_table.c.active_prayers > 0, requests_table.c.active_prayers - 1),
    else_=0,
)


def require_device_id(device_id: Optional[str]) -> str:
    """Returns the stripped device id or raises ValidationError."""
    if device_id is None or not device_id.strip():
        raise ValidationError(message="Device ID is required", field="device_id")
    return device_id.strip()


def _main_category_columns():
    """Topic title, category and main-category title for a joined topic row."""
    parent = topics_table.alias("parent_topic")
    main_category = case(
        (topics_table.c.parent_id.is_(None), topics_table.c.title),
        else_=parent.c.title,
    ).label("main_category")
    columns = [
        topics_table.c.title.label("topic_title"),
        topics_table.c.category,
        main_category,
    ]
    return parent, columns


class ParticipationStore:
    """
    The prayer-participation state machine over the durable store.

    Stateless apart from its clock and TTL: the session is passed to every
    call, so concurrent HTTP requests share nothing but the database.

    Args:
        clock: Returns "now" in UTC. Every expiry comparison and timestamp
               written by this class comes from it.
        ttl:   Lifetime of a new request (default: settings.request_ttl_hours)
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = utcnow,
        ttl: Optional[timedelta] = None,
    ):
        self._clock = clock
        self._ttl = ttl or timedelta(hours=settings.request_ttl_hours)

    def _is_active(self, now: datetime):
        return requests_table.c.expires_at > now

    # ══════════════════════════════════════════════════════════════════════
    # Submission & Reads
    # ══════════════════════════════════════════════════════════════════════

    async def create_request(
        self,
        db: AsyncSession,
        topic_id: Optional[int],
        description: Optional[str] = None,
        device_id: Optional[str] = None,
    ) -> PrayerRequestResponse:
        """
        Submit a new prayer request expiring `ttl` from now.

        Raises:
            ValidationError: topic_id missing or not an existing topic
            StorageFailure: the insert failed
        """
        if topic_id is None:
            raise ValidationError(message="Topic ID is required", field="topic_id")

        now = self._clock()
        async with storage_operation(db, "create_request", topic_id=topic_id):
            topic = await db.execute(
                select(topics_table.c.id).where(topics_table.c.id == topic_id)
            )
            if topic.scalar_one_or_none() is None:
                raise ValidationError(
                    message=f"Topic {topic_id} does not exist",
                    field="topic_id",
                )

            result = await db.execute(
                insert(requests_table)
                .values(
                    topic_id=topic_id,
                    device_id=device_id or None,
                    description=description,
                    prayer_count=0,
                    active_prayers=0,
                    created_at=now,
                    expires_at=now + self._ttl,
                )
                .returning(*requests_table.c)
            )
            row = result.one()
            await db.commit()

        logger.info("Prayer request %s created for topic %s", row.id, topic_id)
        return PrayerRequestResponse.model_validate(row)

    async def list_active(self, db: AsyncSession) -> List[ActivePrayerRequest]:
        """All non-expired requests, newest first, with topic titles."""
        now = self._clock()
        parent, topic_columns = _main_category_columns()
        query = (
            select(*requests_table.c, *topic_columns)
            .select_from(
                requests_table.join(
                    topics_table, requests_table.c.topic_id == topics_table.c.id
                ).outerjoin(parent, topics_table.c.parent_id == parent.c.id)
            )
            .where(self._is_active(now))
            .order_by(requests_table.c.created_at.desc(), requests_table.c.id.desc())
        )
        async with storage_operation(db, "list_active"):
            result = await db.execute(query)
            rows = result.all()
        return [ActivePrayerRequest.model_validate(row) for row in rows]

    async def list_for_device(
        self, db: AsyncSession, device_id: str
    ) -> List[DevicePrayerItem]:
        """Active requests this device joined, most recent join first."""
        now = self._clock()
        parent, topic_columns = _main_category_columns()
        r = requests_table.c
        query = (
            select(
                r.id,
                r.topic_id,
                r.description,
                r.prayer_count,
                r.active_prayers,
                r.created_at,
                r.expires_at,
                *topic_columns,
                links_table.c.joined_at,
                links_table.c.completed_at,
            )
            .select_from(
                links_table.join(requests_table, links_table.c.prayer_request_id == r.id)
                .join(topics_table, r.topic_id == topics_table.c.id)
                .outerjoin(parent, topics_table.c.parent_id == parent.c.id)
            )
            .where(links_table.c.device_id == device_id, self._is_active(now))
            .order_by(links_table.c.joined_at.desc())
        )
        async with storage_operation(db, "list_for_device", device_id=device_id):
            result = await db.execute(query)
            rows = result.all()
        return [DevicePrayerItem.model_validate(row) for row in rows]

    # ══════════════════════════════════════════════════════════════════════
    # Participation
    # ══════════════════════════════════════════════════════════════════════

    async def join(
        self, db: AsyncSession, request_id: int, device_id: Optional[str]
    ) -> JoinResult:
        """
        Count a device toward a request, at most once.

        Flow (one transaction):
            1. Request must exist and be active, else NotFoundError
            2. INSERT link ON CONFLICT DO NOTHING RETURNING id
            3a. Row returned → prayer_count = prayer_count + 1
            3b. No row → link already existed; read the unchanged request

        Returns:
            JoinResult with the current request row; already_joined tells
            the caller whether anything was written.
        """
        device_id = require_device_id(device_id)
        now = self._clock()

        async with storage_operation(db, "join", request_id=request_id, device_id=device_id):
            found = await db.execute(
                select(requests_table.c.id).where(
                    requests_table.c.id == request_id, self._is_active(now)
                )
            )
            if found.scalar_one_or_none() is None:
                raise NotFoundError(
                    resource="prayer request",
                    resource_id=str(request_id),
                    message=REQUEST_NOT_FOUND,
                )

            link_insert = conditional_insert(
                db.get_bind().dialect.name,
                links_table,
                {"device_id": device_id, "prayer_request_id": request_id, "joined_at": now},
                index_elements=["device_id", "prayer_request_id"],
                policy=ConflictPolicy.IGNORE,
            ).returning(links_table.c.id)
            inserted = await db.execute(link_insert)
            already_joined = inserted.scalar_one_or_none() is None

            if already_joined:
                result = await db.execute(
                    select(*requests_table.c).where(requests_table.c.id == request_id)
                )
            else:
                result = await db.execute(
                    update(requests_table)
                    .where(requests_table.c.id == request_id)
                    .values(prayer_count=requests_table.c.prayer_count + 1)
                    .returning(*requests_table.c)
                )
            row = result.one()
            await db.commit()

        if already_joined:
            logger.debug("Device %s re-joined request %s (no-op)", device_id, request_id)
        else:
            logger.info(
                "Device %s joined request %s (prayer_count=%d)",
                device_id,
                request_id,
                row.prayer_count,
            )
        return JoinResult(
            request=PrayerRequestResponse.model_validate(row),
            already_joined=already_joined,
        )

    async def _update_active_request(
        self, db: AsyncSession, request_id: int, operation: str, **values
    ) -> PrayerRequestResponse:
        """One conditional UPDATE on an active request; NotFoundError if none matched."""
        now = self._clock()
        async with storage_operation(db, operation, request_id=request_id):
            result = await db.execute(
                update(requests_table)
                .where(requests_table.c.id == request_id, self._is_active(now))
                .values(**values)
                .returning(*requests_table.c)
            )
            row = result.one_or_none()
            if row is None:
                raise NotFoundError(
                    resource="prayer request",
                    resource_id=str(request_id),
                    message=REQUEST_NOT_FOUND,
                )
            await db.commit()
        return PrayerRequestResponse.model_validate(row)

    async def start_praying(self, db: AsyncSession, request_id: int) -> PrayerRequestResponse:
        """active_prayers + 1. Creates no link, leaves prayer_count alone."""
        return await self._update_active_request(
            db,
            request_id,
            "start_praying",
            active_prayers=requests_table.c.active_prayers + 1,
        )

    async def stop_praying(self, db: AsyncSession, request_id: int) -> PrayerRequestResponse:
        """active_prayers - 1, floored at zero."""
        return await self._update_active_request(
            db, request_id, "stop_praying", active_prayers=_decrement_active
        )

    async def pray(self, db: AsyncSession, request_id: int) -> PrayerRequestResponse:
        """
        Legacy combined call for clients that predate join/complete.

        Increments both counters with no device dedup and no link, so
        repeated calls keep counting.
        """
        return await self._update_active_request(
            db,
            request_id,
            "pray",
            prayer_count=requests_table.c.prayer_count + 1,
            active_prayers=requests_table.c.active_prayers + 1,
        )

    async def complete(
        self, db: AsyncSession, request_id: int, device_id: Optional[str]
    ) -> None:
        """
        Mark the device's participation as completed (terminal).

        Sets completed_at once and decrements active_prayers (floored).
        prayer_count is untouched: completing does not undo having prayed.

        Raises:
            NotFoundError: never joined, already completed, or the request
                is missing or expired. Callers cannot tell these apart.
        """
        device_id = require_device_id(device_id)
        now = self._clock()
        active_request = select(requests_table.c.id).where(
            requests_table.c.id == request_id, self._is_active(now)
        )

        async with storage_operation(db, "complete", request_id=request_id, device_id=device_id):
            marked = await db.execute(
                update(links_table)
                .where(
                    links_table.c.device_id == device_id,
                    links_table.c.prayer_request_id == request_id,
                    links_table.c.prayer_request_id.in_(active_request),
                    links_table.c.completed_at.is_(None),
                )
                .values(completed_at=now)
                .returning(links_table.c.id)
            )
            if marked.scalar_one_or_none() is None:
                raise NotFoundError(
                    resource="prayer",
                    resource_id=str(request_id),
                    message=LINK_NOT_FOUND,
                    context={"device_id": device_id},
                )

            await db.execute(
                update(requests_table)
                .where(requests_table.c.id == request_id)
                .values(active_prayers=_decrement_active)
            )
            await db.commit()

        logger.info("Device %s completed request %s", device_id, request_id)

    async def legacy_complete(self, db: AsyncSession, request_id: int) -> PrayerRequestResponse:
        """Old DELETE /complete: only the floored active_prayers decrement."""
        return await self._update_active_request(
            db, request_id, "legacy_complete", active_prayers=_decrement_active
        )

    # ══════════════════════════════════════════════════════════════════════
    # Aggregates & Maintenance
    # ══════════════════════════════════════════════════════════════════════

    async def get_stats(self, db: AsyncSession) -> StatsResponse:
        """
        Totals over active requests. Never raises: a storage failure is
        logged and reported as all zeros.

        Each total is its own scalar subquery so that a request with many
        links is not summed once per link.
        """
        now = self._clock()
        r = requests_table.c
        active = self._is_active(now)
        query = select(
            select(func.coalesce(func.sum(r.prayer_count), 0))
            .where(active)
            .scalar_subquery()
            .label("total_prayers"),
            select(func.coalesce(func.sum(r.active_prayers), 0))
            .where(active)
            .scalar_subquery()
            .label("active_prayers"),
            select(func.count(links_table.c.id))
            .select_from(links_table.join(requests_table, links_table.c.prayer_request_id == r.id))
            .where(active, links_table.c.completed_at.is_not(None))
            .scalar_subquery()
            .label("completed_prayers"),
        )
        try:
            async with storage_operation(db, "get_stats"):
                result = await db.execute(query)
                row = result.one()
        except StorageFailure:
            logger.warning("Statistics unavailable; reporting zeros")
            return StatsResponse()

        return StatsResponse(
            total_prayers=int(row.total_prayers or 0),
            active_prayers=int(row.active_prayers or 0),
            completed_prayers=int(row.completed_prayers or 0),
        )

    async def cleanup_expired(self, db: AsyncSession) -> int:
        """
        Permanently delete requests with expires_at <= now and their links.

        Idempotent; meant to be triggered by an external scheduler through
        DELETE /api/cleanup-expired. Links are deleted explicitly so the
        sweep does not depend on the database enforcing ON DELETE CASCADE.

        Returns:
            Number of prayer requests deleted.
        """
        now = self._clock()
        expired = requests_table.c.expires_at <= now
        async with storage_operation(db, "cleanup_expired"):
            await db.execute(
                delete(links_table).where(
                    links_table.c.prayer_request_id.in_(select(requests_table.c.id).where(expired))
                )
            )
            result = await db.execute(delete(requests_table).where(expired))
            deleted = result.rowcount or 0
            await db.commit()

        logger.info("Cleanup removed %d expired prayer requests", deleted)
        return deleted

    async def reset_active_prayers(self, db: AsyncSession) -> int:
        """Debug aid: zero every active_prayers gauge. Returns rows updated."""
        async with storage_operation(db, "reset_active_prayers"):
            result = await db.execute(update(requests_table).values(active_prayers=0))
            updated = result.rowcount or 0
            await db.commit()

        logger.warning("active_prayers reset to zero on %d requests", updated)
        return updated


participation_store = ParticipationStore()
