"""
Prayer API Backend: Topic Catalog
===================================

What:  Read-only two-level topic hierarchy (main category → subcategories)
       and the fixed seed set it is populated with.
Who:   GET /api/prayer-topics; the lifespan seeds it on startup.

Topic ids are reference data that clients hard-code, so the seed writes
explicit ids with insert-or-ignore and never renumbers existing rows.
"""

import logging
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession

from prayer_api.database import ConflictPolicy, conditional_insert, storage_operation
from prayer_api.models.prayer import Topic
from prayer_api.schemas.prayer import TopicGroup, TopicSummary

logger = logging.getLogger(__name__)

topics_table = Topic.__table__

# (id, title, category, parent_id)
SEED_TOPICS: Tuple[Tuple[int, str, str, Optional[int]], ...] = (
    (1, "Job", "main", None),
    (16, "I just lost my job", "job", 1),
    (17, "I need a job", "job", 1),
    (2, "Finances", "main", None),
    (18, "Budget Help", "Finances", 2),
    (19, "Work - Raise", "Finances", 2),
    (3, "Spouse", "main", None),
    (4, "Spouse - Infidelity", "spouse", 3),
    (5, "Spouse - Divorce", "spouse", 3),
    (6, "Spouse - Death", "spouse", 3),
    (7, "Children", "main", None),
    (8, "Children - Defiance", "children", 7),
    (9, "Children - School", "children", 7),
    (10, "Health", "main", None),
    (11, "Health - Spouse", "health", 10),
    (12, "Health - Friend", "health", 10),
    (13, "Health - Parent", "health", 10),
    (14, "Health - Child", "health", 10),
    (20, "Pregnancy", "health", 10),
    (15, "Other - God will know", "main", None),
)


def group_topics(rows: Iterable) -> List[TopicGroup]:
    """
    Nest subcategories under their main category.

    Args:
        rows: Anything with `id`, `title` and `parent_id` attributes
              (ORM objects or result rows), in any order.

    Returns:
        Main categories ordered by id, each with its subcategories ordered
        by id. A main category without subcategories still appears. A
        subcategory whose parent is missing is dropped.
    """
    rows = sorted(rows, key=lambda r: r.id)
    groups = {
        row.id: TopicGroup(id=row.id, title=row.title)
        for row in rows
        if row.parent_id is None
    }
    for row in rows:
        if row.parent_id is None:
            continue
        parent = groups.get(row.parent_id)
        if parent is None:
            logger.warning("Topic %s references missing parent %s", row.id, row.parent_id)
            continue
        parent.subcategories.append(TopicSummary(id=row.id, title=row.title))
    return list(groups.values())


class TopicCatalog:
    """Reads and seeds `prayer_topics`."""

    async def list_grouped(self, db: AsyncSession) -> List[TopicGroup]:
        async with storage_operation(db, "list_topics"):
            result = await db.execute(
                select(
                    topics_table.c.id,
                    topics_table.c.title,
                    topics_table.c.parent_id,
                ).order_by(topics_table.c.id)
            )
            rows = result.all()
        return group_topics(rows)

    async def seed_topics(self, db: AsyncSession) -> int:
        """
        Insert the fixed topic set, leaving existing ids untouched.

        Main categories go first so subcategory foreign keys resolve. On
        PostgreSQL the id sequence is moved past the explicit ids.

        Returns:
            Number of topics inserted by this call.
        """
        dialect = db.get_bind().dialect.name
        ordered = sorted(SEED_TOPICS, key=lambda t: (t[3] is not None, t[0]))
        inserted = 0
        async with storage_operation(db, "seed_topics"):
            for topic_id, title, category, parent_id in ordered:
                stmt = conditional_insert(
                    dialect,
                    topics_table,
                    {
                        "id": topic_id,
                        "title": title,
                        "category": category,
                        "parent_id": parent_id,
                    },
                    index_elements=["id"],
                    policy=ConflictPolicy.IGNORE,
                ).returning(topics_table.c.id)
                result = await db.execute(stmt)
                if result.scalar_one_or_none() is not None:
                    inserted += 1

            if dialect == "postgresql":
                await db.execute(
                    text(
                        "SELECT setval('prayer_topics_id_seq', "
                        "(SELECT MAX(id) FROM prayer_topics))"
                    )
                )
            await db.commit()

        if inserted:
            logger.info("Seeded %d prayer topics", inserted)
        return inserted


topic_catalog = TopicCatalog()
