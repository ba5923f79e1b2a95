"""
Prayer API Backend: Database Session Management
=================================================

What:  Async SQLAlchemy engine, session factory, FastAPI dependency and the
       tagged conditional-write helper used for upserts.
How:   Creates an async engine with connection pooling and provides a
       session dependency that commits on success and rolls back on error.
Who:   Route handlers (via Depends), the notification dispatcher (via the
       session factory) and Alembic (via Base.metadata).

Connection Pooling:
    pool_size / max_overflow come from settings. SQLite (used by the test
    suite) manages its own pool, so the sizing arguments are only passed to
    server databases.

Conditional writes:
    PostgreSQL and SQLite both speak `INSERT ... ON CONFLICT`. The conflict
    policy is an explicit argument (IGNORE or UPDATE) instead of being baked
    into ad-hoc statements, so "insert-or-ignore" (topic seed, join links)
    and "insert-or-update" (device registration) are one testable contract.
"""

import asyncio
import enum
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, AsyncIterator, Dict, Iterable, Optional

from sqlalchemy import Table
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from prayer_api.config import settings
from prayer_api.exceptions import PrayerWallError, StorageFailure

logger = logging.getLogger(__name__)


# ── Engine Configuration ──────────────────────────────────────────────────
def _engine_options(url: str) -> Dict[str, Any]:
    options: Dict[str, Any] = {"echo": settings.log_level == "DEBUG"}
    if not url.startswith("sqlite"):
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=settings.db_pool_pre_ping,
            pool_recycle=3600,
        )
    return options


engine = create_async_engine(settings.database_url, **_engine_options(settings.database_url))

# ── Session Factory ───────────────────────────────────────────────────────
# expire_on_commit=False: the store commits inside each mutating operation
# and callers still read attributes afterwards.
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    Shares a single metadata object, which Alembic reads for migrations and
    the test suite uses for `create_all`.
    """
    pass


# ── Session Dependency ────────────────────────────────────────────────────
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session per request.

    How it works:
        1. Creates a new session from the factory
        2. Yields it to the route handler
        3. On success: commits whatever the handler left pending
        4. On error: rolls back
        5. Always: closes the session (returns connection to pool)

    Mutating store operations commit their own transaction, so the final
    commit here is normally a no-op.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── Conditional Writes ────────────────────────────────────────────────────
class ConflictPolicy(str, enum.Enum):
    """What to do when an INSERT hits a unique constraint."""

    IGNORE = "ignore"   # keep the existing row, insert nothing
    UPDATE = "update"   # overwrite the listed columns of the existing row


def conditional_insert(
    dialect_name: str,
    table: Table,
    values: Dict[str, Any],
    *,
    index_elements: Iterable[str],
    policy: ConflictPolicy,
    update_columns: Optional[Iterable[str]] = None,
):
    """
    Build an `INSERT ... ON CONFLICT` statement for the given dialect.

    Args:
        dialect_name: `session.get_bind().dialect.name`
        table: Core table to insert into
        values: Column values for the new row
        index_elements: Columns of the unique constraint that arbitrates
        policy: IGNORE → DO NOTHING; UPDATE → DO UPDATE SET <update_columns>
        update_columns: Required for UPDATE; taken from the proposed row

    Returns:
        An executable Insert. Callers add `.returning(...)` when they need to
        know whether a row was written: under IGNORE a conflicting insert
        returns no row.

    Raises:
        ValueError: unsupported dialect, or UPDATE without update_columns
    """
    if dialect_name == "postgresql":
        stmt = postgresql.insert(table).values(**values)
    elif dialect_name == "sqlite":
        stmt = sqlite.insert(table).values(**values)
    else:
        raise ValueError(f"Conditional insert is not supported on dialect '{dialect_name}'")

    index_elements = list(index_elements)
    if policy is ConflictPolicy.IGNORE:
        return stmt.on_conflict_do_nothing(index_elements=index_elements)

    if not update_columns:
        raise ValueError("ConflictPolicy.UPDATE requires update_columns")
    return stmt.on_conflict_do_update(
        index_elements=index_elements,
        set_={column: stmt.excluded[column] for column in update_columns},
    )


# ── Failure Translation ───────────────────────────────────────────────────
@asynccontextmanager
async def storage_operation(
    db: AsyncSession, operation: str, **context: Any
) -> AsyncIterator[None]:
    """
    Wrap one storage operation: roll back on any error and translate driver
    errors into StorageFailure.

    Application errors (NotFoundError, ValidationError) pass through
    unchanged after the rollback. SQLAlchemy errors, and the raw OSError or
    timeout a driver raises when the server cannot be reached, are logged
    with full detail and re-raised as an opaque StorageFailure; the original
    error is chained for the server-side traceback.

    Usage:
        async with storage_operation(db, "join", request_id=request_id):
            ...statements...
            await db.commit()
    """
    try:
        yield
    except PrayerWallError:
        await db.rollback()
        raise
    except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
        await _rollback_after_failure(db, operation)
        logger.error(
            "Storage failure during %s (%s): %s",
            operation,
            ", ".join(f"{k}={v}" for k, v in context.items()),
            str(e),
            exc_info=True,
        )
        raise StorageFailure(
            context={"operation": operation, "error_type": type(e).__name__, **context},
        ) from e


async def _rollback_after_failure(db: AsyncSession, operation: str) -> None:
    # A dead connection can fail the rollback too; the original error wins.
    try:
        await db.rollback()
    except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
        logger.warning("Rollback after failed %s also failed: %s", operation, str(e))


# ── Lifecycle Helpers ─────────────────────────────────────────────────────
def utcnow() -> datetime:
    """Current time in UTC. Injected as the default clock of the services."""
    return datetime.now(timezone.utc)


async def dispose_engine() -> None:
    """Closes all pooled connections. Called from the lifespan on shutdown."""
    await engine.dispose()
