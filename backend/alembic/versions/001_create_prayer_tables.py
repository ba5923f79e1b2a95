"""Create prayer wall tables

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

What:  prayer_topics, prayer_requests, device_prayers and devices, with the
       indexes the hot queries use.
How:   Topic rows are not inserted here; the application seeds them on
       startup with insert-or-ignore, so existing deployments keep their ids.

Rollback: downgrade() drops all four tables (destructive).
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "prayer_topics",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("category", sa.String(100), nullable=False),
        sa.Column(
            "parent_id",
            sa.Integer(),
            sa.ForeignKey("prayer_topics.id"),
            nullable=True,
            comment="NULL for main categories",
        ),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_prayer_topics_parent_id", "prayer_topics", ["parent_id"])

    op.create_table(
        "prayer_requests",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column(
            "topic_id",
            sa.Integer(),
            sa.ForeignKey("prayer_topics.id"),
            nullable=False,
        ),
        sa.Column(
            "device_id",
            sa.String(255),
            nullable=True,
            comment="Creator device; NULL for requests from pre-device-id clients",
        ),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "prayer_count",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("0"),
            comment="Distinct devices that joined",
        ),
        sa.Column(
            "active_prayers",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("0"),
            comment="Devices currently praying, never negative",
        ),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("expires_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_prayer_requests_expires_at", "prayer_requests", ["expires_at"])
    op.create_index("idx_prayer_requests_topic_id", "prayer_requests", ["topic_id"])
    op.create_index("idx_prayer_requests_device_id", "prayer_requests", ["device_id"])

    op.create_table(
        "device_prayers",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("device_id", sa.String(255), nullable=False),
        sa.Column(
            "prayer_request_id",
            sa.Integer(),
            sa.ForeignKey("prayer_requests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("joined_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column(
            "completed_at",
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment="Set once; the participation is terminal afterwards",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "device_id",
            "prayer_request_id",
            name="uq_device_prayers_device_request",
        ),
    )
    op.create_index("idx_device_prayers_device_id", "device_prayers", ["device_id"])
    op.create_index("idx_device_prayers_request_id", "device_prayers", ["prayer_request_id"])

    op.create_table(
        "devices",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("device_id", sa.String(255), nullable=False),
        sa.Column("push_token", sa.Text(), nullable=True),
        sa.Column("platform", sa.String(20), nullable=False),
        sa.Column("last_active", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("device_id"),
    )
    op.create_index("idx_devices_last_active", "devices", ["last_active"])


def downgrade() -> None:
    op.drop_index("idx_devices_last_active", table_name="devices")
    op.drop_table("devices")
    op.drop_index("idx_device_prayers_request_id", table_name="device_prayers")
    op.drop_index("idx_device_prayers_device_id", table_name="device_prayers")
    op.drop_table("device_prayers")
    op.drop_index("idx_prayer_requests_device_id", table_name="prayer_requests")
    op.drop_index("idx_prayer_requests_topic_id", table_name="prayer_requests")
    op.drop_index("idx_prayer_requests_expires_at", table_name="prayer_requests")
    op.drop_table("prayer_requests")
    op.drop_index("idx_prayer_topics_parent_id", table_name="prayer_topics")
    op.drop_table("prayer_topics")
