"""Inbox and delivery preference tables.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Delivered notifications (one row per recipient)
    op.create_table(
        "notifications",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("to_user_id", sa.String(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("link", sa.String(), nullable=True),
        sa.Column("dedup_key", sa.String(), nullable=True, unique=True),
        sa.Column("read", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("user_set_read", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_notifications_to_user_created", "notifications", ["to_user_id", "created_at"])

    # Per-user channel and frequency preferences
    op.create_table(
        "notification_preferences",
        sa.Column("user_id", sa.String(), primary_key=True),
        sa.Column("email", sa.String(), nullable=False, server_default=""),
        sa.Column("delivery_method", sa.JSON(), nullable=False, server_default="[]"),
        sa.Column("delivery_frequency", sa.String(), nullable=False, server_default="Immediate"),
        sa.Column("delivery_time", sa.String(), nullable=False, server_default="1970-01-01T09:00:00+00:00"),
        sa.Column("delivery_day", sa.String(), nullable=False, server_default="Monday"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("notification_preferences")
    op.drop_index("ix_notifications_to_user_created", table_name="notifications")
    op.drop_table("notifications")
