"""add staged (two-level) escalation fields

Revision ID: 8e2f5a1d6c4b
Revises: 3b7e1c9a4d2f
Create Date: 2026-03-09 00:00:00.000000
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision = "8e2f5a1d6c4b"
down_revision = "3b7e1c9a4d2f"
branch_labels = None
depends_on = None


def _column_names(inspector: sa.Inspector, table: str) -> set[str]:
    return {column["name"] for column in inspector.get_columns(table)}


def upgrade() -> None:
    """Add escalation level tracking to events and level-2 settings to users."""
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    event_columns = _column_names(inspector, "checkin_events")
    if "escalation_level" not in event_columns:
        op.add_column(
            "checkin_events",
            sa.Column("escalation_level", sa.Integer(), nullable=False, server_default="0"),
        )
        op.create_index("ix_checkin_events_escalation_level", "checkin_events", ["escalation_level"])
    if "level2_escalated_at" not in event_columns:
        op.add_column("checkin_events", sa.Column("level2_escalated_at", sa.DateTime(), nullable=True))

    user_columns = _column_names(inspector, "users")
    if "two_level_escalation" not in user_columns:
        op.add_column(
            "users",
            sa.Column("two_level_escalation", sa.Boolean(), nullable=False, server_default=sa.false()),
        )
    if "level2_delay_minutes" not in user_columns:
        op.add_column(
            "users",
            sa.Column("level2_delay_minutes", sa.Integer(), nullable=False, server_default="15"),
        )


def downgrade() -> None:
    """Remove staged escalation fields."""
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    event_columns = _column_names(inspector, "checkin_events")
    if "escalation_level" in event_columns:
        indexes = {index["name"] for index in inspector.get_indexes("checkin_events")}
        if "ix_checkin_events_escalation_level" in indexes:
            op.drop_index("ix_checkin_events_escalation_level", table_name="checkin_events")
        with op.batch_alter_table("checkin_events") as batch:
            batch.drop_column("escalation_level")
            if "level2_escalated_at" in event_columns:
                batch.drop_column("level2_escalated_at")

    user_columns = _column_names(inspector, "users")
    with op.batch_alter_table("users") as batch:
        if "level2_delay_minutes" in user_columns:
            batch.drop_column("level2_delay_minutes")
        if "two_level_escalation" in user_columns:
            batch.drop_column("two_level_escalation")
