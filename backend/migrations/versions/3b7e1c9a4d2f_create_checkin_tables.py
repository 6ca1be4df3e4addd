"""create users, contacts, check-in events, alert deliveries, and event logs

Revision ID: 3b7e1c9a4d2f
Revises:
Create Date: 2026-03-02 00:00:00.000000
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision = "3b7e1c9a4d2f"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create the check-in lifecycle tables."""
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    table_names = set(inspector.get_table_names())

    if "users" not in table_names:
        op.create_table(
            "users",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("name", sa.String(), nullable=False, server_default="User"),
            sa.Column("timezone", sa.String(), nullable=False, server_default="UTC"),
            sa.Column("checkin_times", sa.JSON(), nullable=False),
            sa.Column("grace_minutes", sa.Integer(), nullable=False, server_default="10"),
            sa.Column("sms_alerts_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("pause_until", sa.DateTime(), nullable=True),
            sa.Column("push_token", sa.String(), nullable=True),
            sa.Column("auth_token", sa.String(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_users_auth_token", "users", ["auth_token"], unique=True)
        op.create_index("ix_users_pause_until", "users", ["pause_until"])

    if "contacts" not in table_names:
        op.create_table(
            "contacts",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("user_id", sa.Uuid(), nullable=False),
            sa.Column("phone_enc", sa.String(), nullable=False),
            sa.Column("level", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("has_app", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("push_token", sa.String(), nullable=True),
            sa.Column("linked_user_id", sa.Uuid(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["linked_user_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_contacts_user_id", "contacts", ["user_id"])
        op.create_index("ix_contacts_level", "contacts", ["level"])

    if "checkin_events" not in table_names:
        op.create_table(
            "checkin_events",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("user_id", sa.Uuid(), nullable=False),
            sa.Column("scheduled_time", sa.DateTime(), nullable=False),
            sa.Column("deadline_time", sa.DateTime(), nullable=False),
            sa.Column("status", sa.String(), nullable=False, server_default="pending"),
            sa.Column("confirmed_at", sa.DateTime(), nullable=True),
            sa.Column("snoozed_until", sa.DateTime(), nullable=True),
            sa.Column("snooze_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("escalated_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("user_id", "scheduled_time", name="uq_checkin_events_user_scheduled"),
        )
        op.create_index("ix_checkin_events_user_id", "checkin_events", ["user_id"])
        op.create_index("ix_checkin_events_scheduled_time", "checkin_events", ["scheduled_time"])
        op.create_index("ix_checkin_events_deadline_time", "checkin_events", ["deadline_time"])
        op.create_index("ix_checkin_events_status", "checkin_events", ["status"])

    if "alert_deliveries" not in table_names:
        op.create_table(
            "alert_deliveries",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("event_id", sa.Uuid(), nullable=False),
            sa.Column("contact_id", sa.Uuid(), nullable=False),
            sa.Column("channel", sa.String(), nullable=False, server_default="sms"),
            sa.Column("status", sa.String(), nullable=False, server_default="pending"),
            sa.Column("provider_ref", sa.String(), nullable=True),
            sa.Column("provider_status", sa.String(), nullable=True),
            sa.Column("error_message", sa.String(), nullable=True),
            sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("max_retries", sa.Integer(), nullable=False, server_default="3"),
            sa.Column("next_retry_at", sa.DateTime(), nullable=True),
            sa.Column("sent_at", sa.DateTime(), nullable=True),
            sa.Column("delivered_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["event_id"], ["checkin_events.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["contact_id"], ["contacts.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint(
                "event_id",
                "contact_id",
                "channel",
                name="uq_alert_deliveries_event_contact_channel",
            ),
        )
        op.create_index("ix_alert_deliveries_event_id", "alert_deliveries", ["event_id"])
        op.create_index("ix_alert_deliveries_contact_id", "alert_deliveries", ["contact_id"])
        op.create_index("ix_alert_deliveries_status", "alert_deliveries", ["status"])
        op.create_index("ix_alert_deliveries_next_retry_at", "alert_deliveries", ["next_retry_at"])

    if "event_logs" not in table_names:
        op.create_table(
            "event_logs",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("user_id", sa.Uuid(), nullable=False),
            sa.Column("event_id", sa.Uuid(), nullable=True),
            sa.Column("event_type", sa.String(), nullable=False),
            sa.Column("event_time", sa.DateTime(), nullable=False),
            sa.Column("result", sa.String(), nullable=False, server_default="ok"),
            sa.Column("details", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["event_id"], ["checkin_events.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_event_logs_user_id", "event_logs", ["user_id"])
        op.create_index("ix_event_logs_event_id", "event_logs", ["event_id"])
        op.create_index("ix_event_logs_event_type", "event_logs", ["event_type"])
        op.create_index("ix_event_logs_event_time", "event_logs", ["event_time"])


def downgrade() -> None:
    """Drop the check-in lifecycle tables."""
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    table_names = set(inspector.get_table_names())

    for table in ("event_logs", "alert_deliveries", "checkin_events", "contacts", "users"):
        if table not in table_names:
            continue
        for index in inspector.get_indexes(table):
            name = index.get("name")
            if name and name.startswith("ix_"):
                op.drop_index(name, table_name=table)
        op.drop_table(table)
