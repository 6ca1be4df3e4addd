"""Scheduled check-in instances and their lifecycle state."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import UniqueConstraint
from sqlmodel import Field

from app.core.time import utcnow
from app.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)


class CheckinEvent(QueryModel, table=True):
    """One "confirm you are safe by the deadline" instance for a user."""

    __tablename__ = "checkin_events"  # pyright: ignore[reportAssignmentType]
    __table_args__ = (
        UniqueConstraint("user_id", "scheduled_time", name="uq_checkin_events_user_scheduled"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    scheduled_time: datetime = Field(index=True)
    deadline_time: datetime = Field(index=True)
    status: str = Field(default="pending", index=True)
    confirmed_at: datetime | None = Field(default=None)
    snoozed_until: datetime | None = Field(default=None)
    snooze_count: int = Field(default=0)
    escalated_at: datetime | None = Field(default=None)
    escalation_level: int = Field(default=0, index=True)
    level2_escalated_at: datetime | None = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
