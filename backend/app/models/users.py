"""Check-in account owner with schedule, escalation, and pause settings."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field

from app.core.time import utcnow
from app.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)


class User(QueryModel, table=True):
    """User whose daily check-ins are scheduled and escalated."""

    __tablename__ = "users"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    name: str = Field(default="User")
    timezone: str = Field(default="UTC")
    # Daily wall-clock times as "HH:MM" strings; parsed into CheckinTime at read time.
    checkin_times: list[str] = Field(
        default_factory=lambda: ["09:00"],
        sa_column=Column(JSON, nullable=False),
    )
    grace_minutes: int = Field(default=10)
    sms_alerts_enabled: bool = Field(default=False)
    two_level_escalation: bool = Field(default=False)
    level2_delay_minutes: int = Field(default=15)
    pause_until: datetime | None = Field(default=None, index=True)
    push_token: str | None = Field(default=None)
    auth_token: str = Field(unique=True, index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def is_paused(self, now: datetime) -> bool:
        """Return True while the pause window covers `now`."""
        return self.pause_until is not None and self.pause_until > now
