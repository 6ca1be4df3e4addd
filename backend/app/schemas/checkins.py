"""Schemas for check-in confirm, snooze, and current-event endpoints."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlmodel import SQLModel


class CheckinEventRead(SQLModel):
    """Read model for one check-in event."""

    id: UUID
    user_id: UUID
    scheduled_time: datetime
    deadline_time: datetime
    status: str
    confirmed_at: datetime | None = None
    snoozed_until: datetime | None = None
    snooze_count: int
    escalated_at: datetime | None = None
    escalation_level: int
    level2_escalated_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class CheckinConfirmRequest(SQLModel):
    """Confirm payload; with neither lookup field set the latest open event is used."""

    event_id: UUID | None = None
    scheduled_at: datetime | None = None
    confirmed_at: datetime | None = None


class CheckinConfirmResponse(SQLModel):
    success: bool = True
    event_id: UUID
    confirmed_at: datetime
    was_escalated: bool = False
    already_confirmed: bool = False
    message: str


class CheckinSnoozeRequest(SQLModel):
    event_id: UUID
    minutes: int | None = None


class CheckinSnoozeResponse(SQLModel):
    success: bool = True
    event_id: UUID
    snoozed_until: datetime
    original_deadline: datetime
    new_deadline: datetime
    snooze_count: int
    message: str


class CurrentCheckinRead(SQLModel):
    has_pending: bool
    event: CheckinEventRead | None = None
