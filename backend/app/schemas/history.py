"""Schemas for check-in history and audit log listings."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlmodel import SQLModel


class HistoryEventRead(SQLModel):
    """One past check-in with the number of contacts actually alerted."""

    id: UUID
    scheduled_time: datetime
    deadline_time: datetime
    status: str
    confirmed_at: datetime | None = None
    snooze_count: int
    escalated_at: datetime | None = None
    escalation_level: int
    contacts_alerted_count: int


class HistoryRead(SQLModel):
    events: list[HistoryEventRead]
    count: int


class EventLogRead(SQLModel):
    id: UUID
    event_id: UUID | None = None
    event_type: str
    event_time: datetime
    result: str
    details: dict[str, Any] | None = None


class HistoryDeliveryRead(SQLModel):
    id: UUID
    contact_id: UUID
    channel: str
    status: str
    sent_at: datetime | None = None
    delivered_at: datetime | None = None
    error_message: str | None = None
    retry_count: int


class HistoryTimelineEntry(SQLModel):
    event_type: str
    event_time: datetime
    result: str
    details: dict[str, Any] | None = None


class HistoryEventDetailRead(SQLModel):
    """One check-in with every delivery attempt and its audit timeline (oldest first)."""

    event: HistoryEventRead
    snoozed_until: datetime | None = None
    created_at: datetime
    deliveries: list[HistoryDeliveryRead]
    timeline: list[HistoryTimelineEntry]


class HistoryStatsRead(SQLModel):
    total_checkins: int
    confirmed: int
    missed: int
    alerted: int
    snoozed: int
    paused: int
    current_streak: int


class HistoryExportUser(SQLModel):
    name: str
    timezone: str
    created_at: datetime


class HistoryExportSummary(SQLModel):
    total_events: int
    confirmed: int
    missed: int
    alerted: int
    snoozed: int


class HistoryExportEvent(SQLModel):
    date: str
    scheduled_time: datetime
    deadline_time: datetime
    status: str
    confirmed_at: datetime | None = None
    escalated_at: datetime | None = None
    escalation_level: int
    snooze_count: int


class HistoryExportRead(SQLModel):
    user: HistoryExportUser
    export_date: datetime
    summary: HistoryExportSummary
    events: list[HistoryExportEvent]
