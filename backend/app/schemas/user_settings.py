"""Schemas for pause and schedule settings."""

from __future__ import annotations

from datetime import datetime

from sqlmodel import SQLModel


class PauseUpdate(SQLModel):
    """Set `pause_until` to a future instant, or null to resume monitoring."""

    pause_until: datetime | None = None


class PauseRead(SQLModel):
    is_paused: bool
    pause_until: datetime | None = None
    events_paused: int = 0


class ScheduleUpdate(SQLModel):
    checkin_times: list[str] | None = None
    grace_minutes: int | None = None
    timezone: str | None = None
    sms_alerts_enabled: bool | None = None
    two_level_escalation: bool | None = None
    level2_delay_minutes: int | None = None


class ScheduleRead(SQLModel):
    checkin_times: list[str]
    grace_minutes: int
    timezone: str
    sms_alerts_enabled: bool
    two_level_escalation: bool
    level2_delay_minutes: int
