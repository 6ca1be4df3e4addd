"""Public schema exports shared across API route modules."""

from app.schemas.checkins import (
    CheckinConfirmRequest,
    CheckinConfirmResponse,
    CheckinEventRead,
    CheckinSnoozeRequest,
    CheckinSnoozeResponse,
    CurrentCheckinRead,
)
from app.schemas.history import EventLogRead, HistoryEventRead, HistoryRead
from app.schemas.user_settings import PauseRead, PauseUpdate, ScheduleRead, ScheduleUpdate

__all__ = [
    "CheckinConfirmRequest",
    "CheckinConfirmResponse",
    "CheckinEventRead",
    "CheckinSnoozeRequest",
    "CheckinSnoozeResponse",
    "CurrentCheckinRead",
    "EventLogRead",
    "HistoryEventRead",
    "HistoryRead",
    "PauseRead",
    "PauseUpdate",
    "ScheduleRead",
    "ScheduleUpdate",
]
