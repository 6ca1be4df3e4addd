"""Pause and schedule settings endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends

from app.api.deps import require_user
from app.core.time import utcnow
from app.db.session import get_session
from app.models.users import User
from app.schemas.user_settings import PauseRead, PauseUpdate, ScheduleRead, ScheduleUpdate
from app.services.checkins.user_settings import UserSettingsService

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

router = APIRouter(prefix="/settings", tags=["settings"])
SESSION_DEP = Depends(get_session)
USER_DEP = Depends(require_user)


def _as_schedule_read(row: User) -> ScheduleRead:
    return ScheduleRead(
        checkin_times=list(row.checkin_times),
        grace_minutes=row.grace_minutes,
        timezone=row.timezone,
        sms_alerts_enabled=row.sms_alerts_enabled,
        two_level_escalation=row.two_level_escalation,
        level2_delay_minutes=row.level2_delay_minutes,
    )


@router.get("/pause", response_model=PauseRead)
async def get_pause(user: User = USER_DEP) -> PauseRead:
    return PauseRead(is_paused=user.is_paused(utcnow()), pause_until=user.pause_until)


@router.post("/pause", response_model=PauseRead)
async def set_pause(
    payload: PauseUpdate,
    session: AsyncSession = SESSION_DEP,
    user: User = USER_DEP,
) -> PauseRead:
    """Pause monitoring until a future instant, or resume with `pause_until: null`."""
    result = await UserSettingsService(session).set_pause(user, payload.pause_until)
    return PauseRead(
        is_paused=result.pause_until is not None,
        pause_until=result.pause_until,
        events_paused=result.events_paused,
    )


@router.get("/schedule", response_model=ScheduleRead)
async def get_schedule(user: User = USER_DEP) -> ScheduleRead:
    return _as_schedule_read(user)


@router.post("/schedule", response_model=ScheduleRead)
async def update_schedule(
    payload: ScheduleUpdate,
    session: AsyncSession = SESSION_DEP,
    user: User = USER_DEP,
) -> ScheduleRead:
    """Update check-in times, grace window, and escalation flags."""
    row = await UserSettingsService(session).update_schedule(user, payload)
    return _as_schedule_read(row)
