"""Check-in confirm, snooze, and current-event endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends

from app.api.deps import require_user
from app.db.session import get_session
from app.models.checkin_events import CheckinEvent
from app.models.users import User
from app.schemas.checkins import (
    CheckinConfirmRequest,
    CheckinConfirmResponse,
    CheckinEventRead,
    CheckinSnoozeRequest,
    CheckinSnoozeResponse,
    CurrentCheckinRead,
)
from app.services.checkins.actions import CheckinActionService

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

router = APIRouter(prefix="/checkin", tags=["checkins"])
SESSION_DEP = Depends(get_session)
USER_DEP = Depends(require_user)


def _as_event_read(row: CheckinEvent) -> CheckinEventRead:
    return CheckinEventRead(
        id=row.id,
        user_id=row.user_id,
        scheduled_time=row.scheduled_time,
        deadline_time=row.deadline_time,
        status=row.status,
        confirmed_at=row.confirmed_at,
        snoozed_until=row.snoozed_until,
        snooze_count=row.snooze_count,
        escalated_at=row.escalated_at,
        escalation_level=row.escalation_level,
        level2_escalated_at=row.level2_escalated_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


@router.post("/confirm", response_model=CheckinConfirmResponse)
async def confirm_checkin(
    payload: CheckinConfirmRequest,
    session: AsyncSession = SESSION_DEP,
    user: User = USER_DEP,
) -> CheckinConfirmResponse:
    """Confirm the user is safe; succeeds even when no event matches."""
    result = await CheckinActionService(session).confirm_checkin(user, payload)
    return CheckinConfirmResponse(
        event_id=result.event_id,
        confirmed_at=result.confirmed_at,
        was_escalated=result.was_escalated,
        already_confirmed=result.already_confirmed,
        message=result.message,
    )


@router.post("/snooze", response_model=CheckinSnoozeResponse)
async def snooze_checkin(
    payload: CheckinSnoozeRequest,
    session: AsyncSession = SESSION_DEP,
    user: User = USER_DEP,
) -> CheckinSnoozeResponse:
    """Push an open check-in's deadline back by one of the allowed intervals."""
    result = await CheckinActionService(session).snooze_checkin(user, payload)
    return CheckinSnoozeResponse(
        event_id=result.event_id,
        snoozed_until=result.snoozed_until,
        original_deadline=result.original_deadline,
        new_deadline=result.new_deadline,
        snooze_count=result.snooze_count,
        message=result.message,
    )


@router.get("/current", response_model=CurrentCheckinRead)
async def get_current_checkin(
    session: AsyncSession = SESSION_DEP,
    user: User = USER_DEP,
) -> CurrentCheckinRead:
    event = await CheckinActionService(session).get_current_checkin(user)
    if event is None:
        return CurrentCheckinRead(has_pending=False)
    return CurrentCheckinRead(has_pending=True, event=_as_event_read(event))
