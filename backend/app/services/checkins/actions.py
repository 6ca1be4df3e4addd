"""User-initiated confirm and snooze actions on check-in events."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING
from uuid import UUID

from fastapi import HTTPException, status

from app.core.config import settings
from app.core.logging import get_logger
from app.core.time import as_naive_utc, utcnow
from app.models.checkin_events import CheckinEvent
from app.services.checkins.state_machine import (
    ALERTED,
    CONFIRMED,
    SNOOZED,
    can_transition,
)
from app.services.checkins.store import CheckinStore, InsertOutcome

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

    from app.models.users import User
    from app.schemas.checkins import CheckinConfirmRequest, CheckinSnoozeRequest

logger = get_logger(__name__)

# Compare-and-set attempts before reporting a conflict to the caller.
_CAS_ATTEMPTS = 3

CONFIRMED_MESSAGE = "Check-in confirmed. Stay safe!"
ALREADY_CONFIRMED_MESSAGE = "Already confirmed"
LATE_CONFIRM_MESSAGE = (
    "Confirmed, but alerts were already sent to your contacts. Please let them know you are safe."
)


@dataclass(frozen=True, slots=True)
class ConfirmResult:
    event_id: UUID
    confirmed_at: datetime
    was_escalated: bool
    already_confirmed: bool
    synthesized: bool
    message: str


@dataclass(frozen=True, slots=True)
class SnoozeResult:
    event_id: UUID
    snoozed_until: datetime
    original_deadline: datetime
    new_deadline: datetime
    snooze_count: int
    message: str


def _reject(status_code: int, code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"error": code, "message": message})


class CheckinActionService:
    """Apply confirm/snooze requests with compare-and-set status updates."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        snooze_cap: int | None = None,
        snooze_minutes: tuple[int, ...] | None = None,
        default_snooze_minutes: int | None = None,
    ) -> None:
        self.session = session
        self.store = CheckinStore(session)
        self._snooze_cap = snooze_cap if snooze_cap is not None else settings.snooze_cap
        self._snooze_minutes = snooze_minutes or settings.snooze_minutes()
        self._default_snooze_minutes = (
            default_snooze_minutes if default_snooze_minutes is not None else settings.default_snooze_minutes
        )

    async def _lookup_for_confirm(
        self,
        *,
        user_id: UUID,
        request: CheckinConfirmRequest,
    ) -> CheckinEvent | None:
        # Exactly one strategy applies, chosen by which request field is present.
        if request.event_id is not None:
            return await self.store.get_event(event_id=request.event_id, user_id=user_id)
        if request.scheduled_at is not None:
            return await self.store.find_event_for_slot(
                user_id=user_id,
                scheduled_time=as_naive_utc(request.scheduled_at),
            )
        return await self.store.find_latest_open_event(user_id=user_id)

    async def _confirm_without_event(
        self,
        *,
        user_id: UUID,
        request: CheckinConfirmRequest,
        now: datetime,
        confirmed_at: datetime,
    ) -> ConfirmResult | None:
        """Record a confirmation that matched no stored event as a new confirmed event."""
        scheduled = as_naive_utc(request.scheduled_at) if request.scheduled_at is not None else now
        event = CheckinEvent(
            user_id=user_id,
            scheduled_time=scheduled,
            deadline_time=scheduled,
            status=CONFIRMED,
            confirmed_at=confirmed_at,
            created_at=now,
            updated_at=now,
        )
        if await self.store.insert_event(event) is InsertOutcome.ALREADY_EXISTS:
            return None
        await self.store.append_audit_log(
            user_id=user_id,
            event_id=event.id,
            event_type="checkin_confirmed",
            event_time=confirmed_at,
            details={"scheduled_time": scheduled.isoformat(), "synthesized": True},
        )
        logger.info(
            "checkin.action.confirm_synthesized",
            extra={"user_id": str(user_id), "event_id": str(event.id)},
        )
        return ConfirmResult(
            event_id=event.id,
            confirmed_at=confirmed_at,
            was_escalated=False,
            already_confirmed=False,
            synthesized=True,
            message=CONFIRMED_MESSAGE,
        )

    async def confirm_checkin(
        self,
        user: User,
        request: CheckinConfirmRequest,
        *,
        now: datetime | None = None,
    ) -> ConfirmResult:
        """Confirm the matching event; idempotent, and never a not-found error."""
        current = as_naive_utc(now) if now is not None else utcnow()
        # Offline clients report when the user actually tapped confirm.
        confirmed_at = as_naive_utc(request.confirmed_at) if request.confirmed_at is not None else current
        user_id = user.id
        target_id: UUID | None = None
        for _ in range(_CAS_ATTEMPTS):
            if target_id is None:
                event = await self._lookup_for_confirm(user_id=user_id, request=request)
            else:
                # Once matched, a lost CAS re-reads the same event; it may have moved to alerted.
                event = await self.store.get_event(event_id=target_id, user_id=user_id)
            if event is None:
                if target_id is not None:
                    continue
                synthesized = await self._confirm_without_event(
                    user_id=user_id,
                    request=request,
                    now=current,
                    confirmed_at=confirmed_at,
                )
                if synthesized is not None:
                    return synthesized
                continue
            target_id = event.id

            if event.status == CONFIRMED:
                return ConfirmResult(
                    event_id=event.id,
                    confirmed_at=event.confirmed_at or event.updated_at,
                    was_escalated=event.escalated_at is not None,
                    already_confirmed=True,
                    synthesized=False,
                    message=ALREADY_CONFIRMED_MESSAGE,
                )
            if not can_transition(event.status, CONFIRMED):
                raise _reject(
                    status.HTTP_400_BAD_REQUEST,
                    "invalid_transition",
                    f"Cannot confirm a {event.status} check-in",
                )

            event_id = event.id
            prior_status = event.status
            scheduled_time = event.scheduled_time
            was_escalated = prior_status == ALERTED
            updated = await self.store.update_event_status(
                event_id,
                CONFIRMED,
                now=current,
                fields={"confirmed_at": confirmed_at},
                expected_statuses={prior_status},
            )
            if not updated:
                continue

            await self.store.append_audit_log(
                user_id=user_id,
                event_id=event_id,
                event_type="checkin_confirmed_late" if was_escalated else "checkin_confirmed",
                event_time=confirmed_at,
                details={"scheduled_time": scheduled_time.isoformat(), "previous_status": prior_status},
            )
            logger.info(
                "checkin.action.confirmed",
                extra={"user_id": str(user_id), "event_id": str(event_id), "was_escalated": was_escalated},
            )
            return ConfirmResult(
                event_id=event_id,
                confirmed_at=confirmed_at,
                was_escalated=was_escalated,
                already_confirmed=False,
                synthesized=False,
                message=LATE_CONFIRM_MESSAGE if was_escalated else CONFIRMED_MESSAGE,
            )

        raise _reject(status.HTTP_409_CONFLICT, "concurrent_update", "Check-in changed while confirming; retry")

    async def snooze_checkin(
        self,
        user: User,
        request: CheckinSnoozeRequest,
        *,
        now: datetime | None = None,
    ) -> SnoozeResult:
        """Extend an open event's deadline once per the snooze cap."""
        current = as_naive_utc(now) if now is not None else utcnow()
        minutes = request.minutes if request.minutes is not None else self._default_snooze_minutes
        if minutes not in self._snooze_minutes:
            allowed = ", ".join(str(value) for value in self._snooze_minutes)
            raise _reject(
                status.HTTP_400_BAD_REQUEST,
                "invalid_snooze_minutes",
                f"Snooze minutes must be one of: {allowed}",
            )

        user_id = user.id
        for _ in range(_CAS_ATTEMPTS):
            event = await self.store.get_event(event_id=request.event_id, user_id=user_id)
            if event is None:
                raise _reject(status.HTTP_404_NOT_FOUND, "event_not_found", "Check-in event not found")
            if event.snooze_count >= self._snooze_cap:
                raise _reject(
                    status.HTTP_400_BAD_REQUEST,
                    "already_snoozed",
                    "Already snoozed. You can only snooze once per check-in.",
                )
            if not can_transition(event.status, SNOOZED):
                raise _reject(
                    status.HTTP_400_BAD_REQUEST,
                    "invalid_transition",
                    f"Cannot snooze a {event.status} check-in",
                )

            event_id = event.id
            original_deadline = event.deadline_time
            snooze_count = event.snooze_count
            new_deadline = original_deadline + timedelta(minutes=minutes)
            updated = await self.store.update_event_status(
                event_id,
                SNOOZED,
                now=current,
                fields={
                    "deadline_time": new_deadline,
                    "snoozed_until": new_deadline,
                    "snooze_count": snooze_count + 1,
                },
                expected_statuses={event.status},
                expected_fields={"snooze_count": snooze_count},
            )
            if not updated:
                continue

            await self.store.append_audit_log(
                user_id=user_id,
                event_id=event_id,
                event_type="checkin_snoozed",
                event_time=current,
                details={
                    "minutes": minutes,
                    "original_deadline": original_deadline.isoformat(),
                    "new_deadline": new_deadline.isoformat(),
                },
            )
            logger.info(
                "checkin.action.snoozed",
                extra={"user_id": str(user_id), "event_id": str(event_id), "minutes": minutes},
            )
            return SnoozeResult(
                event_id=event_id,
                snoozed_until=new_deadline,
                original_deadline=original_deadline,
                new_deadline=new_deadline,
                snooze_count=snooze_count + 1,
                message=f"Snoozed for {minutes} minutes",
            )

        raise _reject(status.HTTP_409_CONFLICT, "concurrent_update", "Check-in changed while snoozing; retry")

    async def get_current_checkin(self, user: User) -> CheckinEvent | None:
        """Return the user's most recent pending or snoozed event."""
        return await self.store.find_latest_open_event(user_id=user.id)


__all__ = [
    "CheckinActionService",
    "ConfirmResult",
    "SnoozeResult",
]
