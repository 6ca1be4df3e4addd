"""Tick-driven materialisation of pending check-in events at scheduled times."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from app.core.config import settings
from app.core.logging import get_logger
from app.core.time import as_naive_utc, utcnow
from app.models.checkin_events import CheckinEvent
from app.services.checkins.messages import CHECKIN_PUSH_TITLE, compose_checkin_push_body
from app.services.checkins.schedule import (
    CheckinTime,
    is_time_match,
    local_to_utc,
    local_wall_clock,
)
from app.services.checkins.state_machine import PENDING
from app.services.checkins.store import CheckinStore, InsertOutcome, ScheduledUser
from app.services.delivery.types import PUSH_CATEGORY_CHECKIN, PushSender

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class SchedulerSweepResult:
    users_scanned: int
    events_created: int
    duplicates_skipped: int
    past_slots_skipped: int
    failed_users: int


def _floor_minute(value: datetime) -> datetime:
    return value.replace(second=0, microsecond=0)


class CheckinScheduler:
    """Create one pending event per (user, slot) when a configured time arrives."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        push_sender: PushSender | None = None,
        tolerance_minutes: int | None = None,
        use_user_timezone: bool | None = None,
    ) -> None:
        self.session = session
        self.store = CheckinStore(session)
        self._push_sender = push_sender
        self._tolerance_minutes = (
            tolerance_minutes if tolerance_minutes is not None else settings.schedule_tolerance_minutes
        )
        self._use_user_timezone = (
            use_user_timezone if use_user_timezone is not None else settings.schedule_in_user_timezone
        )

    def _due_slots(self, user: ScheduledUser, now_minute: datetime) -> tuple[list[datetime], int]:
        """Return (UTC slot instants due now, count of matching slots already in the past)."""
        zone = user.timezone if self._use_user_timezone else None
        wall_clock = local_wall_clock(now_minute, zone) if zone else now_minute
        current = CheckinTime(hour=wall_clock.hour, minute=wall_clock.minute)

        due: list[datetime] = []
        past = 0
        for slot in user.times:
            if not is_time_match(current, slot, tolerance_minutes=self._tolerance_minutes):
                continue
            scheduled_local = slot.on(wall_clock.date())
            if scheduled_local < wall_clock:
                past += 1
                continue
            due.append(local_to_utc(scheduled_local, zone) if zone else scheduled_local)
        return due, past

    async def _notify_user(self, *, user: ScheduledUser, event: CheckinEvent) -> None:
        if self._push_sender is None or not user.push_token:
            return
        try:
            result = await self._push_sender.send(
                device_token=user.push_token,
                title=CHECKIN_PUSH_TITLE,
                body=compose_checkin_push_body(grace_minutes=user.grace_minutes),
                category=PUSH_CATEGORY_CHECKIN,
                custom_data={
                    "type": "checkin",
                    "event_id": str(event.id),
                    "scheduled_time": event.scheduled_time.isoformat(),
                },
            )
        except Exception as exc:
            logger.warning(
                "checkin.scheduler.push_failed",
                extra={"user_id": str(user.user_id), "event_id": str(event.id), "error": str(exc)},
            )
            return
        if not result.success:
            logger.info(
                "checkin.scheduler.push_not_delivered",
                extra={
                    "user_id": str(user.user_id),
                    "event_id": str(event.id),
                    "reason": result.error_reason,
                },
            )

    async def _schedule_slot(self, *, user: ScheduledUser, scheduled_time: datetime, now: datetime) -> bool:
        # Re-check just before insert; the unique constraint covers concurrent ticks.
        existing = await self.store.find_event_for_slot(user_id=user.user_id, scheduled_time=scheduled_time)
        if existing is not None:
            return False

        event = CheckinEvent(
            user_id=user.user_id,
            scheduled_time=scheduled_time,
            deadline_time=scheduled_time + timedelta(minutes=user.grace_minutes),
            status=PENDING,
            created_at=now,
            updated_at=now,
        )
        if await self.store.insert_event(event) is InsertOutcome.ALREADY_EXISTS:
            return False

        logger.info(
            "checkin.scheduler.event_created",
            extra={
                "user_id": str(user.user_id),
                "event_id": str(event.id),
                "scheduled_time": scheduled_time.isoformat(),
                "deadline_time": event.deadline_time.isoformat(),
            },
        )
        await self._notify_user(user=user, event=event)
        await self.store.append_audit_log(
            user_id=user.user_id,
            event_id=event.id,
            event_type="checkin_scheduled",
            event_time=now,
            details={
                "scheduled_time": scheduled_time.isoformat(),
                "deadline_time": event.deadline_time.isoformat(),
            },
        )
        return True

    async def run_scheduled_checkins(self, now: datetime | None = None) -> SchedulerSweepResult:
        """Scan active users and create the events whose slot is due at `now`."""
        current = as_naive_utc(now) if now is not None else utcnow()
        now_minute = _floor_minute(current)
        users = await self.store.find_active_users(current)

        created = 0
        duplicates = 0
        past_skipped = 0
        failed = 0
        for user in users:
            try:
                slots, past = self._due_slots(user, now_minute)
                past_skipped += past
                for scheduled_time in slots:
                    if await self._schedule_slot(user=user, scheduled_time=scheduled_time, now=current):
                        created += 1
                    else:
                        duplicates += 1
            except Exception:
                failed += 1
                logger.exception("checkin.scheduler.user_failed", extra={"user_id": str(user.user_id)})
                await self.session.rollback()

        return SchedulerSweepResult(
            users_scanned=len(users),
            events_created=created,
            duplicates_skipped=duplicates,
            past_slots_skipped=past_skipped,
            failed_users=failed,
        )


__all__ = ["CheckinScheduler", "SchedulerSweepResult"]
