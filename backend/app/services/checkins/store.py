"""Persistence operations shared by the check-in scheduler, escalation, retry, and action services."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any
from uuid import UUID

from sqlalchemy import or_, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlmodel import SQLModel, col, select

from app.core.logging import get_logger
from app.models.alert_deliveries import AlertDelivery
from app.models.checkin_events import CheckinEvent
from app.models.contacts import Contact
from app.models.event_logs import EventLog
from app.models.users import User
from app.services.checkins.schedule import CheckinTime, parse_checkin_times
from app.services.checkins.state_machine import (
    ALERTED,
    ESCALATION_LEVEL1,
    OPEN_STATUSES,
    PAUSED,
)
from app.services.db_service import DBService
from app.services.delivery.types import CHANNEL_SMS

logger = get_logger(__name__)

_CONFLICT_DIALECTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


class InsertOutcome(StrEnum):
    """Tagged result for inserts guarded by a uniqueness constraint."""

    CREATED = "created"
    ALREADY_EXISTS = "already_exists"


@dataclass(frozen=True, slots=True)
class ScheduledUser:
    """Active user with the schedule already parsed into CheckinTime values."""

    user_id: UUID
    name: str
    timezone: str
    times: tuple[CheckinTime, ...]
    grace_minutes: int
    push_token: str | None


@dataclass(frozen=True, slots=True)
class OverdueEvent:
    """Check-in event joined with the owner fields escalation needs."""

    event_id: UUID
    user_id: UUID
    user_name: str
    scheduled_time: datetime
    deadline_time: datetime
    status: str
    escalation_level: int
    escalated_at: datetime | None
    sms_alerts_enabled: bool
    two_level_escalation: bool
    level2_delay_minutes: int


@dataclass(frozen=True, slots=True)
class DueRetry:
    """Failed delivery due for another attempt, joined with contact/event/user."""

    delivery_id: UUID
    event_id: UUID
    contact_id: UUID
    user_id: UUID
    channel: str
    retry_count: int
    max_retries: int
    phone_enc: str
    scheduled_time: datetime
    user_name: str


def _is_active_clause(now: datetime) -> Any:
    return or_(col(User.pause_until).is_(None), col(User.pause_until) <= now)


class CheckinStore(DBService):
    """Query and mutation contracts over users, events, deliveries, and audit logs."""

    async def _insert_ignoring_conflict(
        self,
        row: SQLModel,
        *,
        conflict_columns: Sequence[str],
    ) -> InsertOutcome:
        table = type(row).__table__  # type: ignore[attr-defined]
        values = {column.name: getattr(row, column.name) for column in table.columns}
        dialect_name = self.session.get_bind().dialect.name
        dialect_insert = _CONFLICT_DIALECTS.get(dialect_name)
        if dialect_insert is None:
            return await self._insert_catching_integrity_error(row)

        statement = dialect_insert(table).values(**values).on_conflict_do_nothing(
            index_elements=list(conflict_columns),
        )
        result = await self.session.execute(statement)
        await self.session.commit()
        return InsertOutcome.CREATED if result.rowcount == 1 else InsertOutcome.ALREADY_EXISTS

    async def _insert_catching_integrity_error(self, row: SQLModel) -> InsertOutcome:
        try:
            async with self.session.begin_nested():
                self.session.add(row)
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            return InsertOutcome.ALREADY_EXISTS
        return InsertOutcome.CREATED

    # -- users -----------------------------------------------------------

    async def find_active_users(self, now: datetime) -> list[ScheduledUser]:
        """Return users whose pause window does not cover `now`."""
        rows = (await self.session.exec(select(User).where(_is_active_clause(now)))).all()
        return [
            ScheduledUser(
                user_id=row.id,
                name=row.name,
                timezone=row.timezone,
                times=parse_checkin_times(row.checkin_times, user_id=row.id),
                grace_minutes=row.grace_minutes,
                push_token=row.push_token,
            )
            for row in rows
        ]

    async def set_pause_until(self, *, user_id: UUID, pause_until: datetime | None, now: datetime) -> None:
        await self.session.execute(
            update(User)
            .where(col(User.id) == user_id)
            .values(pause_until=pause_until, updated_at=now),
        )
        await self.session.commit()

    # -- events ----------------------------------------------------------

    async def get_event(self, *, event_id: UUID, user_id: UUID) -> CheckinEvent | None:
        statement = (
            select(CheckinEvent)
            .where(col(CheckinEvent.id) == event_id)
            .where(col(CheckinEvent.user_id) == user_id)
            .execution_options(populate_existing=True)
        )
        return (await self.session.exec(statement)).first()

    async def find_event_for_slot(self, *, user_id: UUID, scheduled_time: datetime) -> CheckinEvent | None:
        """Return the event occupying the (user, scheduled_time) slot, if any."""
        statement = (
            select(CheckinEvent)
            .where(col(CheckinEvent.user_id) == user_id)
            .where(col(CheckinEvent.scheduled_time) == scheduled_time)
            .execution_options(populate_existing=True)
        )
        return (await self.session.exec(statement)).first()

    async def find_latest_open_event(self, *, user_id: UUID) -> CheckinEvent | None:
        """Return the most recently scheduled pending/snoozed event for a user."""
        statement = (
            select(CheckinEvent)
            .where(col(CheckinEvent.user_id) == user_id)
            .where(col(CheckinEvent.status).in_(sorted(OPEN_STATUSES)))
            .order_by(col(CheckinEvent.scheduled_time).desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return (await self.session.exec(statement)).first()

    async def insert_event(self, event: CheckinEvent) -> InsertOutcome:
        return await self._insert_ignoring_conflict(event, conflict_columns=("user_id", "scheduled_time"))

    async def find_overdue_events(self, now: datetime) -> list[OverdueEvent]:
        """Return open events past their deadline for users who are not paused."""
        statement = (
            select(CheckinEvent, User)
            .join(User, col(User.id) == col(CheckinEvent.user_id))
            .where(col(CheckinEvent.status).in_(sorted(OPEN_STATUSES)))
            .where(col(CheckinEvent.deadline_time) < now)
            .where(_is_active_clause(now))
            .order_by(col(CheckinEvent.deadline_time))
        )
        rows = (await self.session.exec(statement)).all()
        return [self._overdue_snapshot(event, user) for event, user in rows]

    async def find_level2_due(self, now: datetime) -> list[OverdueEvent]:
        """Return level-1 alerted events whose user's level-2 delay has elapsed."""
        statement = (
            select(CheckinEvent, User)
            .join(User, col(User.id) == col(CheckinEvent.user_id))
            .where(col(CheckinEvent.status) == ALERTED)
            .where(col(CheckinEvent.escalation_level) == ESCALATION_LEVEL1)
            .where(col(CheckinEvent.escalated_at).is_not(None))
            .where(col(User.two_level_escalation).is_(True))
            .where(_is_active_clause(now))
            .order_by(col(CheckinEvent.escalated_at))
        )
        rows = (await self.session.exec(statement)).all()
        due: list[OverdueEvent] = []
        for event, user in rows:
            delay = timedelta(minutes=max(user.level2_delay_minutes, 0))
            if event.escalated_at is not None and event.escalated_at + delay <= now:
                due.append(self._overdue_snapshot(event, user))
        return due

    @staticmethod
    def _overdue_snapshot(event: CheckinEvent, user: User) -> OverdueEvent:
        return OverdueEvent(
            event_id=event.id,
            user_id=user.id,
            user_name=user.name,
            scheduled_time=event.scheduled_time,
            deadline_time=event.deadline_time,
            status=event.status,
            escalation_level=event.escalation_level,
            escalated_at=event.escalated_at,
            sms_alerts_enabled=user.sms_alerts_enabled,
            two_level_escalation=user.two_level_escalation,
            level2_delay_minutes=user.level2_delay_minutes,
        )

    async def update_event_status(
        self,
        event_id: UUID,
        new_status: str,
        *,
        now: datetime,
        fields: Mapping[str, Any] | None = None,
        expected_statuses: frozenset[str] | set[str] | None = None,
        expected_fields: Mapping[str, Any] | None = None,
    ) -> bool:
        """Compare-and-set an event's status; returns False when the expected state no longer holds."""
        statement = update(CheckinEvent).where(col(CheckinEvent.id) == event_id)
        if expected_statuses is not None:
            statement = statement.where(col(CheckinEvent.status).in_(sorted(expected_statuses)))
        for name, value in (expected_fields or {}).items():
            statement = statement.where(getattr(CheckinEvent, name) == value)
        statement = statement.values(status=new_status, updated_at=now, **dict(fields or {}))
        result = await self.session.execute(statement.execution_options(synchronize_session=False))
        await self.session.commit()
        return result.rowcount == 1

    async def pause_open_events(self, *, user_id: UUID, now: datetime) -> int:
        """Flip every pending/snoozed event of a user to paused."""
        result = await self.session.execute(
            update(CheckinEvent)
            .where(col(CheckinEvent.user_id) == user_id)
            .where(col(CheckinEvent.status).in_(sorted(OPEN_STATUSES)))
            .values(status=PAUSED, updated_at=now)
            .execution_options(synchronize_session=False),
        )
        await self.session.commit()
        return int(result.rowcount or 0)

    # -- contacts & deliveries ------------------------------------------

    async def find_contacts_by_user(
        self,
        *,
        user_id: UUID,
        min_level: int | None = None,
        max_level: int | None = None,
    ) -> list[Contact]:
        """Return a user's contacts ordered by escalation level ascending."""
        statement = select(Contact).where(col(Contact.user_id) == user_id)
        if min_level is not None:
            statement = statement.where(col(Contact.level) >= min_level)
        if max_level is not None:
            statement = statement.where(col(Contact.level) <= max_level)
        statement = statement.order_by(col(Contact.level), col(Contact.created_at))
        return list((await self.session.exec(statement)).all())

    async def find_existing_delivery(
        self,
        *,
        event_id: UUID,
        contact_id: UUID,
        channel: str,
    ) -> AlertDelivery | None:
        statement = (
            select(AlertDelivery)
            .where(col(AlertDelivery.event_id) == event_id)
            .where(col(AlertDelivery.contact_id) == contact_id)
            .where(col(AlertDelivery.channel) == channel)
        )
        return (await self.session.exec(statement)).first()

    async def insert_delivery(self, delivery: AlertDelivery) -> InsertOutcome:
        return await self._insert_ignoring_conflict(
            delivery,
            conflict_columns=("event_id", "contact_id", "channel"),
        )

    async def update_delivery(self, delivery_id: UUID, *, now: datetime, **fields: Any) -> None:
        await self.session.execute(
            update(AlertDelivery)
            .where(col(AlertDelivery.id) == delivery_id)
            .values(updated_at=now, **fields)
            .execution_options(synchronize_session=False),
        )
        await self.session.commit()

    async def claim_retry(
        self,
        delivery_id: UUID,
        *,
        expected_retry_count: int,
        lease_until: datetime,
        now: datetime,
    ) -> bool:
        """Push `next_retry_at` forward so a concurrent tick skips this row; False if already claimed."""
        result = await self.session.execute(
            update(AlertDelivery)
            .where(col(AlertDelivery.id) == delivery_id)
            .where(col(AlertDelivery.status) == "failed")
            .where(col(AlertDelivery.retry_count) == expected_retry_count)
            .where(col(AlertDelivery.next_retry_at).is_not(None))
            .where(col(AlertDelivery.next_retry_at) <= now)
            .values(next_retry_at=lease_until, updated_at=now)
            .execution_options(synchronize_session=False),
        )
        await self.session.commit()
        return result.rowcount == 1

    async def find_due_retries(self, now: datetime) -> list[DueRetry]:
        """Return failed SMS deliveries with retries left whose retry time has come."""
        statement = (
            select(AlertDelivery, Contact, CheckinEvent, User)
            .join(Contact, col(Contact.id) == col(AlertDelivery.contact_id))
            .join(CheckinEvent, col(CheckinEvent.id) == col(AlertDelivery.event_id))
            .join(User, col(User.id) == col(CheckinEvent.user_id))
            .where(col(AlertDelivery.status) == "failed")
            .where(col(AlertDelivery.channel) == CHANNEL_SMS)
            .where(col(AlertDelivery.retry_count) < col(AlertDelivery.max_retries))
            .where(col(AlertDelivery.next_retry_at).is_not(None))
            .where(col(AlertDelivery.next_retry_at) <= now)
            .order_by(col(AlertDelivery.next_retry_at))
        )
        rows = (await self.session.exec(statement)).all()
        return [
            DueRetry(
                delivery_id=delivery.id,
                event_id=event.id,
                contact_id=contact.id,
                user_id=user.id,
                channel=delivery.channel,
                retry_count=delivery.retry_count,
                max_retries=delivery.max_retries,
                phone_enc=contact.phone_enc,
                scheduled_time=event.scheduled_time,
                user_name=user.name,
            )
            for delivery, contact, event, user in rows
        ]

    # -- audit -----------------------------------------------------------

    async def append_audit_log(
        self,
        *,
        user_id: UUID,
        event_id: UUID | None,
        event_type: str,
        event_time: datetime,
        result: str = "ok",
        details: Mapping[str, Any] | None = None,
    ) -> EventLog:
        entry = EventLog(
            user_id=user_id,
            event_id=event_id,
            event_type=event_type,
            event_time=event_time,
            result=result,
            details=dict(details) if details is not None else None,
            created_at=event_time,
        )
        return await self.add_commit_refresh(entry)


__all__ = [
    "CheckinStore",
    "DueRetry",
    "InsertOutcome",
    "OverdueEvent",
    "ScheduledUser",
]
