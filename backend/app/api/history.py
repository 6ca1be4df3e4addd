"""Check-in history and audit log listing endpoints."""

from __future__ import annotations

import csv
from datetime import datetime
from io import StringIO
from typing import TYPE_CHECKING, Literal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy import func
from sqlmodel import col, select

from app.api.deps import require_user
from app.core.config import settings
from app.core.time import as_naive_utc, utcnow
from app.db.session import get_session
from app.models.alert_deliveries import AlertDelivery
from app.models.checkin_events import CheckinEvent
from app.models.event_logs import EventLog
from app.models.users import User
from app.schemas.history import (
    EventLogRead,
    HistoryDeliveryRead,
    HistoryEventDetailRead,
    HistoryEventRead,
    HistoryExportEvent,
    HistoryExportRead,
    HistoryExportSummary,
    HistoryExportUser,
    HistoryRead,
    HistoryStatsRead,
    HistoryTimelineEntry,
)
from app.services.checkins.state_machine import ALERTED, CONFIRMED, MISSED, PAUSED, SNOOZED

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession
    from sqlmodel.sql.expression import SelectOfScalar

router = APIRouter(prefix="/history", tags=["history"])
SESSION_DEP = Depends(get_session)
USER_DEP = Depends(require_user)
SINCE_QUERY = Query(default=None)
UNTIL_QUERY = Query(default=None)
LIMIT_QUERY = Query(default=50, ge=1)
FORMAT_QUERY = Query(default="json", alias="format")

_ALERTED_DELIVERY_STATUSES = ("sent", "delivered")
# Recent events scanned when computing the confirmation streak.
_STREAK_WINDOW = 30
_EXPORT_CSV_COLUMNS = (
    "Date",
    "Scheduled Time",
    "Deadline",
    "Status",
    "Confirmed At",
    "Escalated At",
    "Snooze Count",
)


def _clamp_limit(limit: int) -> int:
    return max(1, min(limit, settings.history_max_limit))


async def _alerted_contact_counts(session: AsyncSession, event_ids: list[UUID]) -> dict[UUID, int]:
    if not event_ids:
        return {}
    statement = (
        select(AlertDelivery.event_id, func.count(func.distinct(AlertDelivery.contact_id)))
        .where(col(AlertDelivery.event_id).in_(event_ids))
        .where(col(AlertDelivery.status).in_(_ALERTED_DELIVERY_STATUSES))
        .group_by(col(AlertDelivery.event_id))
    )
    rows = (await session.exec(statement)).all()
    return {event_id: int(count) for event_id, count in rows}


async def _status_counts(session: AsyncSession, user_id: UUID) -> dict[str, int]:
    statement = (
        select(CheckinEvent.status, func.count())
        .where(col(CheckinEvent.user_id) == user_id)
        .group_by(col(CheckinEvent.status))
    )
    rows = (await session.exec(statement)).all()
    return {row_status: int(count) for row_status, count in rows}


def _confirmation_streak(statuses: list[str]) -> int:
    """Count consecutive confirmations, newest first; paused check-ins neither count nor break it."""
    streak = 0
    for event_status in statuses:
        if event_status == CONFIRMED:
            streak += 1
        elif event_status != PAUSED:
            break
    return streak


def _as_history_read(event: CheckinEvent, alerted_count: int) -> HistoryEventRead:
    return HistoryEventRead(
        id=event.id,
        scheduled_time=event.scheduled_time,
        deadline_time=event.deadline_time,
        status=event.status,
        confirmed_at=event.confirmed_at,
        snooze_count=event.snooze_count,
        escalated_at=event.escalated_at,
        escalation_level=event.escalation_level,
        contacts_alerted_count=alerted_count,
    )


def _ranged_events_statement(
    user_id: UUID,
    since: datetime | None,
    until: datetime | None,
) -> SelectOfScalar[CheckinEvent]:
    statement = select(CheckinEvent).where(col(CheckinEvent.user_id) == user_id)
    if since is not None:
        statement = statement.where(col(CheckinEvent.scheduled_time) >= as_naive_utc(since))
    if until is not None:
        statement = statement.where(col(CheckinEvent.scheduled_time) <= as_naive_utc(until))
    return statement.order_by(col(CheckinEvent.scheduled_time).desc())


@router.get("", response_model=HistoryRead)
async def list_history(
    since: datetime | None = SINCE_QUERY,
    until: datetime | None = UNTIL_QUERY,
    limit: int = LIMIT_QUERY,
    session: AsyncSession = SESSION_DEP,
    user: User = USER_DEP,
) -> HistoryRead:
    """Return the user's check-ins newest first with alerted-contact counts."""
    statement = _ranged_events_statement(user.id, since, until).limit(_clamp_limit(limit))
    events = (await session.exec(statement)).all()
    counts = await _alerted_contact_counts(session, [event.id for event in events])
    items = [_as_history_read(event, counts.get(event.id, 0)) for event in events]
    return HistoryRead(events=items, count=len(items))


@router.get("/logs", response_model=list[EventLogRead])
async def list_event_logs(
    limit: int = LIMIT_QUERY,
    session: AsyncSession = SESSION_DEP,
    user: User = USER_DEP,
) -> list[EventLogRead]:
    """Return the user's audit trail, newest first."""
    rows = await (
        EventLog.objects.filter_by(user_id=user.id)
        .order_by(col(EventLog.event_time).desc(), col(EventLog.created_at).desc())
        .limit(_clamp_limit(limit))
        .all(session)
    )
    return [
        EventLogRead(
            id=row.id,
            event_id=row.event_id,
            event_type=row.event_type,
            event_time=row.event_time,
            result=row.result,
            details=row.details,
        )
        for row in rows
    ]


@router.get("/stats", response_model=HistoryStatsRead)
async def get_history_stats(
    session: AsyncSession = SESSION_DEP,
    user: User = USER_DEP,
) -> HistoryStatsRead:
    """Return per-status totals and the current confirmation streak."""
    counts = await _status_counts(session, user.id)
    recent = (
        await session.exec(
            select(CheckinEvent.status)
            .where(col(CheckinEvent.user_id) == user.id)
            .order_by(col(CheckinEvent.scheduled_time).desc())
            .limit(_STREAK_WINDOW),
        )
    ).all()
    return HistoryStatsRead(
        total_checkins=sum(counts.values()),
        confirmed=counts.get(CONFIRMED, 0),
        missed=counts.get(MISSED, 0),
        alerted=counts.get(ALERTED, 0),
        snoozed=counts.get(SNOOZED, 0),
        paused=counts.get(PAUSED, 0),
        current_streak=_confirmation_streak(list(recent)),
    )


@router.get("/export", response_model=None)
async def export_history(
    export_format: Literal["json", "csv"] = FORMAT_QUERY,
    since: datetime | None = SINCE_QUERY,
    until: datetime | None = UNTIL_QUERY,
    session: AsyncSession = SESSION_DEP,
    user: User = USER_DEP,
) -> HistoryExportRead | Response:
    """Export every check-in in range as a JSON document or a CSV download."""
    events = (await session.exec(_ranged_events_statement(user.id, since, until))).all()
    counts = await _status_counts(session, user.id)
    exported_at = utcnow()
    rows = [
        HistoryExportEvent(
            date=event.scheduled_time.date().isoformat(),
            scheduled_time=event.scheduled_time,
            deadline_time=event.deadline_time,
            status=event.status,
            confirmed_at=event.confirmed_at,
            escalated_at=event.escalated_at,
            escalation_level=event.escalation_level,
            snooze_count=event.snooze_count,
        )
        for event in events
    ]

    if export_format == "csv":
        output = StringIO()
        writer = csv.DictWriter(output, fieldnames=_EXPORT_CSV_COLUMNS)
        writer.writeheader()
        for row in rows:
            writer.writerow(
                {
                    "Date": row.date,
                    "Scheduled Time": row.scheduled_time.isoformat(),
                    "Deadline": row.deadline_time.isoformat(),
                    "Status": row.status,
                    "Confirmed At": row.confirmed_at.isoformat() if row.confirmed_at else "",
                    "Escalated At": row.escalated_at.isoformat() if row.escalated_at else "",
                    "Snooze Count": row.snooze_count,
                },
            )
        filename = f"areyousafe-export-{exported_at.date().isoformat()}.csv"
        return Response(
            content=output.getvalue(),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    return HistoryExportRead(
        user=HistoryExportUser(name=user.name, timezone=user.timezone, created_at=user.created_at),
        export_date=exported_at,
        summary=HistoryExportSummary(
            total_events=len(rows),
            confirmed=counts.get(CONFIRMED, 0),
            missed=counts.get(MISSED, 0),
            alerted=counts.get(ALERTED, 0),
            snoozed=counts.get(SNOOZED, 0),
        ),
        events=rows,
    )


@router.get("/{event_id}", response_model=HistoryEventDetailRead)
async def get_history_event(
    event_id: UUID,
    session: AsyncSession = SESSION_DEP,
    user: User = USER_DEP,
) -> HistoryEventDetailRead:
    """Return one check-in with its delivery attempts and audit timeline."""
    event = await CheckinEvent.objects.filter_by(id=event_id, user_id=user.id).first(session)
    if event is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "event_not_found", "message": "Check-in event not found"},
        )
    deliveries = await (
        AlertDelivery.objects.filter_by(event_id=event.id)
        .order_by(col(AlertDelivery.created_at), col(AlertDelivery.channel))
        .all(session)
    )
    logs = await (
        EventLog.objects.filter_by(event_id=event.id)
        .order_by(col(EventLog.event_time), col(EventLog.created_at))
        .all(session)
    )
    counts = await _alerted_contact_counts(session, [event.id])
    return HistoryEventDetailRead(
        event=_as_history_read(event, counts.get(event.id, 0)),
        snoozed_until=event.snoozed_until,
        created_at=event.created_at,
        deliveries=[
            HistoryDeliveryRead(
                id=delivery.id,
                contact_id=delivery.contact_id,
                channel=delivery.channel,
                status=delivery.status,
                sent_at=delivery.sent_at,
                delivered_at=delivery.delivered_at,
                error_message=delivery.error_message,
                retry_count=delivery.retry_count,
            )
            for delivery in deliveries
        ],
        timeline=[
            HistoryTimelineEntry(
                event_type=log.event_type,
                event_time=log.event_time,
                result=log.result,
                details=log.details,
            )
            for log in logs
        ],
    )
