# ruff: noqa: S101
from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timedelta
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel, col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.models.checkin_events import CheckinEvent
from app.models.event_logs import EventLog
from app.models.users import User
from app.services.checkins.scheduler import CheckinScheduler
from app.services.delivery.types import PushResult


async def _create_schema(engine: AsyncEngine) -> None:
    async with engine.connect() as conn, conn.begin():
        await conn.run_sync(SQLModel.metadata.create_all)


def _user(**overrides: object) -> User:
    values: dict[str, object] = {
        "id": uuid4(),
        "name": "Dana",
        "checkin_times": ["09:00"],
        "grace_minutes": 10,
        "auth_token": f"token-{uuid4().hex}",
    }
    values.update(overrides)
    return User(**values)


class _PushRecorder:
    def __init__(self, *, raises: bool = False) -> None:
        self.raises = raises
        self.calls: list[dict[str, object]] = []

    async def send(
        self,
        *,
        device_token: str,
        title: str,
        body: str,
        category: str,
        custom_data: Mapping[str, str] | None = None,
        time_sensitive: bool = True,
    ) -> PushResult:
        self.calls.append(
            {
                "device_token": device_token,
                "title": title,
                "body": body,
                "category": category,
                "custom_data": dict(custom_data or {}),
                "time_sensitive": time_sensitive,
            },
        )
        if self.raises:
            raise RuntimeError("apns unreachable")
        return PushResult(success=True, provider_message_id="apns-1", status_code=200)


async def _events(session: AsyncSession) -> list[CheckinEvent]:
    return list((await session.exec(select(CheckinEvent).order_by(col(CheckinEvent.scheduled_time)))).all())


@pytest.mark.asyncio
async def test_scheduler_creates_one_pending_event_per_slot() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await _create_schema(engine)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    async with session_maker() as session:
        user = _user()
        session.add(user)
        await session.commit()

        scheduler = CheckinScheduler(session, tolerance_minutes=1, use_user_timezone=False)
        first = await scheduler.run_scheduled_checkins(datetime(2026, 3, 2, 9, 0, 20))
        second = await scheduler.run_scheduled_checkins(datetime(2026, 3, 2, 9, 0, 50))

        assert first.users_scanned == 1
        assert first.events_created == 1
        assert second.events_created == 0
        assert second.duplicates_skipped == 1

        events = await _events(session)
        assert len(events) == 1
        assert events[0].status == "pending"
        assert events[0].scheduled_time == datetime(2026, 3, 2, 9, 0)
        assert events[0].deadline_time == datetime(2026, 3, 2, 9, 10)

        logs = (await session.exec(select(EventLog))).all()
        assert [row.event_type for row in logs] == ["checkin_scheduled"]
        assert logs[0].event_id == events[0].id
    await engine.dispose()


@pytest.mark.asyncio
async def test_early_tick_inside_tolerance_claims_slot_for_later_tick() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await _create_schema(engine)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    async with session_maker() as session:
        session.add(_user())
        await session.commit()

        scheduler = CheckinScheduler(session, tolerance_minutes=1, use_user_timezone=False)
        early = await scheduler.run_scheduled_checkins(datetime(2026, 3, 2, 8, 59))
        on_time = await scheduler.run_scheduled_checkins(datetime(2026, 3, 2, 9, 0))

        assert early.events_created == 1
        assert on_time.events_created == 0
        assert on_time.duplicates_skipped == 1
        events = await _events(session)
        assert [event.scheduled_time for event in events] == [datetime(2026, 3, 2, 9, 0)]
    await engine.dispose()


@pytest.mark.asyncio
async def test_late_tick_skips_slot_already_in_the_past() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await _create_schema(engine)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    async with session_maker() as session:
        session.add(_user())
        await session.commit()

        result = await CheckinScheduler(
            session,
            tolerance_minutes=1,
            use_user_timezone=False,
        ).run_scheduled_checkins(datetime(2026, 3, 2, 9, 1))

        assert result.events_created == 0
        assert result.past_slots_skipped == 1
        assert await _events(session) == []
    await engine.dispose()


@pytest.mark.asyncio
async def test_paused_user_gets_no_events() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await _create_schema(engine)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    now = datetime(2026, 3, 2, 9, 0)

    async with session_maker() as session:
        session.add(_user(pause_until=now + timedelta(days=1)))
        await session.commit()

        result = await CheckinScheduler(session, tolerance_minutes=1).run_scheduled_checkins(now)

        assert result.users_scanned == 0
        assert await _events(session) == []
    await engine.dispose()


@pytest.mark.asyncio
async def test_expired_pause_no_longer_suppresses_scheduling() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await _create_schema(engine)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    now = datetime(2026, 3, 2, 9, 0)

    async with session_maker() as session:
        session.add(_user(pause_until=now - timedelta(hours=1)))
        await session.commit()

        result = await CheckinScheduler(session, tolerance_minutes=1).run_scheduled_checkins(now)

        assert result.events_created == 1
    await engine.dispose()


@pytest.mark.asyncio
async def test_new_event_pushes_checkin_reminder_to_user_device() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await _create_schema(engine)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    push = _PushRecorder()

    async with session_maker() as session:
        session.add(_user(push_token="device-1"))
        await session.commit()

        await CheckinScheduler(session, push_sender=push, tolerance_minutes=1).run_scheduled_checkins(
            datetime(2026, 3, 2, 9, 0),
        )

        events = await _events(session)
        assert len(push.calls) == 1
        call = push.calls[0]
        assert call["device_token"] == "device-1"
        assert call["title"] == "Are You Safe?"
        assert call["category"] == "CHECKIN_REMINDER"
        assert call["body"] == "Please tap 'I'm Safe' to confirm you're okay. [10 min window]"
        assert call["custom_data"] == {
            "type": "checkin",
            "event_id": str(events[0].id),
            "scheduled_time": "2026-03-02T09:00:00",
        }
    await engine.dispose()


@pytest.mark.asyncio
async def test_push_failure_does_not_undo_event_creation() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await _create_schema(engine)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    push = _PushRecorder(raises=True)

    async with session_maker() as session:
        session.add(_user(push_token="device-1"))
        await session.commit()

        result = await CheckinScheduler(session, push_sender=push, tolerance_minutes=1).run_scheduled_checkins(
            datetime(2026, 3, 2, 9, 0),
        )

        assert result.events_created == 1
        assert result.failed_users == 0
        assert len(await _events(session)) == 1
        assert len(push.calls) == 1
    await engine.dispose()


@pytest.mark.asyncio
async def test_user_timezone_mode_maps_local_slot_to_utc_instant() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await _create_schema(engine)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    async with session_maker() as session:
        session.add(_user(timezone="America/New_York"))
        await session.commit()

        scheduler = CheckinScheduler(session, tolerance_minutes=1, use_user_timezone=True)
        at_utc_nine = await scheduler.run_scheduled_checkins(datetime(2026, 3, 2, 9, 0))
        at_local_nine = await scheduler.run_scheduled_checkins(datetime(2026, 3, 2, 14, 0))

        assert at_utc_nine.events_created == 0
        assert at_local_nine.events_created == 1
        events = await _events(session)
        assert events[0].scheduled_time == datetime(2026, 3, 2, 14, 0)
        assert events[0].deadline_time == datetime(2026, 3, 2, 14, 10)
    await engine.dispose()


@pytest.mark.asyncio
async def test_malformed_schedule_entries_are_ignored() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await _create_schema(engine)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    async with session_maker() as session:
        session.add(_user(checkin_times=["9am", "09:00", "25:00"]))
        await session.commit()

        result = await CheckinScheduler(session, tolerance_minutes=0).run_scheduled_checkins(
            datetime(2026, 3, 2, 9, 0),
        )

        assert result.events_created == 1
        assert result.failed_users == 0
    await engine.dispose()
