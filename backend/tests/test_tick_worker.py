# ruff: noqa: S101
from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timedelta
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel, col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.models.alert_deliveries import AlertDelivery
from app.models.checkin_events import CheckinEvent
from app.models.contacts import Contact
from app.models.users import User
from app.schemas.checkins import CheckinConfirmRequest
from app.services import tick_worker
from app.services.checkins.actions import CheckinActionService
from app.services.delivery.types import PushResult, SmsResult
from app.services.tick_worker import run_tick, run_tick_once


async def _create_schema(engine: AsyncEngine) -> None:
    async with engine.connect() as conn, conn.begin():
        await conn.run_sync(SQLModel.metadata.create_all)


class _ScriptedSms:
    """Return queued outcomes in order, then succeed."""

    def __init__(self, *outcomes: bool) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[str] = []

    async def send(self, *, to: str, body: str) -> SmsResult:
        del body
        self.calls.append(to)
        success = self.outcomes.pop(0) if self.outcomes else True
        if success:
            return SmsResult(success=True, provider_ref=f"SM-{len(self.calls)}", provider_status="queued")
        return SmsResult(success=False, error_message="carrier rejected")


class _SilentPush:
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
        del device_token, title, body, category, custom_data, time_sensitive
        return PushResult(success=True)


class _PlainDecryptor:
    def decrypt(self, ciphertext: str) -> str:
        return ciphertext


def _seed(session: AsyncSession) -> User:
    user = User(
        id=uuid4(),
        name="Dana",
        checkin_times=["09:00"],
        grace_minutes=10,
        sms_alerts_enabled=True,
        auth_token="token-abc",
    )
    session.add(user)
    session.add(Contact(id=uuid4(), user_id=user.id, phone_enc="+14155550100", level=1))
    return user


async def _only_event(session: AsyncSession) -> CheckinEvent:
    statement = select(CheckinEvent).execution_options(populate_existing=True)
    events = (await session.exec(statement)).all()
    assert len(events) == 1
    return events[0]


async def _only_delivery(session: AsyncSession) -> AlertDelivery:
    statement = (
        select(AlertDelivery)
        .where(col(AlertDelivery.channel) == "sms")
        .execution_options(populate_existing=True)
    )
    rows = (await session.exec(statement)).all()
    assert len(rows) == 1
    return rows[0]


@pytest.mark.asyncio
async def test_missed_checkin_escalates_then_late_confirm_is_flagged() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await _create_schema(engine)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    sms = _ScriptedSms()
    senders = {"sms_sender": sms, "push_sender": _SilentPush(), "phone_decryptor": _PlainDecryptor()}

    async with session_maker() as session:
        user = _seed(session)
        await session.commit()

        at_nine = await run_tick(session, now=datetime(2026, 3, 2, 9, 0), **senders)
        assert at_nine.scheduler is not None
        assert at_nine.scheduler.events_created == 1
        event = await _only_event(session)
        assert event.status == "pending"
        assert event.deadline_time == datetime(2026, 3, 2, 9, 10)

        at_ten = await run_tick(session, now=datetime(2026, 3, 2, 9, 10), **senders)
        assert at_ten.escalation is not None
        assert at_ten.escalation.events_escalated == 0

        at_eleven = await run_tick(session, now=datetime(2026, 3, 2, 9, 11), **senders)
        assert at_eleven.escalation is not None
        assert at_eleven.escalation.events_escalated == 1
        event = await _only_event(session)
        assert event.status == "alerted"
        delivery = await _only_delivery(session)
        assert delivery.status == "sent"
        assert sms.calls == ["+14155550100"]

        confirm = await CheckinActionService(session).confirm_checkin(
            user,
            CheckinConfirmRequest(event_id=event.id),
            now=datetime(2026, 3, 2, 9, 15),
        )
        assert confirm.was_escalated is True
        assert confirm.synthesized is False
        event = await _only_event(session)
        assert event.status == "confirmed"
        assert event.confirmed_at == datetime(2026, 3, 2, 9, 15)
    await engine.dispose()


@pytest.mark.asyncio
async def test_failed_escalation_sms_is_resent_by_next_tick() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await _create_schema(engine)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    sms = _ScriptedSms(False)
    senders = {"sms_sender": sms, "push_sender": _SilentPush(), "phone_decryptor": _PlainDecryptor()}
    escalation_time = datetime(2026, 3, 2, 9, 11)

    async with session_maker() as session:
        _seed(session)
        await session.commit()

        await run_tick(session, now=datetime(2026, 3, 2, 9, 0), **senders)
        await run_tick(session, now=escalation_time, **senders)

        delivery = await _only_delivery(session)
        assert delivery.status == "failed"
        assert delivery.retry_count == 0
        assert delivery.next_retry_at == escalation_time + timedelta(minutes=1)

        retry_tick = await run_tick(session, now=escalation_time + timedelta(minutes=1), **senders)
        assert retry_tick.retries is not None
        assert retry_tick.retries.sent == 1

        delivery = await _only_delivery(session)
        assert delivery.status == "sent"
        assert delivery.next_retry_at is None
        assert sms.calls == ["+14155550100", "+14155550100"]
    await engine.dispose()


@pytest.mark.asyncio
async def test_tick_once_defers_until_migrations_are_current(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _not_ready() -> bool:
        return False

    def _unexpected_session() -> AsyncSession:
        raise AssertionError("session should not be opened")

    monkeypatch.setattr(tick_worker, "is_tick_migration_ready", _not_ready)
    monkeypatch.setattr(tick_worker, "async_session_maker", _unexpected_session)

    assert await run_tick_once(now=datetime(2026, 3, 2, 9, 0)) is None


@pytest.mark.asyncio
async def test_tick_once_runs_all_phases_when_ready(monkeypatch: pytest.MonkeyPatch) -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await _create_schema(engine)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    async def _ready() -> bool:
        return True

    monkeypatch.setattr(tick_worker, "is_tick_migration_ready", _ready)
    monkeypatch.setattr(tick_worker, "async_session_maker", session_maker)

    result = await run_tick_once(now=datetime(2026, 3, 2, 9, 0))

    assert result is not None
    summary = result.as_dict()
    assert summary["now"] == "2026-03-02T09:00:00"
    assert summary["scheduler"] == {
        "users_scanned": 0,
        "events_created": 0,
        "duplicates_skipped": 0,
        "past_slots_skipped": 0,
        "failed_users": 0,
    }
    assert summary["escalation"] is not None
    assert summary["retries"] is not None
    await engine.dispose()
