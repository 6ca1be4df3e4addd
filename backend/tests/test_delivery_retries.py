# ruff: noqa: S101
from __future__ import annotations

from datetime import datetime, timedelta
from uuid import UUID, uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from app.models.alert_deliveries import AlertDelivery
from app.models.checkin_events import CheckinEvent
from app.models.contacts import Contact
from app.models.users import User
from app.services.checkins.retries import DeliveryRetryManager
from app.services.checkins.store import CheckinStore
from app.services.delivery.types import SmsResult

NOW = datetime(2026, 3, 2, 9, 12)


async def _create_schema(engine: AsyncEngine) -> None:
    async with engine.connect() as conn, conn.begin():
        await conn.run_sync(SQLModel.metadata.create_all)


class _SmsStub:
    def __init__(self, *, success: bool) -> None:
        self.success = success
        self.calls: list[tuple[str, str]] = []

    async def send(self, *, to: str, body: str) -> SmsResult:
        self.calls.append((to, body))
        if self.success:
            return SmsResult(success=True, provider_ref="SM-retry", provider_status="queued")
        return SmsResult(success=False, provider_status="503", error_message="Service unavailable")


class _PlainDecryptor:
    def decrypt(self, ciphertext: str) -> str:
        return ciphertext


def _seed(
    session: AsyncSession,
    *,
    retry_count: int = 0,
    max_retries: int = 3,
    next_retry_at: datetime | None = NOW,
    channel: str = "sms",
) -> tuple[User, AlertDelivery]:
    user = User(id=uuid4(), name="Dana", sms_alerts_enabled=True, auth_token=f"token-{uuid4().hex}")
    event = CheckinEvent(
        id=uuid4(),
        user_id=user.id,
        scheduled_time=datetime(2026, 3, 2, 9, 0),
        deadline_time=datetime(2026, 3, 2, 9, 10),
        status="alerted",
        escalated_at=datetime(2026, 3, 2, 9, 11),
        escalation_level=2,
    )
    contact = Contact(id=uuid4(), user_id=user.id, phone_enc="+14155550100")
    delivery = AlertDelivery(
        id=uuid4(),
        event_id=event.id,
        contact_id=contact.id,
        channel=channel,
        status="failed",
        error_message="Unreachable",
        retry_count=retry_count,
        max_retries=max_retries,
        next_retry_at=next_retry_at,
    )
    session.add(user)
    session.add(event)
    session.add(contact)
    session.add(delivery)
    return user, delivery


def _manager(session: AsyncSession, sms: _SmsStub) -> DeliveryRetryManager:
    return DeliveryRetryManager(
        session,
        sms_sender=sms,
        phone_decryptor=_PlainDecryptor(),
        backoff_cap_minutes=30,
    )


async def _reload(session: AsyncSession, delivery_id: UUID) -> AlertDelivery:
    row = await session.get(AlertDelivery, delivery_id, populate_existing=True)
    assert row is not None
    return row


@pytest.mark.asyncio
async def test_due_retry_that_succeeds_is_marked_sent() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await _create_schema(engine)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    sms = _SmsStub(success=True)

    async with session_maker() as session:
        _, delivery = _seed(session)
        await session.commit()

        result = await _manager(session, sms).run_retries(NOW)

        assert result.deliveries_due == 1
        assert result.sent == 1
        row = await _reload(session, delivery.id)
        assert row.status == "sent"
        assert row.sent_at == NOW
        assert row.next_retry_at is None
        assert row.error_message is None
        assert row.provider_ref == "SM-retry"
        assert row.retry_count == 0
    await engine.dispose()


@pytest.mark.asyncio
async def test_failed_retry_backs_off_exponentially() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await _create_schema(engine)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    async with session_maker() as session:
        _, delivery = _seed(session)
        await session.commit()

        result = await _manager(session, _SmsStub(success=False)).run_retries(NOW)

        assert result.failed == 1
        row = await _reload(session, delivery.id)
        assert row.status == "failed"
        assert row.retry_count == 1
        assert row.next_retry_at == NOW + timedelta(minutes=2)
        assert row.error_message == "Service unavailable"
        assert row.provider_status == "503"
    await engine.dispose()


@pytest.mark.asyncio
async def test_last_failed_retry_exhausts_delivery() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await _create_schema(engine)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    async with session_maker() as session:
        _, delivery = _seed(session, retry_count=2, max_retries=3)
        await session.commit()

        manager = _manager(session, _SmsStub(success=False))
        result = await manager.run_retries(NOW)
        assert result.exhausted == 1

        row = await _reload(session, delivery.id)
        assert row.status == "failed"
        assert row.retry_count == 3
        assert row.next_retry_at is None

        later = await manager.run_retries(NOW + timedelta(hours=1))
        assert later.deliveries_due == 0
    await engine.dispose()


@pytest.mark.asyncio
async def test_retry_not_yet_due_is_left_alone() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await _create_schema(engine)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    sms = _SmsStub(success=True)

    async with session_maker() as session:
        _seed(session, next_retry_at=NOW + timedelta(minutes=4))
        await session.commit()

        result = await _manager(session, sms).run_retries(NOW)

        assert result.deliveries_due == 0
        assert sms.calls == []
    await engine.dispose()


@pytest.mark.asyncio
async def test_push_deliveries_are_never_retried() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await _create_schema(engine)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    sms = _SmsStub(success=True)

    async with session_maker() as session:
        _seed(session, channel="push", max_retries=3)
        await session.commit()

        result = await _manager(session, sms).run_retries(NOW)

        assert result.deliveries_due == 0
        assert sms.calls == []
    await engine.dispose()


@pytest.mark.asyncio
async def test_retry_text_uses_current_user_name() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await _create_schema(engine)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    sms = _SmsStub(success=True)

    async with session_maker() as session:
        user, _ = _seed(session)
        await session.commit()
        user.name = "Dana Rivers"
        session.add(user)
        await session.commit()

        await _manager(session, sms).run_retries(NOW)

        assert len(sms.calls) == 1
        to, body = sms.calls[0]
        assert to == "+14155550100"
        assert body.startswith("[Are You Safe] Dana Rivers missed their 09:00 safety check-in.")
    await engine.dispose()


@pytest.mark.asyncio
async def test_claimed_retry_is_not_sent_twice() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await _create_schema(engine)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    sms = _SmsStub(success=False)

    async with session_maker() as session:
        _seed(session)
        await session.commit()

        due = (await CheckinStore(session).find_due_retries(NOW))[0]
        manager = _manager(session, sms)
        first = await manager.retry_delivery(due, now=NOW)
        second = await manager.retry_delivery(due, now=NOW)

        assert first == "failed"
        assert second == "claimed"
        assert len(sms.calls) == 1
    await engine.dispose()
