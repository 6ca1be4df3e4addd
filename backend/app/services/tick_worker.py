"""Periodic tick: scheduler, then escalation, then delivery retries."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from app.core.config import settings
from app.core.logging import configure_logging, get_logger
from app.core.time import as_naive_utc, utcnow
from app.db.session import async_session_maker
from app.services.checkins.escalation import EscalationEngine, EscalationSweepResult
from app.services.checkins.retries import DeliveryRetryManager, RetrySweepResult
from app.services.checkins.scheduler import CheckinScheduler, SchedulerSweepResult
from app.services.delivery.push import ApnsPushSender
from app.services.delivery.sms import TwilioSmsSender
from app.services.runtime.migration_gate import is_tick_migration_ready

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

    from app.services.delivery.types import PhoneDecryptor, PushSender, SmsSender

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class TickResult:
    """Per-phase sweep results; a phase that raised is reported as None."""

    now: datetime
    scheduler: SchedulerSweepResult | None
    escalation: EscalationSweepResult | None
    retries: RetrySweepResult | None

    def as_dict(self) -> dict[str, object]:
        return {
            "now": self.now.isoformat(),
            "scheduler": None
            if self.scheduler is None
            else {
                "users_scanned": self.scheduler.users_scanned,
                "events_created": self.scheduler.events_created,
                "duplicates_skipped": self.scheduler.duplicates_skipped,
                "past_slots_skipped": self.scheduler.past_slots_skipped,
                "failed_users": self.scheduler.failed_users,
            },
            "escalation": None
            if self.escalation is None
            else {
                "events_scanned": self.escalation.events_scanned,
                "events_escalated": self.escalation.events_escalated,
                "level2_escalated": self.escalation.level2_escalated,
                "contacts_notified": self.escalation.contacts_notified,
                "failed_events": self.escalation.failed_events,
            },
            "retries": None
            if self.retries is None
            else {
                "deliveries_due": self.retries.deliveries_due,
                "sent": self.retries.sent,
                "failed": self.retries.failed,
                "exhausted": self.retries.exhausted,
                "errors": self.retries.errors,
            },
        }


async def run_tick(
    session: AsyncSession,
    *,
    now: datetime | None = None,
    sms_sender: SmsSender | None = None,
    push_sender: PushSender | None = None,
    phone_decryptor: PhoneDecryptor | None = None,
) -> TickResult:
    """Run the three tick phases in order against one session."""
    current = as_naive_utc(now) if now is not None else utcnow()
    sms = sms_sender or TwilioSmsSender()
    push = push_sender or ApnsPushSender()

    scheduler_result: SchedulerSweepResult | None = None
    escalation_result: EscalationSweepResult | None = None
    retry_result: RetrySweepResult | None = None

    try:
        scheduler_result = await CheckinScheduler(session, push_sender=push).run_scheduled_checkins(current)
    except Exception:
        logger.exception("tick.phase_failed", extra={"phase": "scheduler"})
        await session.rollback()

    try:
        escalation_result = await EscalationEngine(
            session,
            sms_sender=sms,
            push_sender=push,
            phone_decryptor=phone_decryptor,
        ).run_escalations(current)
    except Exception:
        logger.exception("tick.phase_failed", extra={"phase": "escalation"})
        await session.rollback()

    try:
        retry_result = await DeliveryRetryManager(
            session,
            sms_sender=sms,
            phone_decryptor=phone_decryptor,
        ).run_retries(current)
    except Exception:
        logger.exception("tick.phase_failed", extra={"phase": "retries"})
        await session.rollback()

    return TickResult(
        now=current,
        scheduler=scheduler_result,
        escalation=escalation_result,
        retries=retry_result,
    )


async def run_tick_once(*, now: datetime | None = None) -> TickResult | None:
    """Open a session and run one tick once migrations are current."""
    if not await is_tick_migration_ready():
        logger.info("tick.worker.deferred_migrations_pending")
        return None

    async with async_session_maker() as session:
        result = await run_tick(session, now=now)
    logger.info("tick.worker.tick_complete", extra=result.as_dict())
    return result


async def _run_worker_loop() -> None:
    next_tick_due_at = time.monotonic()
    while True:
        try:
            if time.monotonic() >= next_tick_due_at:
                await run_tick_once()
                next_tick_due_at = time.monotonic() + max(int(settings.tick_interval_seconds), 1)
            await asyncio.sleep(1)
        except Exception:
            logger.exception("tick.worker.loop_failed")
            await asyncio.sleep(1)


def run_worker() -> None:
    """Entrypoint for the long-running tick worker process."""
    configure_logging()
    if not settings.tick_loop_enabled:
        logger.info("tick.worker.disabled")
        return
    logger.info("tick.worker.started", extra={"interval_seconds": settings.tick_interval_seconds})
    try:
        asyncio.run(_run_worker_loop())
    finally:
        logger.info("tick.worker.stopped")


if __name__ == "__main__":  # pragma: no cover - module entrypoint
    run_worker()
