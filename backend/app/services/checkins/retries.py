"""Backoff-driven resubmission of failed SMS alert deliveries."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from app.core.config import settings
from app.core.logging import get_logger
from app.core.time import as_naive_utc, utcnow
from app.services.checkins.messages import compose_alert_text
from app.services.checkins.store import CheckinStore, DueRetry
from app.services.delivery.backoff import next_retry_at
from app.services.delivery.phone_crypto import PhoneCipher
from app.services.delivery.sms import TwilioSmsSender
from app.services.delivery.types import PhoneDecryptor, SmsResult, SmsSender

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class RetrySweepResult:
    deliveries_due: int
    sent: int
    failed: int
    exhausted: int
    skipped_claimed: int
    errors: int


class DeliveryRetryManager:
    """Resend failed deliveries whose `next_retry_at` has passed."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        sms_sender: SmsSender | None = None,
        phone_decryptor: PhoneDecryptor | None = None,
        backoff_cap_minutes: int | None = None,
    ) -> None:
        self.session = session
        self.store = CheckinStore(session)
        self._sms_sender = sms_sender or TwilioSmsSender()
        self._phone_decryptor = phone_decryptor
        self._backoff_cap_minutes = (
            backoff_cap_minutes if backoff_cap_minutes is not None else settings.retry_backoff_cap_minutes
        )

    def _decryptor(self) -> PhoneDecryptor:
        if self._phone_decryptor is None:
            self._phone_decryptor = PhoneCipher()
        return self._phone_decryptor

    async def _attempt(self, due: DueRetry) -> SmsResult:
        phone = self._decryptor().decrypt(due.phone_enc)
        # Text is rebuilt from current user/event data, never replayed from storage.
        body = compose_alert_text(user_name=due.user_name, scheduled_time=due.scheduled_time)
        return await self._sms_sender.send(to=phone, body=body)

    async def retry_delivery(self, due: DueRetry, *, now: datetime) -> str:
        """Resend one delivery; returns `sent`, `failed`, `exhausted` or `claimed`."""
        lease_until = next_retry_at(now, due.retry_count + 1, cap_minutes=self._backoff_cap_minutes)
        claimed = await self.store.claim_retry(
            due.delivery_id,
            expected_retry_count=due.retry_count,
            lease_until=lease_until,
            now=now,
        )
        if not claimed:
            return "claimed"

        try:
            result = await self._attempt(due)
        except Exception as exc:
            logger.warning(
                "checkin.retry.attempt_raised",
                extra={"delivery_id": str(due.delivery_id), "error": str(exc)},
            )
            result = SmsResult(success=False, error_message=str(exc) or type(exc).__name__)

        if result.success:
            await self.store.update_delivery(
                due.delivery_id,
                now=now,
                status="sent",
                provider_ref=result.provider_ref,
                provider_status=result.provider_status,
                sent_at=now,
                next_retry_at=None,
                error_message=None,
            )
            logger.info(
                "checkin.retry.sent",
                extra={"delivery_id": str(due.delivery_id), "retry_count": due.retry_count},
            )
            return "sent"

        retry_count = due.retry_count + 1
        exhausted = retry_count >= due.max_retries
        await self.store.update_delivery(
            due.delivery_id,
            now=now,
            retry_count=retry_count,
            provider_status=result.provider_status,
            error_message=result.error_message or "SMS send failed",
            next_retry_at=None
            if exhausted
            else next_retry_at(now, retry_count, cap_minutes=self._backoff_cap_minutes),
        )
        logger.info(
            "checkin.retry.failed",
            extra={
                "delivery_id": str(due.delivery_id),
                "retry_count": retry_count,
                "exhausted": exhausted,
            },
        )
        return "exhausted" if exhausted else "failed"

    async def run_retries(self, now: datetime | None = None) -> RetrySweepResult:
        """Process every due retry; one row's failure never aborts the batch."""
        current = as_naive_utc(now) if now is not None else utcnow()
        due_rows = await self.store.find_due_retries(current)

        counts = {"sent": 0, "failed": 0, "exhausted": 0, "claimed": 0}
        errors = 0
        for due in due_rows:
            try:
                outcome = await self.retry_delivery(due, now=current)
            except Exception:
                errors += 1
                logger.exception("checkin.retry.delivery_failed", extra={"delivery_id": str(due.delivery_id)})
                await self.session.rollback()
                continue
            counts[outcome] += 1

        return RetrySweepResult(
            deliveries_due=len(due_rows),
            sent=counts["sent"],
            failed=counts["failed"],
            exhausted=counts["exhausted"],
            skipped_claimed=counts["claimed"],
            errors=errors,
        )


__all__ = ["DeliveryRetryManager", "RetrySweepResult"]
