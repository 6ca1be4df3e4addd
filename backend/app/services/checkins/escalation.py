"""Deadline-breach escalation: flip overdue events to alerted and notify contacts."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from app.core.config import settings
from app.core.logging import get_logger
from app.core.time import as_naive_utc, utcnow
from app.models.alert_deliveries import AlertDelivery
from app.services.checkins.messages import (
    CONTACT_PUSH_TITLE,
    compose_alert_text,
    compose_contact_push_body,
)
from app.services.checkins.state_machine import (
    ALERTED,
    ESCALATION_LEVEL1,
    ESCALATION_LEVEL2,
    sources_for,
)
from app.services.checkins.store import CheckinStore, InsertOutcome, OverdueEvent
from app.services.delivery.backoff import next_retry_at
from app.services.delivery.phone_crypto import PhoneCipher
from app.services.delivery.push import ApnsPushSender
from app.services.delivery.sms import TwilioSmsSender
from app.services.delivery.types import (
    CHANNEL_PUSH,
    CHANNEL_SMS,
    PUSH_CATEGORY_CONTACT_ALERT,
    PhoneDecryptor,
    PushResult,
    PushSender,
    SmsResult,
    SmsSender,
)

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

logger = get_logger(__name__)

RESULT_SENT = "sent"
RESULT_FAILED = "failed"
RESULT_ERROR = "error"
RESULT_ALREADY_EXISTS = "already_exists"


@dataclass(frozen=True, slots=True)
class ContactDeliveryResult:
    """Outcome of alerting one contact during an escalation pass."""

    contact_id: UUID
    status: str
    error: str | None = None


@dataclass(frozen=True, slots=True)
class EscalationResult:
    event_id: UUID
    user_id: UUID
    escalated: bool
    escalation_level: int
    contacts_notified: int
    deliveries: tuple[ContactDeliveryResult, ...]


@dataclass(frozen=True, slots=True)
class EscalationSweepResult:
    events_scanned: int
    events_escalated: int
    level2_escalated: int
    contacts_notified: int
    failed_events: int
    results: tuple[EscalationResult, ...]


@dataclass(frozen=True, slots=True)
class _ContactTarget:
    contact_id: UUID
    phone_enc: str
    push_token: str | None


@dataclass(slots=True)
class _ContactPlan:
    target: _ContactTarget
    sms_delivery_id: UUID | None = None
    push_delivery_id: UUID | None = None
    result: ContactDeliveryResult | None = None


class EscalationEngine:
    """Run the escalation phase of a tick against the check-in store."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        sms_sender: SmsSender | None = None,
        push_sender: PushSender | None = None,
        phone_decryptor: PhoneDecryptor | None = None,
        max_retries: int | None = None,
        backoff_cap_minutes: int | None = None,
    ) -> None:
        self.session = session
        self.store = CheckinStore(session)
        self._sms_sender = sms_sender or TwilioSmsSender()
        self._push_sender = push_sender or ApnsPushSender()
        self._phone_decryptor = phone_decryptor
        self._max_retries = max_retries if max_retries is not None else settings.delivery_max_retries
        self._backoff_cap_minutes = (
            backoff_cap_minutes if backoff_cap_minutes is not None else settings.retry_backoff_cap_minutes
        )

    def _decryptor(self) -> PhoneDecryptor:
        # Built on first use so a missing key fails per contact, not per tick.
        if self._phone_decryptor is None:
            self._phone_decryptor = PhoneCipher()
        return self._phone_decryptor

    # -- per-contact pass ------------------------------------------------

    async def _load_targets(
        self,
        *,
        user_id: UUID,
        min_level: int | None,
        max_level: int | None,
    ) -> list[_ContactTarget]:
        contacts = await self.store.find_contacts_by_user(
            user_id=user_id,
            min_level=min_level,
            max_level=max_level,
        )
        return [
            _ContactTarget(
                contact_id=contact.id,
                phone_enc=contact.phone_enc,
                push_token=contact.push_token if contact.prefers_push else None,
            )
            for contact in contacts
        ]

    async def _prepare(self, *, event_id: UUID, target: _ContactTarget, now: datetime) -> _ContactPlan:
        plan = _ContactPlan(target=target)
        sms_row = AlertDelivery(
            event_id=event_id,
            contact_id=target.contact_id,
            channel=CHANNEL_SMS,
            max_retries=self._max_retries,
            created_at=now,
            updated_at=now,
        )
        if await self.store.insert_delivery(sms_row) is InsertOutcome.ALREADY_EXISTS:
            plan.result = ContactDeliveryResult(contact_id=target.contact_id, status=RESULT_ALREADY_EXISTS)
            return plan
        plan.sms_delivery_id = sms_row.id

        if target.push_token:
            push_row = AlertDelivery(
                event_id=event_id,
                contact_id=target.contact_id,
                channel=CHANNEL_PUSH,
                max_retries=0,
                created_at=now,
                updated_at=now,
            )
            if await self.store.insert_delivery(push_row) is InsertOutcome.CREATED:
                plan.push_delivery_id = push_row.id
        return plan

    async def _send_push(self, *, overdue: OverdueEvent, plan: _ContactPlan) -> PushResult:
        if not plan.target.push_token:
            return PushResult(success=False, error_reason="no push destination")
        return await self._push_sender.send(
            device_token=plan.target.push_token,
            title=CONTACT_PUSH_TITLE,
            body=compose_contact_push_body(user_name=overdue.user_name, scheduled_time=overdue.scheduled_time),
            category=PUSH_CATEGORY_CONTACT_ALERT,
            custom_data={"type": "contact_alert", "event_id": str(overdue.event_id)},
        )

    async def _send_sms(self, *, overdue: OverdueEvent, plan: _ContactPlan) -> SmsResult:
        phone = self._decryptor().decrypt(plan.target.phone_enc)
        return await self._sms_sender.send(
            to=phone,
            body=compose_alert_text(user_name=overdue.user_name, scheduled_time=overdue.scheduled_time),
        )

    async def _record_push(
        self,
        *,
        delivery_id: UUID,
        outcome: PushResult | BaseException,
        now: datetime,
    ) -> None:
        if isinstance(outcome, PushResult) and outcome.success:
            await self.store.update_delivery(
                delivery_id,
                now=now,
                status=RESULT_SENT,
                provider_ref=outcome.provider_message_id,
                provider_status=str(outcome.status_code) if outcome.status_code is not None else None,
                sent_at=now,
            )
            return
        if isinstance(outcome, PushResult):
            error = outcome.error_reason or "push failed"
        else:
            error = str(outcome) or type(outcome).__name__
        # Push is best-effort: recorded, never retried (max_retries=0).
        await self.store.update_delivery(delivery_id, now=now, status=RESULT_FAILED, error_message=error)

    async def _record_sms(
        self,
        *,
        contact_id: UUID,
        delivery_id: UUID,
        outcome: SmsResult | BaseException,
        now: datetime,
    ) -> ContactDeliveryResult:
        retry_at = next_retry_at(now, 0, cap_minutes=self._backoff_cap_minutes) if self._max_retries > 0 else None

        if isinstance(outcome, SmsResult) and outcome.success:
            await self.store.update_delivery(
                delivery_id,
                now=now,
                status=RESULT_SENT,
                provider_ref=outcome.provider_ref,
                provider_status=outcome.provider_status,
                sent_at=now,
            )
            return ContactDeliveryResult(contact_id=contact_id, status=RESULT_SENT)

        if isinstance(outcome, SmsResult):
            status = RESULT_FAILED
            error = outcome.error_message or "SMS send failed"
            provider_status = outcome.provider_status
        else:
            status = RESULT_ERROR
            error = str(outcome) or type(outcome).__name__
            provider_status = None
        await self.store.update_delivery(
            delivery_id,
            now=now,
            status=RESULT_FAILED,
            provider_status=provider_status,
            error_message=error,
            next_retry_at=retry_at,
        )
        return ContactDeliveryResult(contact_id=contact_id, status=status, error=error)

    async def _alert_contacts(
        self,
        *,
        overdue: OverdueEvent,
        targets: list[_ContactTarget],
        now: datetime,
    ) -> tuple[ContactDeliveryResult, ...]:
        # DB work stays sequential on the shared session; only provider calls fan out.
        plans: list[_ContactPlan] = []
        for target in targets:
            try:
                plans.append(await self._prepare(event_id=overdue.event_id, target=target, now=now))
            except Exception as exc:
                await self.session.rollback()
                logger.exception(
                    "checkin.escalation.contact_prepare_failed",
                    extra={"event_id": str(overdue.event_id), "contact_id": str(target.contact_id)},
                )
                plans.append(
                    _ContactPlan(
                        target=target,
                        result=ContactDeliveryResult(
                            contact_id=target.contact_id,
                            status=RESULT_ERROR,
                            error=str(exc) or type(exc).__name__,
                        ),
                    ),
                )

        sms_plans = [plan for plan in plans if plan.result is None]
        push_plans = [plan for plan in sms_plans if plan.push_delivery_id is not None]
        outcomes = await asyncio.gather(
            *(self._send_push(overdue=overdue, plan=plan) for plan in push_plans),
            *(self._send_sms(overdue=overdue, plan=plan) for plan in sms_plans),
            return_exceptions=True,
        )
        push_outcomes = outcomes[: len(push_plans)]
        sms_outcomes = outcomes[len(push_plans) :]

        for plan, push_outcome in zip(push_plans, push_outcomes, strict=True):
            if plan.push_delivery_id is None:
                continue
            try:
                await self._record_push(delivery_id=plan.push_delivery_id, outcome=push_outcome, now=now)
            except Exception:
                await self.session.rollback()
                logger.exception(
                    "checkin.escalation.push_record_failed",
                    extra={"event_id": str(overdue.event_id), "contact_id": str(plan.target.contact_id)},
                )

        for plan, sms_outcome in zip(sms_plans, sms_outcomes, strict=True):
            contact_id = plan.target.contact_id
            if isinstance(sms_outcome, BaseException):
                logger.warning(
                    "checkin.escalation.contact_failed",
                    extra={
                        "event_id": str(overdue.event_id),
                        "contact_id": str(contact_id),
                        "error": str(sms_outcome),
                    },
                )
            if plan.sms_delivery_id is None:
                continue
            try:
                plan.result = await self._record_sms(
                    contact_id=contact_id,
                    delivery_id=plan.sms_delivery_id,
                    outcome=sms_outcome,
                    now=now,
                )
            except Exception as exc:
                await self.session.rollback()
                logger.exception(
                    "checkin.escalation.contact_record_failed",
                    extra={"event_id": str(overdue.event_id), "contact_id": str(contact_id)},
                )
                plan.result = ContactDeliveryResult(
                    contact_id=contact_id,
                    status=RESULT_ERROR,
                    error=str(exc) or type(exc).__name__,
                )

        return tuple(plan.result for plan in plans if plan.result is not None)

    # -- event-level operations -----------------------------------------

    async def escalate_event(self, overdue: OverdueEvent, *, now: datetime) -> EscalationResult:
        """Move one overdue event to alerted and notify its contacts.

        Re-running against an event that is already alerted repeats only the
        per-contact pass, which the delivery uniqueness guard turns into
        `already_exists` results.
        """
        staged = overdue.two_level_escalation
        level = ESCALATION_LEVEL1 if staged else ESCALATION_LEVEL2
        escalated = await self.store.update_event_status(
            overdue.event_id,
            ALERTED,
            now=now,
            fields={"escalated_at": now, "escalation_level": level},
            expected_statuses=sources_for(ALERTED),
        )
        if not escalated:
            current = await self.store.get_event(event_id=overdue.event_id, user_id=overdue.user_id)
            if current is None or current.status != ALERTED:
                logger.info(
                    "checkin.escalation.skipped",
                    extra={
                        "event_id": str(overdue.event_id),
                        "status": current.status if current is not None else None,
                    },
                )
                return EscalationResult(
                    event_id=overdue.event_id,
                    user_id=overdue.user_id,
                    escalated=False,
                    escalation_level=current.escalation_level if current is not None else 0,
                    contacts_notified=0,
                    deliveries=(),
                )
            level = current.escalation_level
        else:
            logger.info(
                "checkin.escalation.event_alerted",
                extra={"event_id": str(overdue.event_id), "user_id": str(overdue.user_id), "level": level},
            )
            await self.store.append_audit_log(
                user_id=overdue.user_id,
                event_id=overdue.event_id,
                event_type="checkin_escalated",
                event_time=now,
                result="missed",
                details={"deadline_time": overdue.deadline_time.isoformat(), "escalation_level": level},
            )

        deliveries: tuple[ContactDeliveryResult, ...] = ()
        if overdue.sms_alerts_enabled:
            targets = await self._load_targets(
                user_id=overdue.user_id,
                min_level=None,
                max_level=ESCALATION_LEVEL1 if level == ESCALATION_LEVEL1 else None,
            )
            deliveries = await self._alert_contacts(overdue=overdue, targets=targets, now=now)

        notified = sum(1 for item in deliveries if item.status == RESULT_SENT)
        if escalated:
            await self.store.append_audit_log(
                user_id=overdue.user_id,
                event_id=overdue.event_id,
                event_type="contacts_alerted",
                event_time=now,
                details={"contacts_count": notified, "escalation_level": level},
            )
        return EscalationResult(
            event_id=overdue.event_id,
            user_id=overdue.user_id,
            escalated=escalated,
            escalation_level=level,
            contacts_notified=notified,
            deliveries=deliveries,
        )

    async def escalate_level2(self, overdue: OverdueEvent, *, now: datetime) -> EscalationResult:
        """Notify level-2 contacts once the staged delay after level 1 has elapsed."""
        escalated = await self.store.update_event_status(
            overdue.event_id,
            ALERTED,
            now=now,
            fields={"escalation_level": ESCALATION_LEVEL2, "level2_escalated_at": now},
            expected_statuses={ALERTED},
            expected_fields={"escalation_level": ESCALATION_LEVEL1},
        )
        if not escalated:
            return EscalationResult(
                event_id=overdue.event_id,
                user_id=overdue.user_id,
                escalated=False,
                escalation_level=overdue.escalation_level,
                contacts_notified=0,
                deliveries=(),
            )

        await self.store.append_audit_log(
            user_id=overdue.user_id,
            event_id=overdue.event_id,
            event_type="checkin_escalated_level2",
            event_time=now,
            result="missed",
            details={"level2_delay_minutes": overdue.level2_delay_minutes},
        )
        deliveries: tuple[ContactDeliveryResult, ...] = ()
        if overdue.sms_alerts_enabled:
            targets = await self._load_targets(user_id=overdue.user_id, min_level=ESCALATION_LEVEL2, max_level=None)
            deliveries = await self._alert_contacts(overdue=overdue, targets=targets, now=now)
        notified = sum(1 for item in deliveries if item.status == RESULT_SENT)
        await self.store.append_audit_log(
            user_id=overdue.user_id,
            event_id=overdue.event_id,
            event_type="contacts_alerted",
            event_time=now,
            details={"contacts_count": notified, "escalation_level": ESCALATION_LEVEL2},
        )
        return EscalationResult(
            event_id=overdue.event_id,
            user_id=overdue.user_id,
            escalated=True,
            escalation_level=ESCALATION_LEVEL2,
            contacts_notified=notified,
            deliveries=deliveries,
        )

    async def run_escalations(self, now: datetime | None = None) -> EscalationSweepResult:
        """Escalate every overdue event, then run the staged level-2 scan."""
        current = as_naive_utc(now) if now is not None else utcnow()
        overdue_events = await self.store.find_overdue_events(current)
        level2_events = await self.store.find_level2_due(current)

        results: list[EscalationResult] = []
        escalated_count = 0
        level2_count = 0
        failed = 0
        for overdue in overdue_events:
            try:
                result = await self.escalate_event(overdue, now=current)
            except Exception:
                failed += 1
                logger.exception("checkin.escalation.event_failed", extra={"event_id": str(overdue.event_id)})
                await self.session.rollback()
                continue
            results.append(result)
            if result.escalated:
                escalated_count += 1

        for overdue in level2_events:
            try:
                result = await self.escalate_level2(overdue, now=current)
            except Exception:
                failed += 1
                logger.exception("checkin.escalation.level2_failed", extra={"event_id": str(overdue.event_id)})
                await self.session.rollback()
                continue
            results.append(result)
            if result.escalated:
                level2_count += 1

        return EscalationSweepResult(
            events_scanned=len(overdue_events) + len(level2_events),
            events_escalated=escalated_count,
            level2_escalated=level2_count,
            contacts_notified=sum(item.contacts_notified for item in results),
            failed_events=failed,
            results=tuple(results),
        )


__all__ = [
    "ContactDeliveryResult",
    "EscalationEngine",
    "EscalationResult",
    "EscalationSweepResult",
]
