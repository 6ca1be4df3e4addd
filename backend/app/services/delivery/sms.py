"""Twilio SMS adapter with bounded timeouts and non-raising failure results."""

from __future__ import annotations

import re

import httpx

from app.core.config import settings
from app.core.logging import get_logger
from app.services.delivery.types import SmsResult

logger = get_logger(__name__)

_E164_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")


def is_valid_e164(phone: str) -> bool:
    """Return True for E.164 numbers such as +14155550100."""
    return bool(_E164_PATTERN.match(phone or ""))


class TwilioSmsSender:
    """Send SMS through the Twilio Messages REST API."""

    def __init__(
        self,
        *,
        account_sid: str | None = None,
        auth_token: str | None = None,
        from_number: str | None = None,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.account_sid = (account_sid if account_sid is not None else settings.twilio_account_sid).strip()
        self.auth_token = (auth_token if auth_token is not None else settings.twilio_auth_token).strip()
        self.from_number = (from_number if from_number is not None else settings.twilio_from_number).strip()
        self.base_url = (base_url or settings.twilio_base_url).rstrip("/")
        self.timeout_seconds = float(
            timeout_seconds if timeout_seconds is not None else settings.delivery_timeout_seconds
        )
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    async def send(self, *, to: str, body: str) -> SmsResult:
        if not self.configured:
            logger.warning("delivery.sms.not_configured")
            return SmsResult(success=False, error_message="SMS provider not configured")
        if not is_valid_e164(to):
            return SmsResult(success=False, error_code="invalid_number", error_message="Invalid E.164 number")

        path = f"/2010-04-01/Accounts/{self.account_sid}/Messages.json"
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout_seconds,
                auth=(self.account_sid, self.auth_token),
                transport=self.transport,
            ) as client:
                response = await client.post(
                    path,
                    data={"To": to, "From": self.from_number, "Body": body},
                )
        except httpx.TimeoutException:
            logger.warning("delivery.sms.timeout", extra={"timeout_seconds": self.timeout_seconds})
            return SmsResult(success=False, error_code="timeout", error_message="SMS provider timed out")
        except httpx.HTTPError as exc:
            logger.warning("delivery.sms.transport_failed", extra={"error": str(exc)})
            return SmsResult(success=False, error_message=str(exc) or "Network error")

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        if response.is_success:
            return SmsResult(
                success=True,
                provider_ref=payload.get("sid"),
                provider_status=payload.get("status"),
            )

        error_code = payload.get("code") or payload.get("error_code")
        return SmsResult(
            success=False,
            provider_status=str(response.status_code),
            error_code=str(error_code) if error_code is not None else None,
            error_message=payload.get("message") or payload.get("error_message") or "Unknown Twilio error",
        )
