"""Delivery channel contracts consumed by the escalation and retry services."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Protocol

CHANNEL_SMS = "sms"
CHANNEL_PUSH = "push"

PUSH_CATEGORY_CHECKIN = "CHECKIN_REMINDER"
PUSH_CATEGORY_CONTACT_ALERT = "CONTACT_ALERT"


@dataclass(frozen=True, slots=True)
class SmsResult:
    """Provider outcome for one SMS send."""

    success: bool
    provider_ref: str | None = None
    provider_status: str | None = None
    error_code: str | None = None
    error_message: str | None = None


@dataclass(frozen=True, slots=True)
class PushResult:
    """Provider outcome for one push notification."""

    success: bool
    provider_message_id: str | None = None
    status_code: int | None = None
    error_reason: str | None = None


class SmsSender(Protocol):
    async def send(self, *, to: str, body: str) -> SmsResult: ...


class PushSender(Protocol):
    async def send(
        self,
        *,
        device_token: str,
        title: str,
        body: str,
        category: str,
        custom_data: Mapping[str, str] | None = None,
        time_sensitive: bool = True,
    ) -> PushResult: ...


class PhoneDecryptor(Protocol):
    def decrypt(self, ciphertext: str) -> str: ...
