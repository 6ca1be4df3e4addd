"""APNs push adapter using token-based (ES256 JWT) provider authentication."""

from __future__ import annotations

import time
from collections.abc import Mapping

import httpx
import jwt

from app.core.config import settings
from app.core.logging import get_logger
from app.services.delivery.types import PushResult

logger = get_logger(__name__)

APNS_PRODUCTION_HOST = "https://api.push.apple.com"
APNS_SANDBOX_HOST = "https://api.sandbox.push.apple.com"
# Apple rejects provider tokens older than one hour; refresh well before that.
_TOKEN_TTL_SECONDS = 50 * 60


def build_apns_payload(
    *,
    title: str,
    body: str,
    category: str,
    custom_data: Mapping[str, str] | None = None,
    time_sensitive: bool = True,
) -> dict[str, object]:
    """Build the APNs JSON body agreed with the iOS client (category drives action buttons)."""
    aps: dict[str, object] = {
        "alert": {"title": title, "body": body},
        "sound": "default",
        "category": category,
        "interruption-level": "time-sensitive" if time_sensitive else "active",
        "relevance-score": 1.0,
    }
    payload: dict[str, object] = {"aps": aps}
    for key, value in (custom_data or {}).items():
        if key != "aps":
            payload[key] = value
    return payload


class ApnsPushSender:
    """Send alert pushes to iOS devices through APNs over HTTP/2."""

    def __init__(
        self,
        *,
        key_id: str | None = None,
        team_id: str | None = None,
        private_key: str | None = None,
        bundle_id: str | None = None,
        use_sandbox: bool | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.key_id = (key_id if key_id is not None else settings.apns_key_id).strip()
        self.team_id = (team_id if team_id is not None else settings.apns_team_id).strip()
        self.private_key = (private_key if private_key is not None else settings.apns_private_key).strip()
        self.bundle_id = (bundle_id if bundle_id is not None else settings.apns_bundle_id).strip()
        sandbox = use_sandbox if use_sandbox is not None else settings.apns_use_sandbox
        self.base_url = APNS_SANDBOX_HOST if sandbox else APNS_PRODUCTION_HOST
        self.timeout_seconds = float(
            timeout_seconds if timeout_seconds is not None else settings.delivery_timeout_seconds
        )
        self.transport = transport
        self._token: str | None = None
        self._token_issued_at = 0.0

    @property
    def configured(self) -> bool:
        return bool(self.key_id and self.team_id and self.private_key and self.bundle_id)

    def _provider_token(self) -> str:
        now = time.time()
        if self._token is None or now - self._token_issued_at >= _TOKEN_TTL_SECONDS:
            self._token = jwt.encode(
                {"iss": self.team_id, "iat": int(now)},
                self.private_key,
                algorithm="ES256",
                headers={"kid": self.key_id},
            )
            self._token_issued_at = now
        return self._token

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
        if not self.configured:
            logger.info("delivery.push.not_configured")
            return PushResult(success=False, error_reason="APNs not configured")

        payload = build_apns_payload(
            title=title,
            body=body,
            category=category,
            custom_data=custom_data,
            time_sensitive=time_sensitive,
        )
        try:
            headers = {
                "authorization": f"bearer {self._provider_token()}",
                "apns-topic": self.bundle_id,
                "apns-push-type": "alert",
                "apns-priority": "10" if time_sensitive else "5",
                "apns-expiration": "0",
            }
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout_seconds,
                http2=True,
                transport=self.transport,
            ) as client:
                response = await client.post(f"/3/device/{device_token}", json=payload, headers=headers)
        except httpx.TimeoutException:
            logger.warning("delivery.push.timeout", extra={"timeout_seconds": self.timeout_seconds})
            return PushResult(success=False, error_reason="timeout")
        except (httpx.HTTPError, jwt.PyJWTError, ValueError) as exc:
            logger.warning("delivery.push.request_failed", extra={"error": str(exc)})
            return PushResult(success=False, error_reason=str(exc) or "request failed")

        apns_id = response.headers.get("apns-id")
        if response.is_success:
            return PushResult(success=True, provider_message_id=apns_id, status_code=response.status_code)

        try:
            reason = response.json().get("reason")
        except (ValueError, AttributeError):
            reason = None
        return PushResult(
            success=False,
            provider_message_id=apns_id,
            status_code=response.status_code,
            error_reason=reason or f"HTTP {response.status_code}",
        )
