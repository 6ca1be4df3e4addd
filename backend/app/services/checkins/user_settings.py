"""Pause/resume and schedule changes that the tick phases must honour."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import HTTPException, status

from app.core.config import settings
from app.core.logging import get_logger
from app.core.time import as_naive_utc, utcnow
from app.services.checkins.schedule import CheckinTime
from app.services.checkins.store import CheckinStore

if TYPE_CHECKING:
    from app.models.users import User
    from app.schemas.user_settings import ScheduleUpdate

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class PauseResult:
    pause_until: datetime | None
    events_paused: int


def _bad_request(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"error": code, "message": message})


class UserSettingsService(CheckinStore):
    """Apply user settings changes and their side effects on open events."""

    async def set_pause(
        self,
        user: User,
        pause_until: datetime | None,
        *,
        now: datetime | None = None,
    ) -> PauseResult:
        """Pause monitoring until `pause_until`, or resume when it is None.

        Pausing flips every pending/snoozed event to `paused`; resuming never
        revives them.
        """
        current = as_naive_utc(now) if now is not None else utcnow()
        user_id = user.id
        if pause_until is None:
            await self.set_pause_until(user_id=user_id, pause_until=None, now=current)
            await self.append_audit_log(
                user_id=user_id,
                event_id=None,
                event_type="monitoring_resumed",
                event_time=current,
            )
            logger.info("checkin.settings.resumed", extra={"user_id": str(user_id)})
            return PauseResult(pause_until=None, events_paused=0)

        until = as_naive_utc(pause_until)
        if until <= current:
            raise _bad_request("invalid_pause_until", "pause_until must be in the future")

        await self.set_pause_until(user_id=user_id, pause_until=until, now=current)
        paused = await self.pause_open_events(user_id=user_id, now=current)
        await self.append_audit_log(
            user_id=user_id,
            event_id=None,
            event_type="monitoring_paused",
            event_time=current,
            details={"pause_until": until.isoformat(), "events_paused": paused},
        )
        logger.info(
            "checkin.settings.paused",
            extra={"user_id": str(user_id), "pause_until": until.isoformat(), "events_paused": paused},
        )
        return PauseResult(pause_until=until, events_paused=paused)

    async def update_schedule(self, user: User, payload: ScheduleUpdate) -> User:
        """Validate and persist schedule fields; times are normalised to sorted HH:MM."""
        patch = payload.model_dump(exclude_unset=True)
        if patch.get("checkin_times") is not None:
            try:
                times = sorted({CheckinTime.parse(raw) for raw in patch["checkin_times"]})
            except ValueError as exc:
                raise _bad_request("invalid_checkin_time", str(exc)) from exc
            if not times:
                raise _bad_request("invalid_checkin_time", "At least one check-in time is required")
            user.checkin_times = [str(value) for value in times]
        if patch.get("grace_minutes") is not None:
            allowed = settings.grace_minutes()
            if patch["grace_minutes"] not in allowed:
                raise _bad_request(
                    "invalid_grace_minutes",
                    f"Grace period must be one of: {', '.join(str(value) for value in allowed)}",
                )
            user.grace_minutes = patch["grace_minutes"]
        if patch.get("level2_delay_minutes") is not None:
            if patch["level2_delay_minutes"] <= 0:
                raise _bad_request("invalid_level2_delay", "level2_delay_minutes must be positive")
            user.level2_delay_minutes = patch["level2_delay_minutes"]
        if patch.get("timezone") is not None:
            try:
                ZoneInfo(patch["timezone"])
            except (ZoneInfoNotFoundError, ValueError) as exc:
                raise _bad_request("invalid_timezone", f"Unknown timezone: {patch['timezone']}") from exc
            user.timezone = patch["timezone"]
        for key in ("sms_alerts_enabled", "two_level_escalation"):
            if patch.get(key) is not None:
                setattr(user, key, patch[key])
        user.updated_at = utcnow()
        return await self.add_commit_refresh(user)
