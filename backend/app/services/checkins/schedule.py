"""Validated daily check-in time values and slot matching."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, date, datetime, time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.core.logging import get_logger

logger = get_logger(__name__)

_HHMM_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


@dataclass(frozen=True, slots=True, order=True)
class CheckinTime:
    """A wall-clock time of day with no date component."""

    hour: int
    minute: int

    def __post_init__(self) -> None:
        if not 0 <= self.hour <= 23:
            raise ValueError(f"hour out of range: {self.hour}")
        if not 0 <= self.minute <= 59:
            raise ValueError(f"minute out of range: {self.minute}")

    @classmethod
    def parse(cls, raw: str) -> CheckinTime:
        """Parse a strict "HH:MM" string."""
        match = _HHMM_PATTERN.match(raw.strip()) if isinstance(raw, str) else None
        if match is None:
            raise ValueError(f'Time "{raw}" is not in HH:MM format')
        return cls(hour=int(match.group(1)), minute=int(match.group(2)))

    @property
    def minute_of_day(self) -> int:
        return self.hour * 60 + self.minute

    def on(self, day: date) -> datetime:
        """Combine with a calendar day into a naive datetime."""
        return datetime.combine(day, time(self.hour, self.minute))

    def __str__(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"


def parse_checkin_times(raw_times: list[str] | None, *, user_id: object = None) -> tuple[CheckinTime, ...]:
    """Parse stored schedule strings once, dropping (and logging) malformed entries."""
    parsed: list[CheckinTime] = []
    for raw in raw_times or []:
        try:
            value = CheckinTime.parse(raw)
        except ValueError:
            logger.warning(
                "checkin.schedule.invalid_time",
                extra={"user_id": str(user_id), "raw_time": str(raw)},
            )
            continue
        if value not in parsed:
            parsed.append(value)
    return tuple(sorted(parsed))


def is_time_match(current: CheckinTime, scheduled: CheckinTime, *, tolerance_minutes: int) -> bool:
    """Return True when two times of day are within the polling tolerance."""
    return abs(current.minute_of_day - scheduled.minute_of_day) <= tolerance_minutes


def resolve_zone(name: str | None) -> ZoneInfo:
    """Resolve an IANA zone name, falling back to UTC for unknown names."""
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("checkin.schedule.unknown_timezone", extra={"timezone": str(name)})
        return ZoneInfo("UTC")


def local_wall_clock(now: datetime, zone_name: str | None) -> datetime:
    """Convert a naive-UTC instant into naive wall-clock time for the given zone."""
    return now.replace(tzinfo=UTC).astimezone(resolve_zone(zone_name)).replace(tzinfo=None)


def local_to_utc(local: datetime, zone_name: str | None) -> datetime:
    """Convert naive wall-clock time in a zone into a naive-UTC instant."""
    return local.replace(tzinfo=resolve_zone(zone_name)).astimezone(UTC).replace(tzinfo=None)
