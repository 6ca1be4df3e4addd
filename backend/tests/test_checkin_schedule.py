# ruff: noqa: S101
from __future__ import annotations

from datetime import date, datetime

import pytest

from app.services.checkins.schedule import (
    CheckinTime,
    is_time_match,
    local_to_utc,
    local_wall_clock,
    parse_checkin_times,
    resolve_zone,
)


def test_parse_accepts_strict_hhmm() -> None:
    value = CheckinTime.parse("09:05")
    assert (value.hour, value.minute) == (9, 5)
    assert str(value) == "09:05"
    assert value.minute_of_day == 545


@pytest.mark.parametrize("raw", ["9:05", "24:00", "12:60", "0905", "", "ab:cd", "09:05:00"])
def test_parse_rejects_malformed_values(raw: str) -> None:
    with pytest.raises(ValueError, match="HH:MM"):
        CheckinTime.parse(raw)


def test_constructor_validates_ranges() -> None:
    with pytest.raises(ValueError):
        CheckinTime(hour=24, minute=0)
    with pytest.raises(ValueError):
        CheckinTime(hour=0, minute=-1)


def test_parse_checkin_times_drops_invalid_and_sorts() -> None:
    parsed = parse_checkin_times(["21:30", "bogus", "09:00", "09:00"])
    assert parsed == (CheckinTime(9, 0), CheckinTime(21, 30))
    assert parse_checkin_times(None) == ()


def test_on_combines_with_calendar_day() -> None:
    assert CheckinTime(9, 0).on(date(2026, 3, 2)) == datetime(2026, 3, 2, 9, 0)


def test_time_match_uses_tolerance_window() -> None:
    slot = CheckinTime(9, 0)
    assert is_time_match(CheckinTime(8, 59), slot, tolerance_minutes=1)
    assert is_time_match(CheckinTime(9, 1), slot, tolerance_minutes=1)
    assert not is_time_match(CheckinTime(9, 2), slot, tolerance_minutes=1)
    assert not is_time_match(CheckinTime(9, 1), slot, tolerance_minutes=0)


def test_unknown_zone_falls_back_to_utc() -> None:
    assert resolve_zone("Mars/Olympus_Mons").key == "UTC"


def test_zone_conversion_round_trips_wall_clock() -> None:
    utc_instant = datetime(2026, 3, 2, 14, 0)
    local = local_wall_clock(utc_instant, "America/New_York")
    assert local == datetime(2026, 3, 2, 9, 0)
    assert local_to_utc(local, "America/New_York") == utc_instant
