"""Exponential retry backoff for failed alert deliveries."""

from __future__ import annotations

from datetime import datetime, timedelta

from app.core.config import RETRY_BACKOFF_CAP_MINUTES


def retry_delay_minutes(retry_count: int, *, cap_minutes: int = RETRY_BACKOFF_CAP_MINUTES) -> int:
    """Return the wait before the next attempt: 2**retry_count minutes, capped.

    `retry_count` is 0-based at the first failure, giving 1, 2, 4, 8, 16, 30, 30, ...
    """
    return min(2 ** max(0, retry_count), cap_minutes)


def next_retry_at(
    now: datetime,
    retry_count: int,
    *,
    cap_minutes: int = RETRY_BACKOFF_CAP_MINUTES,
) -> datetime:
    return now + timedelta(minutes=retry_delay_minutes(retry_count, cap_minutes=cap_minutes))
