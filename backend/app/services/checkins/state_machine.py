"""Check-in status values and the legal transitions between them."""

from __future__ import annotations

PENDING = "pending"
SNOOZED = "snoozed"
CONFIRMED = "confirmed"
MISSED = "missed"
ALERTED = "alerted"
PAUSED = "paused"

ALL_STATUSES = frozenset({PENDING, SNOOZED, CONFIRMED, MISSED, ALERTED, PAUSED})
# Statuses that can still breach their deadline.
OPEN_STATUSES = frozenset({PENDING, SNOOZED})
TERMINAL_STATUSES = frozenset({CONFIRMED, PAUSED})

_TRANSITIONS: dict[str, frozenset[str]] = {
    PENDING: frozenset({CONFIRMED, SNOOZED, ALERTED, PAUSED, MISSED}),
    SNOOZED: frozenset({CONFIRMED, SNOOZED, ALERTED, PAUSED, MISSED}),
    MISSED: frozenset({ALERTED, CONFIRMED}),
    ALERTED: frozenset({CONFIRMED}),
    CONFIRMED: frozenset(),
    PAUSED: frozenset(),
}

# Escalation stages recorded on CheckinEvent.escalation_level.
ESCALATION_LEVEL1 = 1
ESCALATION_LEVEL2 = 2


def can_transition(current: str, target: str) -> bool:
    """Return True when `current -> target` is a legal lifecycle move."""
    return target in _TRANSITIONS.get(current, frozenset())


def sources_for(target: str) -> frozenset[str]:
    """Return every status from which `target` may be entered."""
    return frozenset(source for source, targets in _TRANSITIONS.items() if target in targets)


__all__ = [
    "ALERTED",
    "ALL_STATUSES",
    "CONFIRMED",
    "ESCALATION_LEVEL1",
    "ESCALATION_LEVEL2",
    "MISSED",
    "OPEN_STATUSES",
    "PAUSED",
    "PENDING",
    "SNOOZED",
    "TERMINAL_STATUSES",
    "can_transition",
    "sources_for",
]
