# ruff: noqa: S101
from __future__ import annotations

import pytest

from app.services.checkins import state_machine as sm


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (sm.PENDING, sm.CONFIRMED),
        (sm.PENDING, sm.SNOOZED),
        (sm.PENDING, sm.ALERTED),
        (sm.PENDING, sm.PAUSED),
        (sm.SNOOZED, sm.SNOOZED),
        (sm.SNOOZED, sm.ALERTED),
        (sm.ALERTED, sm.CONFIRMED),
        (sm.MISSED, sm.ALERTED),
    ],
)
def test_legal_transitions(current: str, target: str) -> None:
    assert sm.can_transition(current, target) is True


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (sm.CONFIRMED, sm.SNOOZED),
        (sm.CONFIRMED, sm.ALERTED),
        (sm.PAUSED, sm.PENDING),
        (sm.PAUSED, sm.CONFIRMED),
        (sm.ALERTED, sm.SNOOZED),
        (sm.ALERTED, sm.PAUSED),
        ("unknown", sm.CONFIRMED),
    ],
)
def test_illegal_transitions(current: str, target: str) -> None:
    assert sm.can_transition(current, target) is False


def test_terminal_statuses_have_no_exits() -> None:
    for status in sm.TERMINAL_STATUSES:
        assert not any(sm.can_transition(status, target) for target in sm.ALL_STATUSES)


def test_alerted_is_entered_only_from_open_or_missed() -> None:
    assert sm.sources_for(sm.ALERTED) == frozenset({sm.PENDING, sm.SNOOZED, sm.MISSED})
