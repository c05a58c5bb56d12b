"""Tests for enhancement status transition rules."""

from __future__ import annotations

import pytest

from monitor_agent.schemas import EnhancementStatus as S
from monitor_agent.state_machine import (
    TERMINAL_STATUSES,
    TRANSITION_MATRIX,
    StateTransitionError,
    is_transition_valid,
    validate_transition,
)

HAPPY_PATH = [
    S.PENDING,
    S.PROCESSING,
    S.PLANNING,
    S.IMPLEMENTING,
    S.REVIEWING,
    S.COPILOT_REVIEWING,
    S.PR_CREATED,
    S.COMPLETED,
]


def test_happy_path_is_allowed_step_by_step():
    for current, new in zip(HAPPY_PATH, HAPPY_PATH[1:]):
        validate_transition(current, new)


@pytest.mark.parametrize("status", [s for s in S if s not in TERMINAL_STATUSES])
def test_every_non_terminal_status_can_fail(status):
    assert is_transition_valid(status, S.FAILED)


def test_terminal_statuses():
    assert TERMINAL_STATUSES == {S.COMPLETED, S.FAILED}


@pytest.mark.parametrize(
    "current,new",
    [
        (S.PENDING, S.PR_CREATED),
        (S.PROCESSING, S.IMPLEMENTING),
        (S.IMPLEMENTING, S.PR_CREATED),
        (S.IMPLEMENTING, S.COMPLETED),
        (S.REVIEWING, S.PLANNING),
        (S.PR_CREATED, S.PENDING),
        (S.COMPLETED, S.PENDING),
        (S.FAILED, S.PENDING),
    ],
)
def test_skips_and_back_transitions_are_rejected(current, new):
    with pytest.raises(StateTransitionError) as excinfo:
        validate_transition(current, new)
    assert excinfo.value.current_status is current
    assert excinfo.value.requested_status is new


def test_pr_created_only_reachable_from_review_phase():
    sources = [s for s, allowed in TRANSITION_MATRIX.items() if S.PR_CREATED in allowed]
    assert sources == [S.COPILOT_REVIEWING]


def test_terminal_error_message_mentions_terminal():
    with pytest.raises(StateTransitionError, match="terminal"):
        validate_transition(S.COMPLETED, S.FAILED)


def test_shortcuts_to_completed():
    assert is_transition_valid(S.PLANNING, S.COMPLETED)
    assert is_transition_valid(S.REVIEWING, S.COMPLETED)
