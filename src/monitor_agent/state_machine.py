"""Status transition rules for the enhancement lifecycle.

Every status write goes through :func:`validate_transition` before the
store issues its compare-and-set update, so an enhancement can only move
forward along the pipeline or drop to ``failed``.
"""

from __future__ import annotations

import logging

from monitor_agent.errors import MonitorAgentError
from monitor_agent.schemas import EnhancementStatus

logger = logging.getLogger(__name__)

S = EnhancementStatus


class StateTransitionError(MonitorAgentError):
    """Raised when an invalid state transition is attempted."""

    def __init__(
        self,
        message: str,
        current_status: EnhancementStatus,
        requested_status: EnhancementStatus,
        allowed_transitions: list[EnhancementStatus],
    ) -> None:
        super().__init__(message)
        self.current_status = current_status
        self.requested_status = requested_status
        self.allowed_transitions = allowed_transitions


# Maps current status -> allowed next statuses.
TRANSITION_MATRIX: dict[EnhancementStatus, list[EnhancementStatus]] = {
    S.PENDING: [S.PROCESSING, S.FAILED],
    S.PROCESSING: [S.PLANNING, S.FAILED],
    S.PLANNING: [
        S.IMPLEMENTING,
        S.COMPLETED,  # dry run stops after planning
        S.FAILED,
    ],
    S.IMPLEMENTING: [S.REVIEWING, S.FAILED],
    S.REVIEWING: [
        S.COPILOT_REVIEWING,
        S.COMPLETED,  # nothing changed on disk
        S.FAILED,
    ],
    S.COPILOT_REVIEWING: [S.PR_CREATED, S.FAILED],
    S.PR_CREATED: [
        S.COMPLETED,  # merged by the deployment scheduler
        S.FAILED,
    ],
    S.COMPLETED: [],
    S.FAILED: [],
}

TERMINAL_STATUSES = frozenset(s for s, nxt in TRANSITION_MATRIX.items() if not nxt)


def is_transition_valid(current: EnhancementStatus, new: EnhancementStatus) -> bool:
    """Return True when *current* may move to *new*."""
    return new in TRANSITION_MATRIX.get(current, [])


def validate_transition(current: EnhancementStatus, new: EnhancementStatus) -> None:
    """Raise :class:`StateTransitionError` when *current* may not move to *new*."""
    if is_transition_valid(current, new):
        logger.debug("Transition %s -> %s allowed", current.value, new.value)
        return
    allowed = TRANSITION_MATRIX.get(current, [])
    if allowed:
        allowed_text = ", ".join(s.value for s in allowed)
        message = (
            f"Cannot transition from '{current.value}' to '{new.value}'. "
            f"Allowed: {allowed_text}"
        )
    else:
        message = f"Cannot transition from terminal status '{current.value}'"
    logger.warning("Blocked transition %s -> %s", current.value, new.value)
    raise StateTransitionError(message, current, new, list(allowed))
