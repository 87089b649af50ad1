"""Session lifecycle state machine.

Defines valid transitions and enforces them. Invalid transitions
raise ValueError rather than silently proceeding.

State Diagram:

    STOPPED ──start──> RUNNING ──pause──> PAUSED
       ^                  ^  │               │
       │                  │  └───resume──────┘
    REPLAY ──start────────┘
       │
    RUNNING / PAUSED ──stop──> STOPPED

    Any state ──> removed  (delete)
"""
from __future__ import annotations

from enum import Enum

from .models import SessionStatus


class SessionOp(str, Enum):
    START = "start"
    PAUSE = "pause"
    RESUME = "resume"
    STOP = "stop"


VALID_TRANSITIONS: dict[SessionOp, tuple[set[SessionStatus], SessionStatus]] = {
    SessionOp.START: (
        {SessionStatus.STOPPED, SessionStatus.REPLAY},
        SessionStatus.RUNNING,
    ),
    SessionOp.PAUSE: ({SessionStatus.RUNNING}, SessionStatus.PAUSED),
    SessionOp.RESUME: ({SessionStatus.PAUSED}, SessionStatus.RUNNING),
    SessionOp.STOP: (
        {SessionStatus.RUNNING, SessionStatus.PAUSED},
        SessionStatus.STOPPED,
    ),
}

# Statuses that imply a live agent process. A session found in one of
# these after a restart has lost its process and is reset to STOPPED.
STALE_STATUSES = frozenset({SessionStatus.RUNNING, SessionStatus.PAUSED})


def next_status(current: SessionStatus, op: SessionOp) -> SessionStatus | None:
    """Target status for ``op`` from ``current``, or None if it does not apply."""
    sources, target = VALID_TRANSITIONS[op]
    if current not in sources:
        return None
    return target


def validate_transition(current: SessionStatus, op: SessionOp) -> SessionStatus:
    """Validate a lifecycle operation. Raises ValueError if invalid."""
    target = next_status(current, op)
    if target is None:
        sources, _ = VALID_TRANSITIONS[op]
        allowed_str = ", ".join(sorted(s.value for s in sources))
        raise ValueError(
            f"Invalid session transition: {op.value} from {current.value}. "
            f"Allowed from: {allowed_str}"
        )
    return target
