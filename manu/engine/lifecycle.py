"""Agent loop state machine.

Defines valid transitions and enforces them. Invalid transitions
raise ValueError rather than silently proceeding.

State Diagram:

    AWAITING_MODEL ──> HAS_PENDING_CALLS ──> DISPATCHING_CALLS ──┐
          ^                                                      │
          └──────────────────────────────────────────────────────┘

    AWAITING_MODEL ──> TURN_COMPLETE  (response had no tool calls)
    AWAITING_MODEL ──> ERROR | CANCELLED
    DISPATCHING_CALLS ──> ERROR | CANCELLED

    TURN_COMPLETE, ERROR, CANCELLED ──> AWAITING_MODEL  (next advance)
"""
from __future__ import annotations

from .models import TurnState

VALID_TRANSITIONS: dict[TurnState, set[TurnState]] = {
    TurnState.AWAITING_MODEL: {
        TurnState.HAS_PENDING_CALLS,
        TurnState.TURN_COMPLETE,
        TurnState.ERROR,
        TurnState.CANCELLED,
    },
    TurnState.HAS_PENDING_CALLS: {
        TurnState.DISPATCHING_CALLS,
        TurnState.CANCELLED,
    },
    TurnState.DISPATCHING_CALLS: {
        TurnState.AWAITING_MODEL,
        TurnState.ERROR,
        TurnState.CANCELLED,
    },
    TurnState.TURN_COMPLETE: {
        TurnState.AWAITING_MODEL,
    },
    TurnState.ERROR: {
        TurnState.AWAITING_MODEL,
    },
    TurnState.CANCELLED: {
        TurnState.AWAITING_MODEL,
    },
}

TERMINAL_STATES = frozenset({
    TurnState.TURN_COMPLETE,
    TurnState.ERROR,
    TurnState.CANCELLED,
})


def validate_transition(current: TurnState, target: TurnState) -> None:
    """Validate a state transition. Raises ValueError if invalid."""
    allowed = VALID_TRANSITIONS.get(current, set())
    if target not in allowed:
        allowed_str = ", ".join(sorted(s.value for s in allowed)) or "none"
        raise ValueError(
            f"Invalid state transition: {current.value} -> {target.value}. "
            f"Allowed from {current.value}: {allowed_str}"
        )


def is_terminal(state: TurnState) -> bool:
    return state in TERMINAL_STATES
