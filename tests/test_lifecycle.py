"""Tests for turn state transitions."""
from __future__ import annotations

import pytest

from manu.engine.lifecycle import VALID_TRANSITIONS, is_terminal, validate_transition
from manu.engine.models import TurnState


@pytest.mark.parametrize("current,target", [
    (TurnState.AWAITING_MODEL, TurnState.HAS_PENDING_CALLS),
    (TurnState.HAS_PENDING_CALLS, TurnState.DISPATCHING_CALLS),
    (TurnState.DISPATCHING_CALLS, TurnState.AWAITING_MODEL),
    (TurnState.AWAITING_MODEL, TurnState.TURN_COMPLETE),
    (TurnState.AWAITING_MODEL, TurnState.ERROR),
    (TurnState.DISPATCHING_CALLS, TurnState.CANCELLED),
    (TurnState.ERROR, TurnState.AWAITING_MODEL),
])
def test_valid_transitions(current, target):
    validate_transition(current, target)


@pytest.mark.parametrize("current,target", [
    (TurnState.AWAITING_MODEL, TurnState.DISPATCHING_CALLS),
    (TurnState.HAS_PENDING_CALLS, TurnState.AWAITING_MODEL),
    (TurnState.TURN_COMPLETE, TurnState.ERROR),
    (TurnState.DISPATCHING_CALLS, TurnState.TURN_COMPLETE),
])
def test_invalid_transitions(current, target):
    with pytest.raises(ValueError, match="Invalid state transition"):
        validate_transition(current, target)


def test_every_state_has_an_entry():
    assert set(VALID_TRANSITIONS) == set(TurnState)


def test_terminal_states():
    assert is_terminal(TurnState.TURN_COMPLETE)
    assert is_terminal(TurnState.ERROR)
    assert is_terminal(TurnState.CANCELLED)
    assert not is_terminal(TurnState.DISPATCHING_CALLS)
