"""Tests for the scene lifecycle state machine."""

import pytest

from vidgate.orchestrator.state import (
    FAILING_STATES,
    SCENE_STATES,
    SCENE_TRANSITIONS,
    InvalidStateTransition,
    can_regenerate,
    can_transition,
    ensure_transition,
    status_after_regeneration,
)
from vidgate.schemas.quality import VerdictStatus


def test_every_state_has_transitions():
    assert set(SCENE_TRANSITIONS) == set(SCENE_STATES)


@pytest.mark.parametrize("state", ["pending", "approved", "needs_review", "rejected", "escalated"])
def test_regeneration_can_start_outside_a_running_loop(state):
    assert can_transition(state, "regenerating")
    assert can_regenerate(state)


def test_running_loop_cannot_be_restarted():
    assert not can_transition("regenerating", "regenerating")
    assert not can_regenerate("regenerating")
    with pytest.raises(InvalidStateTransition):
        ensure_transition("regenerating", "regenerating")


def test_only_a_loop_escalates():
    assert can_transition("regenerating", "escalated")
    assert not can_transition("rejected", "escalated")


def test_evaluation_may_set_any_verdict_state():
    for state in ("pending", "approved", "rejected", "escalated"):
        for verdict in VerdictStatus:
            assert ensure_transition(state, verdict.value) == verdict.value


def test_unknown_state_has_no_transitions():
    assert not can_transition("archived", "approved")


def test_status_after_regeneration():
    assert status_after_regeneration(VerdictStatus.REJECTED, escalated=True) == "escalated"
    assert status_after_regeneration(VerdictStatus.APPROVED, escalated=True) == "approved"
    assert status_after_regeneration(VerdictStatus.REJECTED, escalated=False) == "rejected"


def test_sweep_targets_rejected_scenes_only():
    assert FAILING_STATES == {"rejected"}
