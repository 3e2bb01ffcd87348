"""Scene lifecycle state machine.

Verdict statuses (pending, approved, needs_review, rejected) double as scene
statuses. Two operational states sit on top of them: ``regenerating``
while a regeneration loop owns the scene and ``escalated`` once the loop
gave up and handed the scene to human review.
"""

from typing import Dict, FrozenSet

from vidgate.schemas.quality import VerdictStatus

SCENE_STATES = {
    "pending": "Scene has never been evaluated",
    "approved": "Current artifact passed the quality gate",
    "needs_review": "Current artifact waits for a reviewer's approval",
    "rejected": "Current artifact failed and must be regenerated",
    "regenerating": "A regeneration loop is running for this scene",
    "escalated": "Automatic regeneration gave up; waiting in the review queue",
}

_VERDICT_STATES = frozenset(s.value for s in VerdictStatus)

# Allowed transitions; evaluation may move any non-regenerating scene to a verdict state
SCENE_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "pending": _VERDICT_STATES | {"regenerating"},
    "approved": _VERDICT_STATES | {"regenerating"},
    "needs_review": _VERDICT_STATES | {"regenerating"},
    "rejected": _VERDICT_STATES | {"regenerating"},
    "regenerating": _VERDICT_STATES | {"escalated"},
    "escalated": _VERDICT_STATES | {"regenerating"},
}

# States a regeneration may be started from
REGENERABLE_STATES = {"pending", "rejected", "needs_review", "approved", "escalated"}

# States the auto-regenerate sweep picks up
FAILING_STATES = {"rejected"}


class InvalidStateTransition(Exception):
    """Raised when a scene status change is not allowed."""


def can_transition(current: str, target: str) -> bool:
    """Check whether a scene may move from ``current`` to ``target``.

    Examples:
        >>> can_transition("rejected", "regenerating")
        True
        >>> can_transition("regenerating", "regenerating")
        False
    """
    return target in SCENE_TRANSITIONS.get(current, frozenset())


def ensure_transition(current: str, target: str) -> str:
    """Return ``target`` if allowed, else raise InvalidStateTransition."""
    if not can_transition(current, target):
        raise InvalidStateTransition(f"Scene cannot move from {current} to {target}")
    return target


def can_regenerate(status: str) -> bool:
    """Check if a regeneration loop may start for a scene in ``status``."""
    return status in REGENERABLE_STATES


def status_after_regeneration(verdict_status: VerdictStatus, escalated: bool) -> str:
    """Scene status once a regeneration loop ends.

    Args:
        verdict_status: Status of the scene's current verdict after the loop.
        escalated: Whether the loop ended in escalation.

    Returns:
        "escalated" for escalations that left the scene failing, otherwise the
        verdict status.

    Examples:
        >>> status_after_regeneration(VerdictStatus.REJECTED, escalated=True)
        'escalated'
        >>> status_after_regeneration(VerdictStatus.APPROVED, escalated=False)
        'approved'
    """
    if escalated and verdict_status != VerdictStatus.APPROVED:
        return "escalated"
    return verdict_status.value
