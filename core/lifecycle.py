"""Product status state machine."""

from __future__ import annotations

from typing import Dict, FrozenSet

from utils.exceptions import InvalidTransitionError

from .contracts import ProductStatus


S = ProductStatus

TRANSITIONS: Dict[ProductStatus, FrozenSet[ProductStatus]] = {
    S.RESEARCHED: frozenset({S.ANALYZED}),
    S.ANALYZED: frozenset({S.GENERATING}),
    S.GENERATING: frozenset({S.QUALITY_GATE_PENDING}),
    S.QUALITY_GATE_PENDING: frozenset({S.QUALITY_GATE_PASS, S.QUALITY_GATE_FAIL}),
    S.QUALITY_GATE_PASS: frozenset({S.READY_FOR_REVIEW}),
    # Recoverable: regenerate or re-run the gate.
    S.QUALITY_GATE_FAIL: frozenset({S.GENERATING, S.QUALITY_GATE_PENDING}),
    S.READY_FOR_REVIEW: frozenset({S.APPROVED, S.PUBLISHING, S.QUALITY_GATE_PENDING, S.QUALITY_GATE_FAIL}),
    S.APPROVED: frozenset({S.PUBLISHING}),
    S.PUBLISHING: frozenset({S.PUBLISHED, S.PUBLISH_FAILED}),
    S.PUBLISHED: frozenset(),
    # Recoverable: retry publish, regenerate or re-run the gate.
    S.PUBLISH_FAILED: frozenset({S.PUBLISHING, S.GENERATING, S.QUALITY_GATE_PENDING}),
}

INITIAL_STATUSES: FrozenSet[ProductStatus] = frozenset(
    {
        S.RESEARCHED,
        S.ANALYZED,
        S.GENERATING,
        S.QUALITY_GATE_PENDING,
        S.QUALITY_GATE_PASS,
        S.QUALITY_GATE_FAIL,
        S.READY_FOR_REVIEW,
    }
)

PUBLISHABLE_STATUSES: FrozenSet[ProductStatus] = frozenset({S.READY_FOR_REVIEW, S.APPROVED, S.PUBLISH_FAILED})


def can_transition(current: ProductStatus, target: ProductStatus) -> bool:
    if current == target:
        return True
    return target in TRANSITIONS.get(current, frozenset())


def check_transition(current: ProductStatus, target: ProductStatus) -> None:
    """Raise InvalidTransitionError unless ``current -> target`` is allowed."""
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Cannot move product from {current.value} to {target.value}",
            {"from": current.value, "to": target.value},
        )


def check_initial(status: ProductStatus) -> None:
    if status not in INITIAL_STATUSES:
        raise InvalidTransitionError(f"{status.value} is not a valid initial status", {"status": status.value})
