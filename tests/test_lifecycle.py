from __future__ import annotations

import pytest

from core import PUBLISHABLE_STATUSES, ProductStatus, can_transition, check_initial, check_transition
from utils.exceptions import InvalidTransitionError


S = ProductStatus


@pytest.mark.parametrize(
    "current,target",
    [
        (S.RESEARCHED, S.ANALYZED),
        (S.GENERATING, S.QUALITY_GATE_PENDING),
        (S.QUALITY_GATE_PENDING, S.QUALITY_GATE_FAIL),
        (S.QUALITY_GATE_PASS, S.READY_FOR_REVIEW),
        (S.READY_FOR_REVIEW, S.APPROVED),
        (S.APPROVED, S.PUBLISHING),
        (S.PUBLISHING, S.PUBLISH_FAILED),
        (S.PUBLISH_FAILED, S.PUBLISHING),
        (S.PUBLISH_FAILED, S.GENERATING),
        (S.QUALITY_GATE_FAIL, S.QUALITY_GATE_PENDING),
    ],
)
def test_allowed_transitions(current, target) -> None:
    assert can_transition(current, target)
    check_transition(current, target)


@pytest.mark.parametrize(
    "current,target",
    [
        (S.READY_FOR_REVIEW, S.PUBLISHED),
        (S.QUALITY_GATE_FAIL, S.PUBLISHING),
        (S.PUBLISHED, S.PUBLISHING),
        (S.GENERATING, S.READY_FOR_REVIEW),
        (S.QUALITY_GATE_PENDING, S.READY_FOR_REVIEW),
    ],
)
def test_rejected_transitions(current, target) -> None:
    assert not can_transition(current, target)
    with pytest.raises(InvalidTransitionError):
        check_transition(current, target)


def test_publishable_statuses() -> None:
    assert PUBLISHABLE_STATUSES == {S.READY_FOR_REVIEW, S.APPROVED, S.PUBLISH_FAILED}


def test_initial_statuses_exclude_publish_states() -> None:
    check_initial(S.READY_FOR_REVIEW)
    check_initial(S.QUALITY_GATE_FAIL)
    for status in (S.PUBLISHING, S.PUBLISHED, S.PUBLISH_FAILED):
        with pytest.raises(InvalidTransitionError):
            check_initial(status)
