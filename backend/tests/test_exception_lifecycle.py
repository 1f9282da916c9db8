from datetime import datetime, timedelta, timezone

import pytest

from backend.app.detection import (
    InvalidTransition,
    apply_transition,
    can_transition,
    create_exception,
    filter_exceptions_by_status,
    get_open_exceptions,
)


DETECTED = datetime(2025, 5, 1, tzinfo=timezone.utc)
LATER = DETECTED + timedelta(hours=6)


def _exception(status="new"):
    exc = create_exception(
        type="rewards_anomaly",
        title="Rewards spike detected (300.00% deviation)",
        description="Latest reward of 400 deviates 300.00% from historical average of 100",
        severity="high",
        now=DETECTED,
    )
    if status == "new":
        return exc
    if status == "investigating":
        return apply_transition(exc, "investigating", now=DETECTED)
    return apply_transition(exc, "resolved", now=DETECTED, resolution="noise", resolved_by="ops")


@pytest.mark.parametrize(
    "current, target, allowed",
    [
        ("new", "investigating", True),
        ("new", "resolved", True),
        ("investigating", "new", True),
        ("investigating", "resolved", True),
        ("resolved", "new", False),
        ("resolved", "investigating", False),
        ("new", "new", False),
        ("new", "closed", False),
    ],
)
def test_transition_table(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_new_to_resolved_stamps_resolution():
    resolved = apply_transition(
        _exception(),
        "resolved",
        now=LATER,
        resolution="expected rebalancing",
        resolved_by="ops@fund",
    )

    assert resolved.status == "resolved"
    assert resolved.resolved_at == LATER
    assert resolved.updated_at == LATER
    assert resolved.resolution == "expected rebalancing"
    assert resolved.resolved_by == "ops@fund"
    assert resolved.created_at == DETECTED


def test_resolved_cannot_reopen():
    resolved = _exception("resolved")
    with pytest.raises(InvalidTransition) as excinfo:
        apply_transition(resolved, "new", now=LATER)

    assert str(excinfo.value) == "invalid status transition resolved->new"
    assert excinfo.value.current == "resolved"
    assert excinfo.value.target == "new"


def test_unknown_target_status_is_rejected():
    with pytest.raises(InvalidTransition):
        apply_transition(_exception(), "archived", now=LATER)


def test_investigating_back_to_new_keeps_resolution_fields():
    investigating = apply_transition(_exception(), "investigating", now=DETECTED, resolution="checking")
    reopened = apply_transition(investigating, "new", now=LATER)

    assert reopened.status == "new"
    assert reopened.resolved_at is None
    assert reopened.resolution == "checking"
    assert reopened.updated_at == LATER


def test_apply_transition_does_not_mutate_input():
    original = _exception()
    apply_transition(original, "investigating", now=LATER)
    assert original.status == "new"
    assert original.updated_at == DETECTED


def test_filters():
    exceptions = [_exception("new"), _exception("investigating"), _exception("resolved"), _exception("new")]

    assert len(filter_exceptions_by_status(exceptions, "new")) == 2
    assert len(filter_exceptions_by_status(exceptions, "resolved")) == 1
    assert [e.status for e in get_open_exceptions(exceptions)] == ["new", "investigating", "new"]
