from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Dict, FrozenSet, Iterable, List, Optional

from backend.app.domain.types import EXCEPTION_STATUSES, ExceptionRecord

OPEN_STATUSES: FrozenSet[str] = frozenset({"new", "investigating"})
TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "new": frozenset({"investigating", "resolved"}),
    "investigating": frozenset({"new", "resolved"}),
    "resolved": frozenset(),
}


class InvalidTransition(ValueError):
    """Raised when an exception status change is not allowed from its current status."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"invalid status transition {current}->{target}")


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def apply_transition(
    exception: ExceptionRecord,
    target: str,
    *,
    now: datetime,
    resolution: Optional[str] = None,
    resolved_by: Optional[str] = None,
) -> ExceptionRecord:
    """
    Move an exception to `target` and return the updated record.

    Entering `resolved` stamps `resolved_at`. `resolution` and `resolved_by`
    are only overwritten when supplied. `updated_at` is always stamped.
    """
    if target not in EXCEPTION_STATUSES or not can_transition(exception.status, target):
        raise InvalidTransition(exception.status, target)

    return replace(
        exception,
        status=target,
        resolution=resolution if resolution is not None else exception.resolution,
        resolved_by=resolved_by if resolved_by is not None else exception.resolved_by,
        resolved_at=now if target == "resolved" else exception.resolved_at,
        updated_at=now,
    )


def filter_exceptions_by_status(exceptions: Iterable[ExceptionRecord], status: str) -> List[ExceptionRecord]:
    return [e for e in exceptions if e.status == status]


def get_open_exceptions(exceptions: Iterable[ExceptionRecord]) -> List[ExceptionRecord]:
    return [e for e in exceptions if e.status in OPEN_STATUSES]
