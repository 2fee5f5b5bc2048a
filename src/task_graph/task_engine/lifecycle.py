"""Status lifecycle for tasks and subtasks.

The transition table below is the single source of truth for which status
moves are legal. Moving to the current status is always a no-op.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from ..errors import INVALID_STATUS_TRANSITION, ValidationError
from .model import TaskStatus, coerce_status


# ---------------------------------------------------------------------------
# Valid status transitions
# ---------------------------------------------------------------------------

_VALID_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.DEFERRED, TaskStatus.CANCELLED}),
    # Work must be started before it can be completed.
    TaskStatus.IN_PROGRESS: frozenset({
        TaskStatus.DONE,
        TaskStatus.DEFERRED,
        TaskStatus.CANCELLED,
        TaskStatus.PENDING,
    }),
    TaskStatus.DEFERRED: frozenset({TaskStatus.PENDING, TaskStatus.CANCELLED}),
    TaskStatus.CANCELLED: frozenset({TaskStatus.PENDING}),  # reopen
    TaskStatus.DONE: frozenset(),  # terminal
}


@dataclass(frozen=True)
class StatusChange:
    previous: TaskStatus
    current: TaskStatus


def allowed_targets(status: Any) -> frozenset[TaskStatus]:
    return _VALID_TRANSITIONS[coerce_status(status)]


def is_terminal(status: Any) -> bool:
    return not allowed_targets(status)


def check_transition(current: Any, target: Any) -> Optional[StatusChange]:
    """Validate moving from *current* to *target*.

    Returns None for a same-status no-op and a :class:`StatusChange`
    otherwise. Raises :class:`ValidationError` for an unknown status or an
    illegal pair.
    """
    src = coerce_status(current)
    dst = coerce_status(target)
    if src == dst:
        return None
    if dst not in _VALID_TRANSITIONS[src]:
        raise ValidationError(
            f"Invalid status transition: Cannot go from {src.value} to {dst.value}",
            code=INVALID_STATUS_TRANSITION,
            details={"from": src.value, "to": dst.value,
                     "allowed": sorted(s.value for s in _VALID_TRANSITIONS[src])},
        )
    return StatusChange(previous=src, current=dst)
