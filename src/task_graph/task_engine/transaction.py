"""In-memory transactions over the task collection.

A transaction records the changes made while it is open. The engine keeps
the snapshot taken at :meth:`TransactionManager.begin` so a rollback can
restore it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from ..errors import NO_TRANSACTION, TRANSACTION_IN_PROGRESS, TaskGraphError
from .model import Task


@dataclass(frozen=True)
class TransactionChange:
    type: str
    task: Task
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "taskId": self.task.id, "details": dict(self.details)}


class TransactionManager:
    def __init__(self) -> None:
        self._snapshot: Optional[list[Task]] = None
        self._changes: list[TransactionChange] = []

    @property
    def in_progress(self) -> bool:
        return self._snapshot is not None

    def begin(self, snapshot: list[Task]) -> None:
        if self.in_progress:
            raise TaskGraphError("Transaction already in progress", code=TRANSACTION_IN_PROGRESS)
        self._snapshot = [t.copy() for t in snapshot]
        self._changes = []

    def commit(self) -> list[TransactionChange]:
        self._require_open()
        changes = list(self._changes)
        self._reset()
        return changes

    def rollback(self) -> list[Task]:
        """Close the transaction and return the snapshot taken at begin."""
        self._require_open()
        snapshot = self._snapshot or []
        self._reset()
        return snapshot

    def record(self, change_type: str, task: Task, **details: Any) -> None:
        if self.in_progress:
            self._changes.append(TransactionChange(change_type, task.copy(), details))

    @property
    def changes(self) -> list[TransactionChange]:
        return list(self._changes)

    def _require_open(self) -> None:
        if not self.in_progress:
            raise TaskGraphError("No transaction in progress", code=NO_TRANSACTION)

    def _reset(self) -> None:
        self._snapshot = None
        self._changes = []
