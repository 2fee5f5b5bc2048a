"""Task and subtask records for the task graph engine.

Tasks are plain dataclasses that validate their own shape on construction:
empty titles, unknown status/priority values and self-referential
dependencies are rejected with :class:`~task_graph.errors.ValidationError`.
The on-disk representation uses camelCase keys (``testStrategy``,
``createdAt``); :meth:`Task.to_dict` / :meth:`Task.from_dict` convert between
the two.
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from ..errors import INVALID_DEPENDENCY, ValidationError
from ..utils import _now_iso


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TaskStatus(str, Enum):
    """Lifecycle status shared by tasks and subtasks."""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    DONE = "done"
    DEFERRED = "deferred"
    CANCELLED = "cancelled"


class TaskPriority(str, Enum):
    """Priority level, ``high`` is most urgent."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def sort_key(self) -> int:
        return {"high": 0, "medium": 1, "low": 2}[self.value]


_SUBTASK_ID_RE = re.compile(r"^(?P<parent>[^.]+)\.(?P<num>\d+)$")


# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------

def coerce_status(value: Any) -> TaskStatus:
    if isinstance(value, TaskStatus):
        return value
    try:
        return TaskStatus(str(value))
    except ValueError:
        raise ValidationError(f"Invalid status value: {value}") from None


def coerce_priority(value: Any) -> TaskPriority:
    if isinstance(value, TaskPriority):
        return value
    try:
        return TaskPriority(str(value))
    except ValueError:
        raise ValidationError(f"Invalid priority value: {value}") from None


def _require_text(value: Any, what: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"'{what}' is required and must be a non-empty string")
    return value


def _normalize_dependencies(value: Any, owner_id: str) -> list[str]:
    """Return *value* as an ordered, de-duplicated list of ID strings."""
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f"'dependencies' of {owner_id} must be an array")
    out: list[str] = []
    for raw in value:
        dep = str(raw).strip()
        if not dep:
            raise ValidationError(f"'dependencies' of {owner_id} contains an empty ID")
        if dep not in out:
            out.append(dep)
    return out


def split_subtask_id(subtask_id: str) -> Optional[tuple[str, int]]:
    """Split ``"<parent>.<n>"`` into ``(parent, n)``, or None if not a subtask ID."""
    m = _SUBTASK_ID_RE.match(str(subtask_id))
    if not m:
        return None
    return m.group("parent"), int(m.group("num"))


# ---------------------------------------------------------------------------
# Subtask
# ---------------------------------------------------------------------------

@dataclass
class Subtask:
    """A unit of work scoped under a parent task.

    ``id`` has the form ``"<parentId>.<n>"``. A bare dependency ID names a
    top-level task; sibling subtasks are always spelled in full.
    """

    id: str
    title: str
    description: str = ""
    status: TaskStatus = TaskStatus.PENDING
    dependencies: list[str] = field(default_factory=list)
    details: Optional[str] = None

    def __post_init__(self) -> None:
        self.id = str(self.id).strip()
        if split_subtask_id(self.id) is None:
            raise ValidationError(f"Subtask ID must have the form '<parentId>.<n>', got '{self.id}'")
        self.title = _require_text(self.title, "title")
        self.description = "" if self.description is None else str(self.description)
        self.status = coerce_status(self.status)
        self.dependencies = _normalize_dependencies(self.dependencies, self.id)
        if self.id in self.dependencies:
            raise ValidationError(f"Subtask {self.id} cannot depend on itself", code=INVALID_DEPENDENCY)

    @property
    def parent_id(self) -> str:
        return self.id.rsplit(".", 1)[0]

    @property
    def number(self) -> int:
        return int(self.id.rsplit(".", 1)[1])

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "dependencies": list(self.dependencies),
        }
        if self.details is not None:
            data["details"] = self.details
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any], parent_id: Optional[str] = None) -> "Subtask":
        """Build a subtask, qualifying a bare numeric ID with *parent_id*."""
        if not isinstance(data, dict):
            raise ValidationError("Subtask must be an object")
        raw_id = str(data.get("id", "")).strip()
        if parent_id is not None and raw_id.isdigit():
            raw_id = f"{parent_id}.{raw_id}"
        return cls(
            id=raw_id,
            title=data.get("title", ""),
            description=data.get("description", "") or "",
            status=data.get("status", TaskStatus.PENDING.value),
            dependencies=data.get("dependencies") or [],
            details=data.get("details"),
        )


# ---------------------------------------------------------------------------
# Task
# ---------------------------------------------------------------------------

# Python attribute name -> on-disk key, for fields whose names differ.
_WIRE_KEYS = {
    "test_strategy": "testStrategy",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
}
_ATTR_NAMES = {wire: attr for attr, wire in _WIRE_KEYS.items()}

# Fields a caller may change through an update patch.
PATCHABLE_FIELDS = frozenset({
    "title",
    "description",
    "status",
    "priority",
    "dependencies",
    "subtasks",
    "details",
    "test_strategy",
    "metadata",
})


def attr_name(key: str) -> str:
    """Map an on-disk / camelCase key to its attribute name."""
    return _ATTR_NAMES.get(key, key)


@dataclass
class Task:
    """A top-level unit of work in the task graph."""

    id: str
    title: str
    description: str
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    dependencies: list[str] = field(default_factory=list)
    subtasks: list[Subtask] = field(default_factory=list)
    details: Optional[str] = None
    test_strategy: Optional[str] = None

    # Opaque to the engine (complexity scores and the like)
    metadata: dict[str, Any] = field(default_factory=dict)

    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)

    def __post_init__(self) -> None:
        self.id = str(self.id).strip()
        if not self.id:
            raise ValidationError("'id' is required and must be non-empty")
        if "." in self.id:
            raise ValidationError(f"Task ID must not contain '.', got '{self.id}'")
        self.title = _require_text(self.title, "title")
        self.description = _require_text(self.description, "description")
        self.status = coerce_status(self.status)
        self.priority = coerce_priority(self.priority)
        self.dependencies = _normalize_dependencies(self.dependencies, self.id)
        if self.id in self.dependencies:
            raise ValidationError(f"Task {self.id} cannot depend on itself", code=INVALID_DEPENDENCY)
        if self.metadata is None:
            self.metadata = {}
        if not isinstance(self.metadata, dict):
            raise ValidationError("'metadata' must be an object")
        self.subtasks = self._coerce_subtasks(self.subtasks)

    def _coerce_subtasks(self, value: Any) -> list[Subtask]:
        if value is None:
            return []
        if not isinstance(value, (list, tuple)):
            raise ValidationError(f"'subtasks' of {self.id} must be an array")
        out: list[Subtask] = []
        seen: set[str] = set()
        for item in value:
            sub = item if isinstance(item, Subtask) else Subtask.from_dict(item, parent_id=self.id)
            if sub.parent_id != self.id:
                raise ValidationError(f"Subtask {sub.id} does not belong to task {self.id}")
            if sub.id in seen:
                raise ValidationError(f"Duplicate subtask ID {sub.id} in task {self.id}")
            seen.add(sub.id)
            out.append(sub)
        return out

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @classmethod
    def validate_dict(cls, data: dict[str, Any]) -> list[str]:
        """Lightweight validation of a task dict.

        Returns a list of error strings (empty = valid) without raising.
        """
        errors: list[str] = []
        if not isinstance(data, dict):
            return ["Expected a dict"]
        for key in ("title", "description"):
            val = data.get(key)
            if not isinstance(val, str) or not val.strip():
                errors.append(f"'{key}' is required and must be non-empty")
        status = data.get("status")
        if status is not None and status not in {e.value for e in TaskStatus}:
            errors.append(f"'status' must be one of {[e.value for e in TaskStatus]}, got '{status}'")
        priority = data.get("priority")
        if priority is not None and priority not in {e.value for e in TaskPriority}:
            errors.append(f"'priority' must be one of {[e.value for e in TaskPriority]}, got '{priority}'")
        for list_field in ("dependencies", "subtasks"):
            val = data.get(list_field)
            if val is not None and not isinstance(val, (list, tuple)):
                errors.append(f"'{list_field}' must be an array")
        task_id = data.get("id")
        deps = data.get("dependencies")
        if task_id is not None and isinstance(deps, (list, tuple)) and str(task_id) in [str(d) for d in deps]:
            errors.append(f"Task {task_id} cannot depend on itself")
        subtasks = data.get("subtasks")
        for sub in subtasks if isinstance(subtasks, (list, tuple)) else []:
            if isinstance(sub, Subtask):
                continue
            if not isinstance(sub, dict):
                errors.append("Each subtask must be an object")
                continue
            title = sub.get("title")
            if not isinstance(title, str) or not title.strip():
                errors.append(f"Subtask {sub.get('id')}: 'title' is required and must be non-empty")
            sub_deps = sub.get("dependencies")
            if sub_deps is not None and not isinstance(sub_deps, (list, tuple)):
                errors.append(f"Subtask {sub.get('id')}: 'dependencies' must be an array")
            elif sub_deps and str(sub.get("id")) in [str(d) for d in sub_deps]:
                errors.append(f"Subtask {sub.get('id')} cannot depend on itself")
        return errors

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dict with stable key order."""
        data: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "priority": self.priority.value,
            "dependencies": list(self.dependencies),
        }
        if self.details is not None:
            data["details"] = self.details
        if self.test_strategy is not None:
            data["testStrategy"] = self.test_strategy
        if self.subtasks:
            data["subtasks"] = [s.to_dict() for s in self.subtasks]
        if self.metadata:
            data["metadata"] = copy.deepcopy(self.metadata)
        data["createdAt"] = self.created_at
        data["updatedAt"] = self.updated_at
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        if not isinstance(data, dict):
            raise ValidationError("Task must be an object")
        d = {attr_name(k): v for k, v in data.items()}
        now = _now_iso()
        return cls(
            id=str(d.get("id", "")),
            title=d.get("title", ""),
            description=d.get("description", ""),
            status=d.get("status") or TaskStatus.PENDING,
            priority=d.get("priority") or TaskPriority.MEDIUM,
            dependencies=d.get("dependencies") or [],
            subtasks=d.get("subtasks") or [],
            details=d.get("details"),
            test_strategy=d.get("test_strategy"),
            metadata=dict(d.get("metadata") or {}),
            created_at=str(d.get("created_at") or now),
            updated_at=str(d.get("updated_at") or now),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def touch(self) -> None:
        """Bump ``updated_at`` to now."""
        self.updated_at = _now_iso()

    def copy(self) -> "Task":
        return copy.deepcopy(self)

    def content_dict(self) -> dict[str, Any]:
        """``to_dict()`` without timestamps, for change detection."""
        data = self.to_dict()
        data.pop("createdAt", None)
        data.pop("updatedAt", None)
        return data

    def find_subtask(self, subtask_id: str) -> Optional[Subtask]:
        for sub in self.subtasks:
            if sub.id == subtask_id:
                return sub
        return None

    def next_subtask_id(self) -> str:
        highest = max((s.number for s in self.subtasks), default=0)
        return f"{self.id}.{highest + 1}"

    def qualify_sibling_refs(self) -> None:
        """Spell bare subtask dependencies that name a sibling number in full.

        Used when a task and its subtasks are created together, before the
        caller knows the parent ID. Once stored, a bare ID always means a
        top-level task.
        """
        siblings = {str(s.number): s.id for s in self.subtasks}
        for sub in self.subtasks:
            deps = list(dict.fromkeys(siblings.get(d, d) for d in sub.dependencies))
            if sub.id in deps:
                raise ValidationError(f"Subtask {sub.id} cannot depend on itself", code=INVALID_DEPENDENCY)
            sub.dependencies = deps
