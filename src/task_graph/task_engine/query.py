"""Filtering, sorting and pagination over a task list."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from ..errors import ValidationError
from ..utils import _id_sort_key
from .model import Task, TaskPriority, TaskStatus, coerce_priority, coerce_status

SORT_FIELDS = ("id", "title", "description", "status", "priority", "dependencies")


@dataclass
class TaskFilter:
    """Criteria for :func:`filter_tasks`; ``None`` means "don't filter"."""

    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    title: Optional[str] = None
    description: Optional[str] = None
    depends_on: Optional[str] = None
    has_dependencies: Optional[bool] = None
    has_subtasks: Optional[bool] = None

    def __post_init__(self) -> None:
        if self.status is not None:
            self.status = coerce_status(self.status)
        if self.priority is not None:
            self.priority = coerce_priority(self.priority)

    def matches(self, task: Task) -> bool:
        if self.status is not None and task.status != self.status:
            return False
        if self.priority is not None and task.priority != self.priority:
            return False
        if self.title and self.title.lower() not in task.title.lower():
            return False
        if self.description and self.description.lower() not in task.description.lower():
            return False
        if self.depends_on is not None and str(self.depends_on) not in task.dependencies:
            return False
        if self.has_dependencies is not None and bool(task.dependencies) != self.has_dependencies:
            return False
        if self.has_subtasks is not None and bool(task.subtasks) != self.has_subtasks:
            return False
        return True


@dataclass
class QueryResult:
    tasks: list[Task] = field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = 0
    total_pages: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "tasks": [t.to_dict() for t in self.tasks],
            "total": self.total,
            "page": self.page,
            "pageSize": self.page_size,
            "totalPages": self.total_pages,
        }


def filter_tasks(tasks: Iterable[Task], criteria: Optional[TaskFilter] = None, **kwargs: Any) -> list[Task]:
    """Return the tasks matching *criteria* (or a filter built from *kwargs*)."""
    if criteria is None:
        criteria = TaskFilter(**kwargs)
    return [t for t in tasks if criteria.matches(t)]


def _sort_key(task: Task, sort_field: str) -> Any:
    if sort_field == "id":
        return _id_sort_key(task.id)
    if sort_field in ("title", "description"):
        return getattr(task, sort_field).lower()
    if sort_field == "status":
        return task.status.value
    if sort_field == "priority":
        return task.priority.sort_key
    return len(task.dependencies)


def sort_tasks(tasks: Iterable[Task], sort_field: str = "id", direction: str = "asc") -> list[Task]:
    if sort_field not in SORT_FIELDS:
        raise ValidationError(f"Cannot sort by '{sort_field}'; expected one of {list(SORT_FIELDS)}")
    if direction not in ("asc", "desc"):
        raise ValidationError(f"Sort direction must be 'asc' or 'desc', got '{direction}'")
    return sorted(tasks, key=lambda t: _sort_key(t, sort_field), reverse=direction == "desc")


def query_tasks(
    tasks: Iterable[Task],
    criteria: Optional[TaskFilter] = None,
    sort_field: Optional[str] = None,
    direction: str = "asc",
    page: Optional[int] = None,
    page_size: Optional[int] = None,
) -> QueryResult:
    """Filter, optionally sort, and optionally paginate *tasks*.

    Without ``page``/``page_size`` every match is returned as a single page.
    """
    matched = filter_tasks(tasks, criteria or TaskFilter())
    if sort_field:
        matched = sort_tasks(matched, sort_field, direction)
    total = len(matched)

    paginate = page is not None or page_size is not None
    page = page or 1
    page_size = page_size or total
    if page < 1 or page_size < 0:
        raise ValidationError("'page' must be >= 1 and 'page_size' must be >= 0")
    total_pages = math.ceil(total / page_size) if page_size else 0
    if paginate:
        start = (page - 1) * page_size
        matched = matched[start:start + page_size]
    return QueryResult(tasks=matched, total=total, page=page, page_size=page_size, total_pages=total_pages)


def next_task(
    ready: Iterable[Task],
    priority: Optional[Any] = None,
    contains_text: Optional[str] = None,
) -> Optional[Task]:
    """Pick the next task to work on from an already-computed ready set.

    Highest priority wins; ties go to the lowest numeric ID.
    """
    wanted = coerce_priority(priority) if priority is not None else None
    needle = contains_text.lower() if contains_text else None
    candidates = [
        t for t in ready
        if (wanted is None or t.priority == wanted)
        and (needle is None or needle in t.title.lower() or needle in t.description.lower())
    ]
    if not candidates:
        return None
    return min(candidates, key=lambda t: (t.priority.sort_key, _id_sort_key(t.id)))
