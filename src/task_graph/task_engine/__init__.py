"""Task graph engine.

This package provides the task/subtask model, dependency graph checks, the
status lifecycle, the file-backed store and the engine that ties them
together.
"""

from .engine import TaskGraphEngine
from .events import Event, EventBus, EventType
from .graph import CycleEdge, DependencyReport, MissingDependencies, RepairReport
from .model import Subtask, Task, TaskPriority, TaskStatus
from .query import QueryResult, TaskFilter
from .store import LockProvider, TaskFileStore

__all__ = [
    "CycleEdge",
    "DependencyReport",
    "Event",
    "EventBus",
    "EventType",
    "LockProvider",
    "MissingDependencies",
    "QueryResult",
    "RepairReport",
    "Subtask",
    "Task",
    "TaskFileStore",
    "TaskFilter",
    "TaskGraphEngine",
    "TaskPriority",
    "TaskStatus",
]
