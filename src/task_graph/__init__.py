"""Provide the public `task_graph` package exports."""

from __future__ import annotations

from .errors import NotFoundError, ParseError, PersistenceError, TaskGraphError, ValidationError
from .task_engine import EventType, Task, TaskGraphEngine, TaskPriority, TaskStatus

__all__ = [
    "EventType",
    "NotFoundError",
    "ParseError",
    "PersistenceError",
    "Task",
    "TaskGraphEngine",
    "TaskGraphError",
    "TaskPriority",
    "TaskStatus",
    "ValidationError",
]
