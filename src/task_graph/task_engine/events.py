"""Typed publish/subscribe bus for task graph events.

Subscribers register per :class:`EventType` (or for everything) and receive
an :class:`Event`. A failing handler is logged and skipped; it never breaks
the engine operation that emitted the event.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from loguru import logger

from ..utils import _now_iso
from .model import Task, TaskStatus


class EventType(str, Enum):
    TASK_CREATED = "task_created"
    TASK_UPDATED = "task_updated"
    TASK_DELETED = "task_deleted"
    TASK_STATUS_CHANGED = "task_status_changed"
    DEPENDENCY_ADDED = "dependency_added"
    DEPENDENCY_REMOVED = "dependency_removed"
    DEPENDENCIES_REPAIRED = "dependencies_repaired"
    TASKS_LOADED = "tasks_loaded"
    TASKS_SAVED = "tasks_saved"
    TRANSACTION_STARTED = "transaction_started"
    TRANSACTION_COMMITTED = "transaction_committed"
    TRANSACTION_ROLLED_BACK = "transaction_rolled_back"
    ERROR = "error"


@dataclass(frozen=True)
class Event:
    """A single engine event.

    Which optional fields are set depends on ``type``:

    - task events carry ``task``
    - ``task_status_changed`` adds ``previous_status`` / ``new_status``
    - dependency events carry ``task_id`` / ``depends_on_id``
    - ``tasks_loaded`` / ``tasks_saved`` carry ``path``
    - ``error`` carries ``error``
    """

    type: EventType
    task: Optional[Task] = None
    previous_status: Optional[TaskStatus] = None
    new_status: Optional[TaskStatus] = None
    task_id: Optional[str] = None
    depends_on_id: Optional[str] = None
    path: Optional[str] = None
    error: Optional[BaseException] = None
    details: dict[str, Any] = field(default_factory=dict)
    ts: str = field(default_factory=_now_iso)


Handler = Callable[[Event], None]


class EventBus:
    def __init__(self) -> None:
        self._subscribers: dict[EventType, list[Handler]] = defaultdict(list)
        self._wildcard: list[Handler] = []
        self._lock = threading.Lock()

    def subscribe(self, event_type: EventType | str, handler: Handler) -> Callable[[], None]:
        """Register *handler* for *event_type*; returns an unsubscribe callable."""
        kind = EventType(event_type)
        with self._lock:
            self._subscribers[kind].append(handler)

        def _unsubscribe() -> None:
            with self._lock:
                if handler in self._subscribers[kind]:
                    self._subscribers[kind].remove(handler)

        return _unsubscribe

    def subscribe_all(self, handler: Handler) -> Callable[[], None]:
        with self._lock:
            self._wildcard.append(handler)

        def _unsubscribe() -> None:
            with self._lock:
                if handler in self._wildcard:
                    self._wildcard.remove(handler)

        return _unsubscribe

    def emit(self, event: Event) -> None:
        with self._lock:
            handlers = list(self._subscribers.get(event.type, ())) + list(self._wildcard)
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler {} failed for {}", getattr(handler, "__name__", handler), event.type.value)

    def handler_count(self, event_type: Optional[EventType] = None) -> int:
        with self._lock:
            if event_type is None:
                return sum(len(v) for v in self._subscribers.values()) + len(self._wildcard)
            return len(self._subscribers.get(EventType(event_type), ()))
