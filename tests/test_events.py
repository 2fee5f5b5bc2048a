"""Tests for the engine event bus (task_engine/events.py)."""

from __future__ import annotations

from task_graph.task_engine.events import Event, EventBus, EventType
from task_graph.task_engine.model import Task


def _task() -> Task:
    return Task(id="1", title="t", description="d")


class TestEventBus:
    def test_subscriber_receives_matching_events(self) -> None:
        bus = EventBus()
        seen: list[Event] = []
        bus.subscribe(EventType.TASK_CREATED, seen.append)

        bus.emit(Event(EventType.TASK_CREATED, task=_task()))
        bus.emit(Event(EventType.TASK_DELETED, task=_task()))

        assert [e.type for e in seen] == [EventType.TASK_CREATED]
        assert seen[0].task.id == "1"

    def test_subscribe_by_string(self) -> None:
        bus = EventBus()
        seen: list[Event] = []
        bus.subscribe("dependency_added", seen.append)
        bus.emit(Event(EventType.DEPENDENCY_ADDED, task_id="2", depends_on_id="1"))
        assert seen[0].depends_on_id == "1"

    def test_unsubscribe(self) -> None:
        bus = EventBus()
        seen: list[Event] = []
        unsubscribe = bus.subscribe(EventType.ERROR, seen.append)
        unsubscribe()
        unsubscribe()
        bus.emit(Event(EventType.ERROR, error=RuntimeError("boom")))
        assert seen == []
        assert bus.handler_count(EventType.ERROR) == 0

    def test_subscribe_all(self) -> None:
        bus = EventBus()
        seen: list[EventType] = []
        unsubscribe = bus.subscribe_all(lambda e: seen.append(e.type))
        bus.emit(Event(EventType.TASKS_SAVED, path="/tmp/tasks.json"))
        bus.emit(Event(EventType.TRANSACTION_STARTED))
        unsubscribe()
        bus.emit(Event(EventType.TRANSACTION_STARTED))
        assert seen == [EventType.TASKS_SAVED, EventType.TRANSACTION_STARTED]

    def test_failing_handler_is_isolated(self) -> None:
        bus = EventBus()
        seen: list[Event] = []

        def broken(event: Event) -> None:
            raise RuntimeError("handler bug")

        bus.subscribe(EventType.TASK_UPDATED, broken)
        bus.subscribe(EventType.TASK_UPDATED, seen.append)

        bus.emit(Event(EventType.TASK_UPDATED, task=_task()))
        assert len(seen) == 1

    def test_handler_count(self) -> None:
        bus = EventBus()
        bus.subscribe(EventType.TASK_CREATED, lambda e: None)
        bus.subscribe(EventType.TASK_DELETED, lambda e: None)
        bus.subscribe_all(lambda e: None)
        assert bus.handler_count() == 3
        assert bus.handler_count(EventType.TASK_CREATED) == 1

    def test_event_has_timestamp(self) -> None:
        assert Event(EventType.TASKS_LOADED).ts
