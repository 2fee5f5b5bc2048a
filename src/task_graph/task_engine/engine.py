"""Task graph engine: CRUD, dependency management and persistence.

This is the primary entry-point for all task manipulation. It owns the
in-memory task collection, runs graph and lifecycle checks before every
mutation, publishes events on its :class:`EventBus` and, when auto-save is on,
writes the collection back through :class:`TaskFileStore`.

Every failure is published as an ``error`` event before it is raised.
"""

from __future__ import annotations

import dataclasses
import threading
from pathlib import Path
from typing import Any, Iterable, Optional, Union

from loguru import logger

from ..config import (
    find_project_root,
    get_auto_save,
    get_keep_backups,
    get_project_name,
    get_tasks_file,
    load_config,
)
from ..constants import DATA_VERSION
from ..errors import (
    CIRCULAR_DEPENDENCY,
    INVALID_ARGUMENT,
    INVALID_DEPENDENCY,
    OPERATION_NOT_PERMITTED,
    NotFoundError,
    ParseError,
    TaskGraphError,
    ValidationError,
)
from ..utils import _now_iso, _numeric_id
from .events import Event, EventBus, EventType
from .graph import (
    DependencyReport,
    RepairReport,
    check_referential_integrity,
    detect_cycles,
    find_dependents,
    index_nodes,
    repair,
    validate,
    would_create_cycle,
)
from .lifecycle import check_transition
from .migration import migrate_tasks_data, needs_migration
from .model import (
    PATCHABLE_FIELDS,
    Subtask,
    Task,
    TaskPriority,
    TaskStatus,
    attr_name,
    coerce_status,
    split_subtask_id,
)
from .query import QueryResult, TaskFilter, filter_tasks, next_task, query_tasks
from .store import LockProvider, TaskFileStore, resolve_tasks_path
from .transaction import TransactionChange, TransactionManager

Node = Union[Task, Subtask]


class TaskGraphEngine:
    """Manage an in-memory task graph backed by a JSON file.

    Parameters
    ----------
    project_root:
        Directory the tasks file and ``.taskgraph/config.yaml`` are resolved
        against. Defaults to the nearest directory containing a project marker.
    tasks_file:
        Tasks file, relative to *project_root* or absolute. Defaults to the
        configured value.
    config:
        Pre-loaded config dict; loaded from *project_root* when omitted.
    auto_save:
        Write the file after every successful mutation. ``None`` uses the
        configured value (on by default).
    lock_provider:
        Per-path lock arena shared by engines writing the same files. Engines
        built without one share the process-wide default, so a private
        provider only serializes writes among engines that are handed it.
    event_bus:
        Bus to publish on; a private one is created when omitted.
    """

    def __init__(
        self,
        project_root: Optional[Union[str, Path]] = None,
        tasks_file: Optional[Union[str, Path]] = None,
        config: Optional[dict[str, Any]] = None,
        auto_save: Optional[bool] = None,
        lock_provider: Optional[LockProvider] = None,
        event_bus: Optional[EventBus] = None,
    ) -> None:
        self.project_root = Path(project_root) if project_root is not None else find_project_root()
        if config is None:
            config, err = load_config(self.project_root)
            if err:
                logger.warning("Ignoring invalid config: {}", err)
        self.config = config
        self.tasks_file = str(tasks_file) if tasks_file is not None else get_tasks_file(config)
        self.auto_save = get_auto_save(config) if auto_save is None else auto_save
        self.events = event_bus or EventBus()
        self.store = TaskFileStore(lock_provider, keep_backups=get_keep_backups(config))
        self.tasks_path: Optional[Path] = None

        self._lock = threading.RLock()
        self._tasks: list[Task] = []
        self._metadata: dict[str, Any] = self._fresh_metadata()
        self._tx = TransactionManager()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _fresh_metadata(self) -> dict[str, Any]:
        now = _now_iso()
        return {
            "version": DATA_VERSION,
            "created": now,
            "updated": now,
            "projectName": get_project_name(self.config),
        }

    def _fail(self, exc: TaskGraphError) -> TaskGraphError:
        """Publish *exc* as an ``error`` event and hand it back for raising."""
        logger.debug("{} ({}): {}", exc.__class__.__name__, exc.code, exc.message)
        self.events.emit(Event(EventType.ERROR, error=exc, details=exc.to_dict()))
        return exc

    def _publish(self, events: Iterable[Event]) -> None:
        for event in events:
            self.events.emit(event)

    def _persist(self) -> None:
        # Must be called without holding self._lock: the store evaluates the
        # snapshot under the path lock, which takes self._lock.
        if not self.auto_save or self._tx.in_progress:
            return
        self.save_to_file()

    def _find_task(self, task_id: Any) -> Optional[Task]:
        task_id = str(task_id)
        for task in self._tasks:
            if task.id == task_id:
                return task
        return None

    def _require_task(self, task_id: Any) -> Task:
        task = self._find_task(task_id)
        if task is None:
            raise self._fail(NotFoundError(f"Task {task_id} not found", details={"taskId": str(task_id)}))
        return task

    def _find_node(self, node_id: Any) -> Optional[tuple[Task, Optional[Subtask]]]:
        """Return ``(task, subtask)`` for a subtask ID or ``(task, None)`` for a task ID."""
        parts = split_subtask_id(str(node_id))
        if parts is None:
            task = self._find_task(node_id)
            return (task, None) if task is not None else None
        parent = self._find_task(parts[0])
        sub = parent.find_subtask(str(node_id)) if parent is not None else None
        return (parent, sub) if sub is not None else None

    def _require_node(self, node_id: Any) -> tuple[Task, Optional[Subtask]]:
        found = self._find_node(node_id)
        if found is None:
            raise self._fail(NotFoundError(f"Task {node_id} not found", details={"taskId": str(node_id)}))
        return found

    def _next_id(self) -> str:
        nums = [n for n in (_numeric_id(t.id) for t in self._tasks) if n is not None]
        return str(max(nums, default=0) + 1)

    def _replace(self, task: Task) -> list[Task]:
        """The collection with *task* swapped in for the task with the same ID."""
        return [task if t.id == task.id else t for t in self._tasks]

    def _check_graph(self, candidate: list[Task], touched: set[str]) -> None:
        """Reject *candidate* if a touched node has dangling deps or sits on a cycle."""
        for miss in check_referential_integrity(candidate):
            if miss.task_id in touched:
                raise self._fail(ValidationError(
                    f"Task {miss.task_id} depends on unknown task(s): {', '.join(miss.missing_dependency_ids)}",
                    code=INVALID_DEPENDENCY,
                    details=miss.to_dict(),
                ))
        for edge in detect_cycles(candidate):
            if touched.intersection(edge.path):
                raise self._fail(ValidationError(
                    f"Dependency {edge} would create a circular dependency ({edge.description})",
                    code=CIRCULAR_DEPENDENCY,
                    details=edge.to_dict(),
                ))

    def _touched_ids(self, task: Task) -> set[str]:
        return {task.id} | {s.id for s in task.subtasks}

    def _strip_references(self, targets: set[str]) -> list[Task]:
        """Remove every dependency pointing into *targets*; return the touched tasks."""
        touched: list[Task] = []
        for task in self._tasks:
            changed = False
            for node in [task, *task.subtasks]:
                if node.id in targets:
                    continue
                kept = [d for d in node.dependencies if d not in targets]
                if kept != node.dependencies:
                    node.dependencies = kept
                    changed = True
            if changed:
                task.touch()
                touched.append(task)
        return touched

    def _resolve_path(self) -> Path:
        if self.tasks_path is None:
            try:
                self.tasks_path = resolve_tasks_path(self.project_root, self.tasks_file)
            except TaskGraphError as exc:
                raise self._fail(exc)
        return self.tasks_path

    # ------------------------------------------------------------------
    # Loading and saving
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """Resolve the tasks file and load it, or start empty if it does not exist."""
        path = self._resolve_path()
        if self.store.exists(path):
            self.load_from_file(path)
            return
        with self._lock:
            self._tasks = []
            self._metadata = self._fresh_metadata()
        logger.info("No tasks file at {}, starting with an empty collection", path)

    def load_from_file(self, path: Optional[Union[str, Path]] = None) -> list[Task]:
        """Replace the collection with the contents of *path* (default: the tasks file).

        Old file shapes are migrated. Dangling dependencies and cycles are
        logged rather than rejected; see :meth:`fix_dependencies`.
        """
        path = Path(path) if path is not None else self._resolve_path()
        try:
            data = self.store.read(path)
        except TaskGraphError as exc:
            raise self._fail(exc)
        if data is None:
            raise self._fail(NotFoundError(f"Tasks file not found: {path}", details={"path": str(path)}))
        if needs_migration(data):
            logger.info("Migrating tasks data in {}", path)
            data = migrate_tasks_data(data, project_name=get_project_name(self.config))
        try:
            tasks = [Task.from_dict(raw) for raw in data["tasks"]]
        except ValidationError as exc:
            raise self._fail(ParseError(
                f"Invalid task in {path.name}: {exc.message}", details={"path": str(path)}
            )) from exc

        report = validate(tasks)
        for miss in report.missing:
            logger.warning("Task {} depends on unknown task(s): {}", miss.task_id, ", ".join(miss.missing_dependency_ids))
        for edge in report.cycles:
            logger.warning("Circular dependency in {}: {}", path.name, edge.description)

        with self._lock:
            self._tasks = tasks
            self._metadata = dict(data["metadata"])
            snapshot = [t.copy() for t in tasks]
        logger.info("Loaded {} task(s) from {}", len(tasks), path)
        self.events.emit(Event(EventType.TASKS_LOADED, path=str(path), details={"count": len(tasks)}))
        return snapshot

    def to_dict(self) -> dict[str, Any]:
        """The collection in its on-disk shape."""
        with self._lock:
            return {
                "tasks": [t.to_dict() for t in self._tasks],
                "metadata": dict(self._metadata),
            }

    def _save_snapshot(self) -> dict[str, Any]:
        with self._lock:
            self._metadata["updated"] = _now_iso()
            return self.to_dict()

    def save_to_file(self, path: Optional[Union[str, Path]] = None) -> Path:
        """Back up and rewrite *path* (default: the tasks file) with the current collection."""
        target = Path(path) if path is not None else self._resolve_path()
        try:
            self.store.save(target, self._save_snapshot)
        except TaskGraphError as exc:
            raise self._fail(exc)
        self.events.emit(Event(EventType.TASKS_SAVED, path=str(target)))
        return target

    def list_backups(self) -> list[Path]:
        return self.store.list_backups(self._resolve_path())

    def restore_backup(self, backup_path: Union[str, Path]) -> list[Task]:
        """Restore the tasks file from *backup_path* and reload it."""
        target = self._resolve_path()
        try:
            self.store.restore_backup(backup_path, target)
        except TaskGraphError as exc:
            raise self._fail(exc)
        return self.load_from_file(target)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create_task(self, data: dict[str, Any]) -> Task:
        """Create a task from *data* under the next numeric ID.

        Subtasks in *data* may name each other by bare number, since the
        parent ID is not known until now; those references are stored in
        full. Every other bare dependency ID names a top-level task.
        """
        if not isinstance(data, dict):
            raise self._fail(ValidationError("Task data must be an object"))
        with self._lock:
            fields = {k: v for k, v in data.items() if attr_name(k) not in ("id", "created_at", "updated_at")}
            fields["id"] = self._next_id()
            errors = Task.validate_dict(fields)
            if errors:
                raise self._fail(ValidationError("; ".join(errors), details={"errors": errors}))
            try:
                task = Task.from_dict(fields)
                task.qualify_sibling_refs()
            except ValidationError as exc:
                raise self._fail(exc)
            candidate = self._tasks + [task]
            if task.dependencies or task.subtasks:
                self._check_graph(candidate, self._touched_ids(task))
            self._tasks = candidate
            self._tx.record("create", task)
            snapshot = task.copy()
        logger.info("Created task {}: {}", snapshot.id, snapshot.title)
        self.events.emit(Event(EventType.TASK_CREATED, task=snapshot))
        self._persist()
        return snapshot

    def update_task(self, task_id: Any, patch: dict[str, Any]) -> Task:
        """Shallow-merge *patch* into a task.

        A ``status`` in the patch goes through the lifecycle check. Changes to
        dependencies or subtasks are re-validated against the whole graph and
        the update is rejected as a unit on failure.
        """
        if not isinstance(patch, dict):
            raise self._fail(ValidationError("Update patch must be an object"))
        events: list[Event] = []
        with self._lock:
            current = self._require_task(task_id)
            fields = {attr_name(k): v for k, v in patch.items()}
            if "id" in fields and str(fields.pop("id")) != current.id:
                raise self._fail(ValidationError("Task ID cannot be changed", code=OPERATION_NOT_PERMITTED))
            unknown = sorted(set(fields) - PATCHABLE_FIELDS)
            if unknown:
                raise self._fail(ValidationError(
                    f"Unknown task field(s): {', '.join(unknown)}", code=INVALID_ARGUMENT
                ))
            change = None
            try:
                if "status" in fields:
                    change = check_transition(current.status, fields["status"])
                candidate = dataclasses.replace(current.copy(), **fields)
            except ValidationError as exc:
                raise self._fail(exc)
            if candidate.content_dict() == current.content_dict():
                return current.copy()

            if candidate.dependencies != current.dependencies or candidate.subtasks != current.subtasks:
                self._check_graph(self._replace(candidate), self._touched_ids(candidate) | self._touched_ids(current))
            candidate.touch()
            self._tasks = self._replace(candidate)
            self._tx.record("update", candidate, fields=sorted(fields))
            snapshot = candidate.copy()
            events.append(Event(EventType.TASK_UPDATED, task=snapshot))
            if change is not None:
                events.append(Event(
                    EventType.TASK_STATUS_CHANGED, task=snapshot, task_id=snapshot.id,
                    previous_status=change.previous, new_status=change.current,
                ))
        self._publish(events)
        self._persist()
        return snapshot

    def update_task_status(self, task_id: Any, status: Any) -> Task:
        """Move a task to *status*; moving to the current status is a silent no-op."""
        with self._lock:
            task = self._require_task(task_id)
            try:
                change = check_transition(task.status, status)
            except ValidationError as exc:
                raise self._fail(exc)
            if change is None:
                return task.copy()
            task.status = change.current
            task.touch()
            self._tx.record("status", task, previous=change.previous.value, current=change.current.value)
            snapshot = task.copy()
        logger.info("Task {}: {} -> {}", snapshot.id, change.previous.value, change.current.value)
        self._publish([
            Event(EventType.TASK_UPDATED, task=snapshot),
            Event(EventType.TASK_STATUS_CHANGED, task=snapshot, task_id=snapshot.id,
                  previous_status=change.previous, new_status=change.current),
        ])
        self._persist()
        return snapshot

    def delete_task(self, task_id: Any, force: bool = False) -> Task:
        """Delete a task and its subtasks.

        Refuses while other tasks depend on it unless *force* is set, in which
        case those dependencies are removed as well.
        """
        events: list[Event] = []
        with self._lock:
            task = self._require_task(task_id)
            targets = self._touched_ids(task)
            dependents = find_dependents(self._tasks, targets)
            if dependents and not force:
                raise self._fail(ValidationError(
                    f"Cannot delete task {task.id}: required by {', '.join(dependents)}",
                    code=OPERATION_NOT_PERMITTED,
                    details={"taskId": task.id, "dependents": dependents},
                ))
            self._tasks = [t for t in self._tasks if t.id != task.id]
            for touched in self._strip_references(targets):
                self._tx.record("update", touched)
                events.append(Event(EventType.TASK_UPDATED, task=touched.copy()))
            self._tx.record("delete", task)
        logger.info("Deleted task {}", task.id)
        self._publish([Event(EventType.TASK_DELETED, task=task), *events])
        self._persist()
        return task

    # ------------------------------------------------------------------
    # Subtasks
    # ------------------------------------------------------------------

    def add_subtask(self, parent_id: Any, data: dict[str, Any]) -> Subtask:
        if not isinstance(data, dict):
            raise self._fail(ValidationError("Subtask data must be an object"))
        with self._lock:
            parent = self._require_task(parent_id)
            try:
                sub = Subtask.from_dict({**data, "id": parent.next_subtask_id()}, parent_id=parent.id)
            except ValidationError as exc:
                raise self._fail(exc)
            candidate = parent.copy()
            candidate.subtasks.append(sub)
            if sub.dependencies:
                self._check_graph(self._replace(candidate), {sub.id})
            candidate.touch()
            self._tasks = self._replace(candidate)
            self._tx.record("update", candidate, subtask=sub.id)
            snapshot = candidate.copy()
        self.events.emit(Event(EventType.TASK_UPDATED, task=snapshot, task_id=sub.id))
        self._persist()
        return snapshot.find_subtask(sub.id)

    def update_subtask_status(self, subtask_id: Any, status: Any) -> Subtask:
        with self._lock:
            parent, sub = self._require_node(subtask_id)
            if sub is None:
                raise self._fail(NotFoundError(f"Subtask {subtask_id} not found"))
            try:
                change = check_transition(sub.status, status)
            except ValidationError as exc:
                raise self._fail(exc)
            if change is None:
                return dataclasses.replace(sub)
            sub.status = change.current
            parent.touch()
            self._tx.record("status", parent, subtask=sub.id,
                            previous=change.previous.value, current=change.current.value)
            snapshot = parent.copy()
        self._publish([
            Event(EventType.TASK_UPDATED, task=snapshot, task_id=sub.id),
            Event(EventType.TASK_STATUS_CHANGED, task=snapshot, task_id=sub.id,
                  previous_status=change.previous, new_status=change.current),
        ])
        self._persist()
        return snapshot.find_subtask(sub.id)

    def remove_subtask(self, subtask_id: Any, force: bool = False) -> Subtask:
        events: list[Event] = []
        with self._lock:
            parent, sub = self._require_node(subtask_id)
            if sub is None:
                raise self._fail(NotFoundError(f"Subtask {subtask_id} not found"))
            dependents = find_dependents(self._tasks, sub.id)
            if dependents and not force:
                raise self._fail(ValidationError(
                    f"Cannot remove subtask {sub.id}: required by {', '.join(dependents)}",
                    code=OPERATION_NOT_PERMITTED,
                    details={"taskId": sub.id, "dependents": dependents},
                ))
            touched = {t.id: t for t in self._strip_references({sub.id})}
            parent.subtasks = [s for s in parent.subtasks if s.id != sub.id]
            parent.touch()
            touched[parent.id] = parent
            for task in touched.values():
                self._tx.record("update", task, subtask=sub.id)
                events.append(Event(EventType.TASK_UPDATED, task=task.copy(), task_id=sub.id))
        self._publish(events)
        self._persist()
        return sub

    # ------------------------------------------------------------------
    # Dependencies
    # ------------------------------------------------------------------

    def add_dependency(self, task_id: Any, depends_on_id: Any) -> Node:
        """Make *task_id* depend on *depends_on_id*; adding an existing edge is a no-op."""
        with self._lock:
            parent, sub = self._require_node(task_id)
            node: Node = sub if sub is not None else parent
            dep = str(depends_on_id)
            if dep not in index_nodes(self._tasks):
                raise self._fail(NotFoundError(
                    f"Dependency target {dep} not found",
                    details={"taskId": node.id, "dependsOnId": dep},
                ))
            if dep == node.id:
                raise self._fail(ValidationError(
                    f"Task {node.id} cannot depend on itself", code=INVALID_DEPENDENCY
                ))
            if dep in node.dependencies:
                return dataclasses.replace(node) if sub is not None else node.copy()
            if would_create_cycle(self._tasks, node.id, dep):
                raise self._fail(ValidationError(
                    f"Adding dependency {dep} to task {node.id} would create a circular dependency",
                    code=CIRCULAR_DEPENDENCY,
                    details={"taskId": node.id, "dependsOnId": dep},
                ))
            node.dependencies = [*node.dependencies, dep]
            parent.touch()
            self._tx.record("dependency", parent, added=dep, owner=node.id)
            snapshot = parent.copy()
        self.events.emit(Event(EventType.DEPENDENCY_ADDED, task=snapshot, task_id=node.id, depends_on_id=dep))
        self._persist()
        return snapshot.find_subtask(node.id) if sub is not None else snapshot

    def remove_dependency(self, task_id: Any, depends_on_id: Any) -> Node:
        """Drop a dependency; removing one that is not present is a no-op."""
        with self._lock:
            parent, sub = self._require_node(task_id)
            node: Node = sub if sub is not None else parent
            dep = str(depends_on_id)
            kept = [d for d in node.dependencies if d != dep]
            if kept == node.dependencies:
                return dataclasses.replace(node) if sub is not None else node.copy()
            node.dependencies = kept
            parent.touch()
            self._tx.record("dependency", parent, removed=dep, owner=node.id)
            snapshot = parent.copy()
        self.events.emit(Event(EventType.DEPENDENCY_REMOVED, task=snapshot, task_id=node.id, depends_on_id=dep))
        self._persist()
        return snapshot.find_subtask(node.id) if sub is not None else snapshot

    def validate_dependencies(self) -> DependencyReport:
        with self._lock:
            return validate(self._tasks)

    def fix_dependencies(self) -> RepairReport:
        """Remove dangling references and break cycles; see :func:`graph.repair`."""
        with self._lock:
            repaired, report = repair(self._tasks)
            if not report.changed:
                return report
            by_id = {t.id: t for t in repaired}
            for node_id in report.touched_ids:
                owner = by_id[(split_subtask_id(node_id) or (node_id, 0))[0]]
                owner.touch()
            self._tasks = repaired
        for ref in report.removed_dangling_refs:
            logger.info("Removed dangling dependency {} from {}", ref.dependency_id, ref.task_id)
        for edge in report.removed_cycle_edges:
            logger.info("Removed circular dependency {}", edge)
        self.events.emit(Event(EventType.DEPENDENCIES_REPAIRED, details=report.to_dict()))
        self._persist()
        return report

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_all_tasks(self) -> list[Task]:
        with self._lock:
            return [t.copy() for t in self._tasks]

    def get_task(self, task_id: Any) -> Optional[Task]:
        with self._lock:
            task = self._find_task(task_id)
            return task.copy() if task is not None else None

    def get_task_by_id(self, node_id: Any) -> Optional[Node]:
        """Look up a task, or a subtask by its ``<parent>.<n>`` ID."""
        with self._lock:
            found = self._find_node(node_id)
            if found is None:
                return None
            parent, sub = found
            return dataclasses.replace(sub) if sub is not None else parent.copy()

    def get_tasks_by_status(self, status: Optional[Any] = None) -> list[Task]:
        if status is None:
            return self.get_all_tasks()
        try:
            wanted = coerce_status(status)
        except ValidationError as exc:
            raise self._fail(exc)
        return self.filter_tasks(TaskFilter(status=wanted))

    def get_pending_tasks(self) -> list[Task]:
        return self.get_tasks_by_status(TaskStatus.PENDING)

    def get_completed_tasks(self) -> list[Task]:
        return self.get_tasks_by_status(TaskStatus.DONE)

    def get_in_progress_tasks(self) -> list[Task]:
        return self.get_tasks_by_status(TaskStatus.IN_PROGRESS)

    def get_high_priority_tasks(self) -> list[Task]:
        return self.filter_tasks(TaskFilter(priority=TaskPriority.HIGH))

    def get_independent_tasks(self) -> list[Task]:
        return self.filter_tasks(TaskFilter(has_dependencies=False))

    def get_ready_tasks(self) -> list[Task]:
        """Pending tasks whose dependencies all resolve to ``done`` tasks/subtasks."""
        with self._lock:
            index = index_nodes(self._tasks)
            ready: list[Task] = []
            for task in self._tasks:
                if task.status != TaskStatus.PENDING:
                    continue
                deps = [index.get(d) for d in task.dependencies]
                if all(dep is not None and dep.status == TaskStatus.DONE for dep in deps):
                    ready.append(task.copy())
            return ready

    def find_next_task(self, priority: Optional[Any] = None, contains_text: Optional[str] = None) -> Optional[Task]:
        """Highest-priority ready task (lowest numeric ID on ties), optionally filtered."""
        try:
            return next_task(self.get_ready_tasks(), priority=priority, contains_text=contains_text)
        except ValidationError as exc:
            raise self._fail(exc)

    def filter_tasks(self, criteria: Optional[TaskFilter] = None, **kwargs: Any) -> list[Task]:
        try:
            criteria = criteria or TaskFilter(**kwargs)
        except ValidationError as exc:
            raise self._fail(exc)
        with self._lock:
            return [t.copy() for t in filter_tasks(self._tasks, criteria)]

    def query_tasks(
        self,
        criteria: Optional[TaskFilter] = None,
        sort_field: Optional[str] = None,
        direction: str = "asc",
        page: Optional[int] = None,
        page_size: Optional[int] = None,
    ) -> QueryResult:
        try:
            return query_tasks(self.get_all_tasks(), criteria, sort_field, direction, page, page_size)
        except ValidationError as exc:
            raise self._fail(exc)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @property
    def in_transaction(self) -> bool:
        return self._tx.in_progress

    def begin_transaction(self) -> None:
        """Start recording changes; auto-save is held back until commit."""
        with self._lock:
            try:
                self._tx.begin(self._tasks)
            except TaskGraphError as exc:
                raise self._fail(exc)
        self.events.emit(Event(EventType.TRANSACTION_STARTED))

    def commit_transaction(self) -> list[TransactionChange]:
        with self._lock:
            try:
                changes = self._tx.commit()
            except TaskGraphError as exc:
                raise self._fail(exc)
        self.events.emit(Event(
            EventType.TRANSACTION_COMMITTED, details={"changes": [c.to_dict() for c in changes]}
        ))
        if changes:
            self._persist()
        return changes

    def rollback_transaction(self) -> None:
        """Discard every change since :meth:`begin_transaction`."""
        with self._lock:
            try:
                self._tasks = self._tx.rollback()
            except TaskGraphError as exc:
                raise self._fail(exc)
        self.events.emit(Event(EventType.TRANSACTION_ROLLED_BACK))

    def batch_update_tasks(self, updates: Iterable[dict[str, Any]]) -> list[Task]:
        """Apply ``{"id": ..., <patch fields>}`` updates all-or-nothing."""
        with self._lock:
            self.begin_transaction()
            try:
                results = [
                    self.update_task(item.get("id"), {k: v for k, v in item.items() if k != "id"})
                    for item in updates
                ]
            except TaskGraphError:
                self.rollback_transaction()
                raise
        self.commit_transaction()
        return results

    def batch_delete_tasks(self, task_ids: Iterable[Any], force: bool = False) -> list[Task]:
        """Delete several tasks all-or-nothing."""
        with self._lock:
            self.begin_transaction()
            try:
                results = [self.delete_task(task_id, force=force) for task_id in task_ids]
            except TaskGraphError:
                self.rollback_transaction()
                raise
        self.commit_transaction()
        return results
