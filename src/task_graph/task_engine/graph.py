"""Dependency graph checks over an in-memory task collection.

The graph is implicit: each task and subtask lists the IDs it depends on.
Every function here builds an adjacency map on demand and never mutates the
collection it is given; :func:`repair` returns a repaired copy instead.

Nodes are visited in a fixed order (each task followed by its subtasks, in
collection order; dependencies in list order) so that reports and repairs are
deterministic.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Union

from .model import Subtask, Task

Node = Union[Task, Subtask]


# ---------------------------------------------------------------------------
# Report types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MissingDependencies:
    task_id: str
    missing_dependency_ids: tuple[str, ...]

    def to_dict(self) -> dict[str, object]:
        return {"taskId": self.task_id, "missingDependencyIds": list(self.missing_dependency_ids)}


@dataclass(frozen=True)
class CycleEdge:
    """The dependency ``from_id -> to_id`` that closes a cycle.

    ``path`` lists the nodes on the cycle starting at ``to_id`` and ending at
    ``from_id``.
    """

    from_id: str
    to_id: str
    path: tuple[str, ...] = ()

    def __str__(self) -> str:
        return f"{self.from_id} -> {self.to_id}"

    @property
    def description(self) -> str:
        return " -> ".join(self.path + (self.to_id,))

    def to_dict(self) -> dict[str, object]:
        return {"from": self.from_id, "to": self.to_id, "cycle": self.description}


@dataclass(frozen=True)
class DependencyRef:
    task_id: str
    dependency_id: str

    def to_dict(self) -> dict[str, str]:
        return {"taskId": self.task_id, "dependencyId": self.dependency_id}


@dataclass
class RepairReport:
    removed_dangling_refs: list[DependencyRef] = field(default_factory=list)
    removed_cycle_edges: list[CycleEdge] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.removed_dangling_refs or self.removed_cycle_edges)

    @property
    def touched_ids(self) -> list[str]:
        """IDs of every task/subtask that lost a dependency, first-seen order."""
        out: list[str] = []
        for ref in self.removed_dangling_refs:
            if ref.task_id not in out:
                out.append(ref.task_id)
        for edge in self.removed_cycle_edges:
            if edge.from_id not in out:
                out.append(edge.from_id)
        return out

    def to_dict(self) -> dict[str, object]:
        return {
            "removedDanglingRefs": [r.to_dict() for r in self.removed_dangling_refs],
            "removedCycleEdges": [e.to_dict() for e in self.removed_cycle_edges],
        }


@dataclass
class DependencyReport:
    missing: list[MissingDependencies] = field(default_factory=list)
    cycles: list[CycleEdge] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.missing and not self.cycles

    def to_dict(self) -> dict[str, object]:
        return {
            "valid": self.is_valid,
            "missing": [m.to_dict() for m in self.missing],
            "cycles": [c.to_dict() for c in self.cycles],
        }


# ---------------------------------------------------------------------------
# Indexing
# ---------------------------------------------------------------------------

def iter_nodes(tasks: Iterable[Task]) -> Iterator[Node]:
    """Yield every task followed by its subtasks."""
    for task in tasks:
        yield task
        yield from task.subtasks


def index_nodes(tasks: Iterable[Task]) -> dict[str, Node]:
    return {node.id: node for node in iter_nodes(tasks)}


def build_adjacency(tasks: Iterable[Task]) -> dict[str, list[str]]:
    """Return ``{node_id: [dependency ids]}`` over all tasks and subtasks.

    Dependency IDs are absolute: a bare ID is a top-level task and a sibling
    subtask is always spelled ``"<parent>.<n>"``.
    """
    return {node.id: list(node.dependencies) for node in iter_nodes(tasks)}


# ---------------------------------------------------------------------------
# Checks
# ---------------------------------------------------------------------------

def check_referential_integrity(tasks: Iterable[Task]) -> list[MissingDependencies]:
    tasks = list(tasks)
    index = index_nodes(tasks)
    out: list[MissingDependencies] = []
    for node in iter_nodes(tasks):
        missing = tuple(
            dep for dep in node.dependencies if dep not in index
        )
        if missing:
            out.append(MissingDependencies(node.id, missing))
    return out


def _back_edges(adjacency: dict[str, list[str]], root: str) -> Iterator[CycleEdge]:
    """Depth-first walk from *root*, yielding each edge that closes a cycle.

    Iterative so long dependency chains cannot hit the recursion limit.
    Dangling targets are skipped.
    """
    visited = {root}
    on_stack = {root}
    path = [root]
    stack: list[tuple[str, Iterator[str]]] = [(root, iter(adjacency.get(root, ())))]
    while stack:
        node, deps = stack[-1]
        descended = False
        for nxt in deps:
            if nxt not in adjacency:
                continue
            if nxt in on_stack:
                start = path.index(nxt)
                yield CycleEdge(node, nxt, tuple(path[start:]))
                continue
            if nxt in visited:
                continue
            visited.add(nxt)
            on_stack.add(nxt)
            path.append(nxt)
            stack.append((nxt, iter(adjacency.get(nxt, ()))))
            descended = True
            break
        if not descended:
            stack.pop()
            on_stack.discard(node)
            path.pop()


def _cycle_key(path: tuple[str, ...]) -> tuple[str, ...]:
    """Rotate *path* to start at its smallest node so one cycle has one key."""
    start = path.index(min(path))
    return path[start:] + path[:start]


def _cycles(adjacency: dict[str, list[str]]) -> Iterator[CycleEdge]:
    seen: set[tuple[str, ...]] = set()
    # Fresh visited/on-stack sets per root so every cycle is found; the same
    # cycle reached from another root is reported once.
    for root in adjacency:
        for edge in _back_edges(adjacency, root):
            key = _cycle_key(edge.path)
            if key in seen:
                continue
            seen.add(key)
            yield edge


def detect_cycles(tasks: Iterable[Task]) -> list[CycleEdge]:
    return list(_cycles(build_adjacency(tasks)))


def would_create_cycle(tasks: Iterable[Task], from_id: str, to_id: str) -> bool:
    """Return True if adding the edge ``from_id -> to_id`` would close a cycle.

    Only the part of the graph reachable from *to_id* is walked: the new edge
    closes a cycle exactly when *from_id* is already reachable from *to_id*.
    """
    if from_id == to_id:
        return True
    adjacency = build_adjacency(tasks)
    visited: set[str] = set()
    queue: deque[str] = deque([to_id])
    while queue:
        current = queue.popleft()
        if current == from_id:
            return True
        if current in visited:
            continue
        visited.add(current)
        queue.extend(adjacency.get(current, ()))
    return False


def find_dependents(tasks: Iterable[Task], target_id: Union[str, Iterable[str]]) -> list[str]:
    """IDs of every task/subtask that depends on *target_id*.

    *target_id* may also be a collection of IDs; nodes inside that collection
    are not reported as dependents of it.
    """
    targets = {target_id} if isinstance(target_id, str) else set(target_id)
    return [
        node_id for node_id, deps in build_adjacency(tasks).items()
        if node_id not in targets and targets.intersection(deps)
    ]


def validate(tasks: Iterable[Task]) -> DependencyReport:
    tasks = list(tasks)
    return DependencyReport(
        missing=check_referential_integrity(tasks),
        cycles=detect_cycles(tasks),
    )


# ---------------------------------------------------------------------------
# Repair
# ---------------------------------------------------------------------------

def repair(tasks: Iterable[Task]) -> tuple[list[Task], RepairReport]:
    """Return a repaired copy of *tasks* and a report of what was removed.

    Dangling references are stripped first. Then, until the graph is acyclic,
    the first back-edge found is removed: the dependency pointing from the
    node being visited to a node already on the traversal stack.
    """
    snapshot = [t.copy() for t in tasks]
    report = RepairReport()
    index = index_nodes(snapshot)

    for node in iter_nodes(snapshot):
        kept: list[str] = []
        for dep in node.dependencies:
            if dep in index:
                kept.append(dep)
            else:
                report.removed_dangling_refs.append(DependencyRef(node.id, dep))
        node.dependencies = kept

    while True:
        edge = next(_cycles(build_adjacency(snapshot)), None)
        if edge is None:
            break
        owner = index[edge.from_id]
        owner.dependencies = [d for d in owner.dependencies if d != edge.to_id]
        report.removed_cycle_edges.append(edge)

    return snapshot, report
