"""Bring task files written by older versions up to the current shape.

Migration works on plain dicts before any :class:`~.model.Task` is built, so
a file with missing titles, unknown status values or bare subtask IDs still
loads instead of failing validation. The same repairs apply to a current-version
file that carries such problems.

Before version 1.1.0 a bare subtask dependency named a sibling subtask when
one with that number existed. Those references are rewritten to full
``"<parent>.<n>"`` IDs, since a bare ID now always names a top-level task.
"""

from __future__ import annotations

from typing import Any, Iterator, Optional

from loguru import logger

from ..constants import DATA_VERSION, DEFAULT_PROJECT_NAME
from ..utils import _now_iso, _numeric_id
from .model import Task, TaskPriority, TaskStatus, split_subtask_id

UNTITLED_TASK = "Untitled Task"
NO_DESCRIPTION = "No description provided"

_STATUS_VALUES = {s.value for s in TaskStatus}
_PRIORITY_VALUES = {p.value for p in TaskPriority}
_METADATA_KEYS = ("version", "created", "updated", "projectName")


def _non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def needs_migration(data: Any) -> bool:
    """Return True if *data* is not already in the current file shape."""
    if not isinstance(data, dict):
        return True
    if not isinstance(data.get("tasks"), list):
        return True
    meta = data.get("metadata")
    if not isinstance(meta, dict):
        return True
    if any(not _non_empty_str(meta.get(key)) for key in _METADATA_KEYS):
        return True
    if meta.get("version") != DATA_VERSION:
        return True
    ids = [t.get("id") for t in data["tasks"] if isinstance(t, dict)]
    if len(set(map(str, ids))) != len(ids):
        return True
    return any(_task_needs_migration(t) for t in data["tasks"])


def _task_needs_migration(task: Any) -> bool:
    if not isinstance(task, dict):
        return True
    if not isinstance(task.get("id"), str) or not task["id"].strip() or "." in task["id"]:
        return True
    if task.get("status") not in _STATUS_VALUES or task.get("priority") not in _PRIORITY_VALUES:
        return True
    if Task.validate_dict(task):
        return True
    if task.get("metadata") is not None and not isinstance(task["metadata"], dict):
        return True
    if not _clean_dependencies(task.get("dependencies")):
        return True
    subtasks = task.get("subtasks") or []
    sub_ids = [str(s.get("id")) for s in subtasks if isinstance(s, dict)]
    if len(set(sub_ids)) != len(sub_ids):
        return True
    return any(
        not isinstance(sub, dict)
        or (split_subtask_id(str(sub.get("id", ""))) or ("", 0))[0] != task["id"]
        or sub.get("status", TaskStatus.PENDING.value) not in _STATUS_VALUES
        or not _clean_dependencies(sub.get("dependencies"))
        for sub in subtasks
    )


def _clean_dependencies(value: Any) -> bool:
    if value is None:
        return True
    if not isinstance(value, list):
        return False
    return all(_non_empty_str(d) and d == d.strip() for d in value) and len(set(value)) == len(value)


def _id_allocator(used: set[str]) -> Iterator[str]:
    """Yield numeric IDs above every numeric ID in *used*."""
    nums = [n for n in (_numeric_id(u) for u in used) if n is not None]
    nxt = max(nums, default=0) + 1
    while True:
        candidate = str(nxt)
        nxt += 1
        if candidate not in used:
            used.add(candidate)
            yield candidate


def _coerce_enum(value: Any, allowed: set[str], default: str, what: str, owner: str) -> str:
    if value in allowed:
        return value
    if value not in (None, ""):
        logger.warning("Task {}: unknown {} {!r}, using {!r}", owner, what, value, default)
    return default


def _migrate_dependencies(value: Any, owner_ids: set[str]) -> list[str]:
    if not isinstance(value, list):
        return []
    out: list[str] = []
    for raw in value:
        dep = str(raw).strip()
        if not dep or dep in owner_ids or dep in out:
            continue
        out.append(dep)
    return out


def migrate_subtask(raw: Any, parent_id: str, number: int) -> dict[str, Any]:
    """Normalize one subtask; *number* is used when it has no usable ID."""
    sub = raw if isinstance(raw, dict) else {}
    sub_id = str(sub.get("id", "")).strip()
    if sub_id.isdigit():
        sub_id = f"{parent_id}.{sub_id}"
    elif (split_subtask_id(sub_id) or ("", 0))[0] != parent_id:
        sub_id = f"{parent_id}.{number}"
    out: dict[str, Any] = {
        "id": sub_id,
        "title": sub.get("title") if _non_empty_str(sub.get("title")) else UNTITLED_TASK,
        "description": str(sub.get("description") or ""),
        "status": _coerce_enum(sub.get("status"), _STATUS_VALUES, TaskStatus.PENDING.value, "status", sub_id),
        "dependencies": _migrate_dependencies(sub.get("dependencies"), {sub_id}),
    }
    if sub.get("details"):
        out["details"] = str(sub["details"])
    return out


def _qualify_sibling_refs(subtasks: list[dict[str, Any]]) -> None:
    siblings = {s["id"].rsplit(".", 1)[1]: s["id"] for s in subtasks}
    for sub in subtasks:
        deps = dict.fromkeys(siblings.get(d, d) for d in sub["dependencies"])
        sub["dependencies"] = [d for d in deps if d != sub["id"]]


def migrate_task(raw: Any, task_id: str, qualify_siblings: bool = False) -> dict[str, Any]:
    """Normalize one task dict, using *task_id* as its (already unique) ID.

    With *qualify_siblings*, bare subtask dependencies naming a sibling number
    are spelled in full, as files before the current version meant them.
    """
    task = raw if isinstance(raw, dict) else {}
    out: dict[str, Any] = {
        "id": task_id,
        "title": task.get("title") if _non_empty_str(task.get("title")) else UNTITLED_TASK,
        "description": task.get("description") if _non_empty_str(task.get("description")) else NO_DESCRIPTION,
        "status": _coerce_enum(task.get("status"), _STATUS_VALUES, TaskStatus.PENDING.value, "status", task_id),
        "priority": _coerce_enum(task.get("priority"), _PRIORITY_VALUES, TaskPriority.MEDIUM.value, "priority", task_id),
        "dependencies": _migrate_dependencies(task.get("dependencies"), {task_id}),
    }
    for key in ("details", "testStrategy"):
        if task.get(key):
            out[key] = str(task[key])

    subtasks: list[dict[str, Any]] = []
    seen: set[str] = set()
    for raw_sub in task.get("subtasks") or []:
        sub = migrate_subtask(raw_sub, task_id, len(subtasks) + 1)
        if sub["id"] in seen:
            highest = max(int(s.rsplit(".", 1)[1]) for s in seen)
            sub["id"] = f"{task_id}.{highest + 1}"
        seen.add(sub["id"])
        subtasks.append(sub)
    if qualify_siblings:
        _qualify_sibling_refs(subtasks)
    if subtasks:
        out["subtasks"] = subtasks

    if isinstance(task.get("metadata"), dict) and task["metadata"]:
        out["metadata"] = dict(task["metadata"])
    for key in ("createdAt", "updatedAt"):
        if _non_empty_str(task.get(key)):
            out[key] = task[key]
    return out


def migrate_tasks_data(data: Any, project_name: Optional[str] = None) -> dict[str, Any]:
    """Return *data* rewritten into the current file shape.

    Missing or duplicate task IDs get fresh numeric IDs, unknown status and
    priority values fall back to ``pending`` / ``medium`` and the metadata
    block is completed. Unknown metadata keys are kept.
    """
    now = _now_iso()
    project_name = project_name or DEFAULT_PROJECT_NAME
    if not isinstance(data, dict):
        logger.warning("Tasks data is not an object, starting from an empty collection")
        data = {}

    old_meta = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}
    legacy = old_meta.get("version") != DATA_VERSION
    raw_tasks = data.get("tasks") if isinstance(data.get("tasks"), list) else []
    wanted = [str(t.get("id")).strip() if isinstance(t, dict) and t.get("id") not in (None, "") else None
              for t in raw_tasks]
    used = {i for i in wanted if i}
    fresh = _id_allocator(used)

    tasks: list[dict[str, Any]] = []
    assigned: set[str] = set()
    for raw, task_id in zip(raw_tasks, wanted):
        if not task_id or task_id in assigned or "." in task_id:
            new_id = next(fresh)
            if task_id:
                logger.warning("Reassigning task ID {!r} to {}", task_id, new_id)
            task_id = new_id
        assigned.add(task_id)
        tasks.append(migrate_task(raw, task_id, qualify_siblings=legacy))

    metadata = dict(old_meta)
    metadata["version"] = DATA_VERSION
    metadata["created"] = old_meta.get("created") if _non_empty_str(old_meta.get("created")) else now
    metadata["updated"] = old_meta.get("updated") if _non_empty_str(old_meta.get("updated")) else now
    metadata["projectName"] = (
        old_meta.get("projectName") if _non_empty_str(old_meta.get("projectName")) else project_name
    )
    return {"tasks": tasks, "metadata": metadata}
