"""Command-line interface for inspecting and editing a task graph."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Optional

from loguru import logger
from rich.console import Console
from rich.table import Table

from .config import find_project_root, get_log_level, load_config
from .errors import TaskGraphError
from .logging_utils import attach_event_logger, configure_logging
from .task_engine import Task, TaskGraphEngine, TaskStatus

_STATUS_STYLES = {
    TaskStatus.PENDING: "yellow",
    TaskStatus.IN_PROGRESS: "cyan",
    TaskStatus.DONE: "green",
    TaskStatus.DEFERRED: "magenta",
    TaskStatus.CANCELLED: "dim",
}


def _resolve_project_dir(project_dir: Optional[str]) -> Path:
    return Path(project_dir).expanduser().resolve() if project_dir else find_project_root()


def _task_table(tasks: list[Task], title: str = "Tasks") -> Table:
    table = Table(title=title)
    table.add_column("ID", justify="right")
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Priority")
    table.add_column("Depends on")
    for task in tasks:
        style = _STATUS_STYLES.get(task.status, "")
        table.add_row(
            task.id,
            task.title,
            f"[{style}]{task.status.value}[/{style}]" if style else task.status.value,
            task.priority.value,
            ", ".join(task.dependencies) or "-",
        )
    return table


def _list(engine: TaskGraphEngine, args: argparse.Namespace, console: Console) -> int:
    if args.ready:
        tasks = engine.get_ready_tasks()
    else:
        tasks = engine.filter_tasks(status=args.status, priority=args.priority)
    if not tasks:
        console.print("No tasks found.")
        return 0
    console.print(_task_table(tasks))
    return 0


def _show(engine: TaskGraphEngine, args: argparse.Namespace, console: Console) -> int:
    node = engine.get_task_by_id(args.task_id)
    if node is None:
        sys.stderr.write(f"Task {args.task_id} not found\n")
        return 1
    console.print_json(json.dumps(node.to_dict()))
    return 0


def _next(engine: TaskGraphEngine, args: argparse.Namespace, console: Console) -> int:
    task = engine.find_next_task(priority=args.priority, contains_text=args.contains)
    if task is None:
        console.print("No ready tasks.")
        return 0
    console.print(_task_table([task], title="Next task"))
    return 0


def _add(engine: TaskGraphEngine, args: argparse.Namespace, console: Console) -> int:
    task = engine.create_task({
        "title": args.title,
        "description": args.description or args.title,
        "priority": args.priority,
        "dependencies": args.depends_on or [],
    })
    console.print(f"Created task [bold]{task.id}[/bold]: {task.title}")
    return 0


def _set_status(engine: TaskGraphEngine, args: argparse.Namespace, console: Console) -> int:
    if "." in args.task_id:
        sub = engine.update_subtask_status(args.task_id, args.status)
        console.print(f"Subtask {sub.id} is now {sub.status.value}")
    else:
        task = engine.update_task_status(args.task_id, args.status)
        console.print(f"Task {task.id} is now {task.status.value}")
    return 0


def _add_dep(engine: TaskGraphEngine, args: argparse.Namespace, console: Console) -> int:
    engine.add_dependency(args.task_id, args.depends_on)
    console.print(f"Task {args.task_id} now depends on {args.depends_on}")
    return 0


def _remove_dep(engine: TaskGraphEngine, args: argparse.Namespace, console: Console) -> int:
    engine.remove_dependency(args.task_id, args.depends_on)
    console.print(f"Task {args.task_id} no longer depends on {args.depends_on}")
    return 0


def _validate_deps(engine: TaskGraphEngine, args: argparse.Namespace, console: Console) -> int:
    report = engine.validate_dependencies()
    if report.is_valid:
        console.print("[green]All dependencies are valid.[/green]")
        return 0
    for miss in report.missing:
        console.print(f"[red]Task {miss.task_id} depends on unknown task(s): {', '.join(miss.missing_dependency_ids)}[/red]")
    for edge in report.cycles:
        console.print(f"[red]Circular dependency: {edge.description}[/red]")
    return 1


def _fix_deps(engine: TaskGraphEngine, args: argparse.Namespace, console: Console) -> int:
    report = engine.fix_dependencies()
    if not report.changed:
        console.print("No dependency problems found.")
        return 0
    for ref in report.removed_dangling_refs:
        console.print(f"Removed dangling dependency {ref.dependency_id} from task {ref.task_id}")
    for edge in report.removed_cycle_edges:
        console.print(f"Removed circular dependency {edge}")
    return 0


def _backups(engine: TaskGraphEngine, args: argparse.Namespace, console: Console) -> int:
    if args.restore:
        engine.restore_backup(args.restore)
        console.print(f"Restored {engine.tasks_path} from {args.restore}")
        return 0
    backups = engine.list_backups()
    if not backups:
        console.print("No backups found.")
        return 0
    for path in backups:
        console.print(str(path), soft_wrap=True)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="task-graph", description="Inspect and edit a task graph")
    parser.add_argument("--project-dir", default=None, help="Project directory (default: nearest project root)")
    parser.add_argument("--tasks-file", default=None, help="Tasks file, relative to the project directory or absolute")
    parser.add_argument("--log-level", default=None, help="Log level (default: from config, else INFO)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    plist = subparsers.add_parser("list", help="List tasks")
    plist.add_argument("--status", default=None)
    plist.add_argument("--priority", default=None)
    plist.add_argument("--ready", action="store_true", help="Only tasks ready to work on")
    plist.set_defaults(func=_list)

    pshow = subparsers.add_parser("show", help="Show a task or subtask as JSON")
    pshow.add_argument("task_id")
    pshow.set_defaults(func=_show)

    pnext = subparsers.add_parser("next", help="Show the next task to work on")
    pnext.add_argument("--priority", default=None, choices=["high", "medium", "low"])
    pnext.add_argument("--contains", default=None, help="Case-insensitive text in title or description")
    pnext.set_defaults(func=_next)

    padd = subparsers.add_parser("add", help="Create a task")
    padd.add_argument("title")
    padd.add_argument("--description", default=None)
    padd.add_argument("--priority", default="medium", choices=["high", "medium", "low"])
    padd.add_argument("--depends-on", action="append", default=None)
    padd.set_defaults(func=_add)

    pstatus = subparsers.add_parser("set-status", help="Change the status of a task or subtask")
    pstatus.add_argument("task_id")
    pstatus.add_argument("status", choices=[s.value for s in TaskStatus])
    pstatus.set_defaults(func=_set_status)

    padd_dep = subparsers.add_parser("add-dep", help="Add a dependency")
    padd_dep.add_argument("task_id")
    padd_dep.add_argument("depends_on")
    padd_dep.set_defaults(func=_add_dep)

    prm_dep = subparsers.add_parser("remove-dep", help="Remove a dependency")
    prm_dep.add_argument("task_id")
    prm_dep.add_argument("depends_on")
    prm_dep.set_defaults(func=_remove_dep)

    pvalidate = subparsers.add_parser("validate-deps", help="Report dangling and circular dependencies")
    pvalidate.set_defaults(func=_validate_deps)

    pfix = subparsers.add_parser("fix-deps", help="Remove dangling and circular dependencies")
    pfix.set_defaults(func=_fix_deps)

    pbackups = subparsers.add_parser("backups", help="List or restore backups of the tasks file")
    pbackups.add_argument("--restore", default=None, help="Backup file to restore")
    pbackups.set_defaults(func=_backups)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    project_dir = _resolve_project_dir(args.project_dir)
    config, err = load_config(project_dir)
    configure_logging(args.log_level or get_log_level(config))
    if err:
        logger.warning("Ignoring invalid config: {}", err)

    console = Console()
    try:
        engine = TaskGraphEngine(project_root=project_dir, tasks_file=args.tasks_file, config=config)
        attach_event_logger(engine.events)
        engine.initialize()
        return args.func(engine, args, console)
    except TaskGraphError as exc:
        sys.stderr.write(f"Error: {exc.message}\n")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
