"""Load optional engine configuration from `.taskgraph/config.yaml`."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping, Optional

from .constants import (
    CONFIG_FILE,
    DEFAULT_KEEP_BACKUPS,
    DEFAULT_PROJECT_NAME,
    DEFAULT_TASKS_FILE,
    MAX_ROOT_SEARCH_DEPTH,
    PROJECT_ROOT_MARKERS,
    STATE_DIR_NAME,
    TASKS_FILE_ENV,
)
from .io_utils import _load_data_with_error


def load_config(project_dir: Path) -> tuple[dict[str, Any], str | None]:
    """Load the optional config file.

    Args:
        project_dir: Project root directory.

    Returns:
        A tuple of `(config, error_message)`. If the file is missing, returns `({}, None)`.
    """
    project_dir = project_dir.resolve()
    path = project_dir / STATE_DIR_NAME / CONFIG_FILE
    data, err = _load_data_with_error(path, {})
    if not path.exists():
        return {}, None
    if err:
        return {}, err
    return data, None


def find_project_root(start: Optional[Path] = None) -> Path:
    """Walk up from *start* (default: cwd) looking for a project marker.

    Falls back to *start* itself when no marker is found.
    """
    origin = (start or Path.cwd()).resolve()
    current = origin
    for _ in range(MAX_ROOT_SEARCH_DEPTH):
        if any((current / marker).exists() for marker in PROJECT_ROOT_MARKERS):
            return current
        if current.parent == current:
            break
        current = current.parent
    return origin


def get_project_name(config: dict[str, Any]) -> str:
    raw = config.get("project_name")
    if isinstance(raw, str) and raw.strip():
        return raw.strip()
    return DEFAULT_PROJECT_NAME


def get_tasks_file(config: dict[str, Any], env: Optional[Mapping[str, str]] = None) -> str:
    """Return the tasks file path (relative to the project root, or absolute).

    ``TASK_GRAPH_TASKS_FILE`` in the environment wins over the config file.
    """
    env = os.environ if env is None else env
    override = env.get(TASKS_FILE_ENV)
    if override:
        return override
    raw = config.get("tasks_file")
    if isinstance(raw, str) and raw.strip():
        return raw.strip()
    return DEFAULT_TASKS_FILE


def get_keep_backups(config: dict[str, Any]) -> int:
    """Number of backups to keep per file; 0 disables pruning."""
    raw = config.get("keep_backups")
    if isinstance(raw, bool) or not isinstance(raw, int) or raw < 0:
        return DEFAULT_KEEP_BACKUPS
    return raw


def get_auto_save(config: dict[str, Any]) -> bool:
    raw = config.get("auto_save")
    return raw if isinstance(raw, bool) else True


def get_log_level(config: dict[str, Any]) -> str:
    raw = config.get("log_level")
    if isinstance(raw, str) and raw.upper() in {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}:
        return raw.upper()
    return "INFO"
