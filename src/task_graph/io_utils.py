from __future__ import annotations

import json
import os
import shutil
from pathlib import Path
from typing import Any

import yaml

from .errors import FILE_READ_ERROR, ParseError, PersistenceError


def _ensure_dir(path: Path) -> None:
    """``mkdir -p`` for *path*."""
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise PersistenceError(f"Error creating directory {path}: {exc}", details=str(path)) from exc


def _atomic_write_json(path: Path, data: dict[str, Any]) -> None:
    _ensure_dir(path.parent)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        with open(tmp_path, "w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2, ensure_ascii=False)
            handle.write("\n")
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    except OSError as exc:
        tmp_path.unlink(missing_ok=True)
        raise PersistenceError(f"Error writing {path}: {exc}", details=str(path)) from exc


def _read_json(path: Path) -> Any:
    """Read and parse JSON from *path*.

    Raises :class:`ParseError` for malformed content and
    :class:`PersistenceError` when the file cannot be read.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise PersistenceError(f"Error reading {path}: {exc}", code=FILE_READ_ERROR, details=str(path)) from exc
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise ParseError(
            f"{path.name}: JSONDecodeError: {exc}",
            details={"path": str(path), "line": exc.lineno, "column": exc.colno},
        ) from exc


def _copy_file(src: Path, dst: Path) -> None:
    _ensure_dir(dst.parent)
    shutil.copy2(src, dst)


def _load_data_with_error(
    path: Path,
    default: dict[str, Any],
) -> tuple[dict[str, Any], str | None]:
    """
    Load JSON/YAML and return (data, error_message).

    Reports parse/IO failures instead of raising so callers can fall back to
    defaults.
    """
    if not path.exists():
        return default, None
    try:
        with open(path, "r", encoding="utf-8") as handle:
            if path.suffix in {".yaml", ".yml"}:
                data = yaml.safe_load(handle)
            else:
                data = json.load(handle)
        if data is None:
            return default, None
        if not isinstance(data, dict):
            return default, f"{path.name}: expected object, got {type(data).__name__}"
        return data, None
    except OSError as exc:
        return default, f"{path.name}: {exc.__class__.__name__}: {exc}"
    except json.JSONDecodeError as exc:
        return default, f"{path.name}: JSONDecodeError: {exc}"
    except yaml.YAMLError as exc:
        return default, f"{path.name}: YAMLError: {exc}"
