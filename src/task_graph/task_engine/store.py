"""File-backed persistence for the task graph with per-path write locking.

Tasks live in a single JSON file. Every write goes through
:meth:`TaskFileStore.save`, which holds the lock for that path while it
creates the parent directory, backs up the current file, and atomically
replaces it. Locks are in-process only: one process is assumed to own a
tasks file at a time.

Backups sit next to the file they copy and are named
``<file name>.<UTC timestamp with ':' and '.' replaced by '-'>.bak``.
"""

from __future__ import annotations

import re
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Optional, Union

from loguru import logger

from ..constants import BACKUP_SUFFIX, DEFAULT_KEEP_BACKUPS
from ..errors import (
    BACKUP_ERROR,
    PATH_RESOLUTION_ERROR,
    RESTORE_ERROR,
    NotFoundError,
    ParseError,
    PersistenceError,
)
from ..io_utils import _atomic_write_json, _copy_file, _ensure_dir, _read_json

PathLike = Union[str, Path]

_BACKUP_STAMP_RE = r"\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}-\d{6}Z"


# ---------------------------------------------------------------------------
# Locking
# ---------------------------------------------------------------------------

class FifoLock:
    """Mutex that is granted to waiters in arrival order."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._next_ticket = 0
        self._serving = 0

    def acquire(self) -> None:
        with self._cond:
            ticket = self._next_ticket
            self._next_ticket += 1
            while ticket != self._serving:
                self._cond.wait()

    def release(self) -> None:
        with self._cond:
            self._serving += 1
            self._cond.notify_all()

    def locked(self) -> bool:
        with self._cond:
            return self._next_ticket != self._serving

    def __enter__(self) -> "FifoLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class LockProvider:
    """Arena of per-path locks keyed by resolved absolute path.

    A lock is created on first use and lives as long as the provider.
    """

    def __init__(self) -> None:
        self._locks: dict[str, FifoLock] = {}
        self._guard = threading.Lock()

    @staticmethod
    def key_for(path: PathLike) -> str:
        return str(Path(path).expanduser().resolve())

    def lock_for(self, path: PathLike) -> FifoLock:
        key = self.key_for(path)
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = FifoLock()
                self._locks[key] = lock
            return lock

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


# Used by every store that is not handed a provider, so engines in one process
# serialize writes to the same file.
DEFAULT_LOCK_PROVIDER = LockProvider()


# ---------------------------------------------------------------------------
# Path resolution
# ---------------------------------------------------------------------------

def resolve_tasks_path(project_root: PathLike, tasks_file: PathLike) -> Path:
    """Resolve *tasks_file* against *project_root* unless it is absolute."""
    root = Path(project_root).expanduser()
    if not root.is_dir():
        raise PersistenceError(
            f"Project root {root} is not a directory",
            code=PATH_RESOLUTION_ERROR,
            details=str(root),
        )
    candidate = Path(tasks_file).expanduser()
    if not candidate.is_absolute():
        candidate = root / candidate
    return candidate.resolve()


# ---------------------------------------------------------------------------
# Backups
# ---------------------------------------------------------------------------

def _backup_stamp(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%dT%H:%M:%S.%fZ").replace(":", "-").replace(".", "-")


def backup_path_for(path: Path, moment: Optional[datetime] = None) -> Path:
    moment = moment or datetime.now(timezone.utc)
    return path.with_name(f"{path.name}.{_backup_stamp(moment)}{BACKUP_SUFFIX}")


def _backup_pattern(path: Path) -> re.Pattern[str]:
    return re.compile(rf"^{re.escape(path.name)}\.{_BACKUP_STAMP_RE}{re.escape(BACKUP_SUFFIX)}$")


def _original_for_backup(backup: Path) -> Path:
    m = re.match(rf"^(?P<name>.+)\.{_BACKUP_STAMP_RE}{re.escape(BACKUP_SUFFIX)}$", backup.name)
    if not m:
        raise PersistenceError(
            f"Cannot infer original path from backup filename: {backup.name}",
            code=RESTORE_ERROR,
        )
    return backup.with_name(m.group("name"))


# ---------------------------------------------------------------------------
# TaskFileStore
# ---------------------------------------------------------------------------

class TaskFileStore:
    """Read, write and back up task files.

    Parameters
    ----------
    lock_provider:
        Shared per-path lock arena. Stores that write the same files must
        share one provider; defaults to :data:`DEFAULT_LOCK_PROVIDER`.
    keep_backups:
        Backups to retain per file after each write; 0 keeps them all.
    """

    def __init__(self, lock_provider: Optional[LockProvider] = None,
                 keep_backups: int = DEFAULT_KEEP_BACKUPS) -> None:
        self.locks = lock_provider if lock_provider is not None else DEFAULT_LOCK_PROVIDER
        self.keep_backups = keep_backups

    # -- reads --------------------------------------------------------------

    def exists(self, path: PathLike) -> bool:
        return Path(path).is_file()

    def read(self, path: PathLike) -> Optional[dict[str, Any]]:
        """Return the parsed file, or None if it does not exist."""
        path = Path(path)
        if not path.exists():
            return None
        data = _read_json(path)
        if not isinstance(data, dict):
            raise ParseError(
                f"{path.name}: expected object, got {type(data).__name__}",
                details={"path": str(path)},
            )
        return data

    # -- writes -------------------------------------------------------------

    def save(self, path: PathLike, snapshot: Callable[[], dict[str, Any]]) -> Optional[Path]:
        """Back up and atomically rewrite *path* with ``snapshot()``.

        *snapshot* is evaluated while the path lock is held so that
        overlapping saves each write the latest committed state. Returns the
        backup path, or None when no backup was taken.
        """
        path = Path(path)
        with self.locks.lock_for(path):
            _ensure_dir(path.parent)
            backup: Optional[Path] = None
            if path.exists():
                try:
                    backup = self._backup_locked(path)
                except PersistenceError as exc:
                    logger.warning("Continuing without backup of {}: {}", path, exc)
            _atomic_write_json(path, snapshot())
            if backup is not None and self.keep_backups > 0:
                try:
                    self._cleanup_locked(path, self.keep_backups)
                except OSError as exc:
                    logger.warning("Failed to prune backups of {}: {}", path, exc)
            logger.debug("Saved {}", path)
            return backup

    def create_backup(self, path: PathLike) -> Path:
        path = Path(path)
        with self.locks.lock_for(path):
            return self._backup_locked(path)

    def list_backups(self, path: PathLike) -> list[Path]:
        """Backups of *path*, newest first."""
        path = Path(path)
        if not path.parent.is_dir():
            return []
        pattern = _backup_pattern(path)
        found = [p for p in path.parent.iterdir() if pattern.match(p.name)]
        return sorted(found, key=lambda p: p.name, reverse=True)

    def cleanup_backups(self, path: PathLike, keep: int = DEFAULT_KEEP_BACKUPS) -> int:
        path = Path(path)
        with self.locks.lock_for(path):
            try:
                return self._cleanup_locked(path, keep)
            except OSError as exc:
                raise PersistenceError(
                    f"Error cleaning up backups for {path}: {exc}", code=BACKUP_ERROR
                ) from exc

    def restore_backup(self, backup_path: PathLike, target: Optional[PathLike] = None) -> Path:
        """Copy *backup_path* over *target*, backing up the current target first.

        When *target* is omitted it is inferred from the backup file name.
        """
        backup = Path(backup_path)
        if not backup.is_file():
            raise NotFoundError(f"Backup file not found: {backup}")
        dest = Path(target) if target is not None else _original_for_backup(backup)
        with self.locks.lock_for(dest):
            if dest.exists():
                self._backup_locked(dest)
            try:
                _copy_file(backup, dest)
            except OSError as exc:
                raise PersistenceError(
                    f"Error restoring from backup {backup}: {exc}", code=RESTORE_ERROR
                ) from exc
        logger.info("Restored {} from {}", dest, backup.name)
        return dest

    # -- internal helpers (path lock held) ---------------------------------

    def _backup_locked(self, path: Path) -> Path:
        if not path.exists():
            raise NotFoundError(f"Cannot backup non-existent file: {path}")
        moment = datetime.now(timezone.utc)
        target = backup_path_for(path, moment)
        while target.exists():
            moment += timedelta(microseconds=1)
            target = backup_path_for(path, moment)
        try:
            _copy_file(path, target)
        except OSError as exc:
            raise PersistenceError(
                f"Error creating backup of {path}: {exc}", code=BACKUP_ERROR
            ) from exc
        logger.debug("Backed up {} to {}", path.name, target.name)
        return target

    def _cleanup_locked(self, path: Path, keep: int) -> int:
        stale = self.list_backups(path)[keep:]
        for old in stale:
            old.unlink(missing_ok=True)
        return len(stale)
