"""Tests for the file store, backups and per-path locks (task_engine/store.py)."""

from __future__ import annotations

import json
import re
import threading
import time
from pathlib import Path

import pytest

from task_graph.errors import (
    PATH_RESOLUTION_ERROR,
    NotFoundError,
    ParseError,
    PersistenceError,
)
from task_graph.task_engine.store import (
    FifoLock,
    LockProvider,
    TaskFileStore,
    resolve_tasks_path,
)

BACKUP_NAME_RE = re.compile(r"^tasks\.json\.\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}-\d{6}Z\.bak$")


@pytest.fixture
def store() -> TaskFileStore:
    return TaskFileStore()


@pytest.fixture
def tasks_path(tmp_path: Path) -> Path:
    return tmp_path / "tasks" / "tasks.json"


def _payload(n: int) -> dict:
    return {"tasks": [{"id": str(i)} for i in range(1, n + 1)], "metadata": {"version": "1.0.0"}}


class TestReadWrite:
    def test_read_missing_returns_none(self, store: TaskFileStore, tasks_path: Path) -> None:
        assert store.exists(tasks_path) is False
        assert store.read(tasks_path) is None

    def test_save_creates_parent_and_writes_pretty_json(self, store: TaskFileStore, tasks_path: Path) -> None:
        backup = store.save(tasks_path, lambda: _payload(1))
        assert backup is None
        text = tasks_path.read_text(encoding="utf-8")
        assert text.startswith('{\n  "tasks"')
        assert store.read(tasks_path) == _payload(1)
        assert not tasks_path.with_suffix(".json.tmp").exists()

    def test_malformed_json_raises_parse_error(self, store: TaskFileStore, tasks_path: Path) -> None:
        tasks_path.parent.mkdir(parents=True)
        tasks_path.write_text('{"tasks": [', encoding="utf-8")
        with pytest.raises(ParseError) as excinfo:
            store.read(tasks_path)
        assert excinfo.value.details["path"] == str(tasks_path)
        assert tasks_path.read_text(encoding="utf-8") == '{"tasks": ['

    def test_non_object_raises_parse_error(self, store: TaskFileStore, tasks_path: Path) -> None:
        tasks_path.parent.mkdir(parents=True)
        tasks_path.write_text("[]", encoding="utf-8")
        with pytest.raises(ParseError, match="expected object"):
            store.read(tasks_path)

    def test_unwritable_target_raises_persistence_error(self, store: TaskFileStore, tmp_path: Path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory", encoding="utf-8")
        with pytest.raises(PersistenceError):
            store.save(blocker / "tasks.json", lambda: _payload(1))


class TestBackups:
    def test_backup_taken_before_overwrite(self, store: TaskFileStore, tasks_path: Path) -> None:
        store.save(tasks_path, lambda: _payload(1))
        backup = store.save(tasks_path, lambda: _payload(2))

        assert backup is not None
        assert backup.parent == tasks_path.parent
        assert BACKUP_NAME_RE.match(backup.name)
        assert json.loads(backup.read_text(encoding="utf-8")) == _payload(1)
        assert store.read(tasks_path) == _payload(2)

    def test_list_backups_newest_first(self, store: TaskFileStore, tasks_path: Path) -> None:
        for n in range(1, 5):
            store.save(tasks_path, lambda n=n: _payload(n))
        backups = store.list_backups(tasks_path)
        assert len(backups) == 3
        assert [p.name for p in backups] == sorted((p.name for p in backups), reverse=True)
        assert json.loads(backups[0].read_text(encoding="utf-8")) == _payload(3)

    def test_list_backups_ignores_other_files(self, store: TaskFileStore, tasks_path: Path) -> None:
        store.save(tasks_path, lambda: _payload(1))
        (tasks_path.parent / "other.json.2024-01-01T00-00-00-000000Z.bak").write_text("{}", encoding="utf-8")
        (tasks_path.parent / "tasks.json.bak").write_text("{}", encoding="utf-8")
        assert store.list_backups(tasks_path) == []

    def test_list_backups_missing_directory(self, store: TaskFileStore, tmp_path: Path) -> None:
        assert store.list_backups(tmp_path / "nope" / "tasks.json") == []

    def test_backups_pruned_to_keep(self, tasks_path: Path) -> None:
        store = TaskFileStore(keep_backups=2)
        for n in range(1, 7):
            store.save(tasks_path, lambda n=n: _payload(n))
        backups = store.list_backups(tasks_path)
        assert len(backups) == 2
        assert json.loads(backups[0].read_text(encoding="utf-8")) == _payload(5)

    def test_zero_keep_disables_pruning(self, tasks_path: Path) -> None:
        store = TaskFileStore(keep_backups=0)
        for n in range(1, 8):
            store.save(tasks_path, lambda n=n: _payload(n))
        assert len(store.list_backups(tasks_path)) == 6

    def test_back_to_back_backups_get_unique_names(self, store: TaskFileStore, tasks_path: Path) -> None:
        store.save(tasks_path, lambda: _payload(1))
        names = {store.create_backup(tasks_path).name for _ in range(20)}
        assert len(names) == 20

    def test_cleanup_backups(self, tasks_path: Path) -> None:
        store = TaskFileStore(keep_backups=0)
        for n in range(1, 5):
            store.save(tasks_path, lambda n=n: _payload(n))
        assert store.cleanup_backups(tasks_path, keep=1) == 2
        assert len(store.list_backups(tasks_path)) == 1

    def test_backup_of_missing_file(self, store: TaskFileStore, tasks_path: Path) -> None:
        with pytest.raises(NotFoundError):
            store.create_backup(tasks_path)

    def test_backup_failure_does_not_block_write(
        self, store: TaskFileStore, tasks_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        store.save(tasks_path, lambda: _payload(1))

        def failing_backup(path: Path) -> Path:
            raise PersistenceError("disk full")

        monkeypatch.setattr(store, "_backup_locked", failing_backup)
        assert store.save(tasks_path, lambda: _payload(2)) is None
        assert store.read(tasks_path) == _payload(2)

    def test_restore_backup(self, store: TaskFileStore, tasks_path: Path) -> None:
        store.save(tasks_path, lambda: _payload(1))
        backup = store.save(tasks_path, lambda: _payload(2))

        restored = store.restore_backup(backup)

        assert restored == tasks_path
        assert store.read(tasks_path) == _payload(1)
        # The overwritten version was itself backed up.
        contents = [json.loads(p.read_text(encoding="utf-8")) for p in store.list_backups(tasks_path)]
        assert _payload(2) in contents

    def test_restore_missing_backup(self, store: TaskFileStore, tmp_path: Path) -> None:
        with pytest.raises(NotFoundError):
            store.restore_backup(tmp_path / "tasks.json.2024-01-01T00-00-00-000000Z.bak")

    def test_restore_cannot_infer_target(self, store: TaskFileStore, tmp_path: Path) -> None:
        odd = tmp_path / "random.bak"
        odd.write_text("{}", encoding="utf-8")
        with pytest.raises(PersistenceError, match="Cannot infer"):
            store.restore_backup(odd)


class TestLocking:
    def test_same_resolved_path_shares_lock(self, tmp_path: Path) -> None:
        provider = LockProvider()
        a = provider.lock_for(tmp_path / "tasks.json")
        b = provider.lock_for(tmp_path / "sub" / ".." / "tasks.json")
        c = provider.lock_for(tmp_path / "other.json")
        assert a is b
        assert a is not c
        assert len(provider) == 2

    def test_different_paths_do_not_block(self, tmp_path: Path) -> None:
        provider = LockProvider()
        done = threading.Event()
        with provider.lock_for(tmp_path / "a.json"):
            def other() -> None:
                with provider.lock_for(tmp_path / "b.json"):
                    done.set()
            t = threading.Thread(target=other)
            t.start()
            assert done.wait(timeout=5)
            t.join()

    def test_waiters_served_in_arrival_order(self) -> None:
        lock = FifoLock()
        order: list[int] = []

        def worker(i: int) -> None:
            with lock:
                order.append(i)

        lock.acquire()
        threads = []
        for i in range(5):
            t = threading.Thread(target=worker, args=(i,))
            t.start()
            threads.append(t)
            deadline = time.monotonic() + 5
            # Wait until this worker holds its ticket before starting the next.
            while lock._next_ticket < i + 2 and time.monotonic() < deadline:
                time.sleep(0.001)
        lock.release()
        for t in threads:
            t.join(timeout=5)
        assert order == [0, 1, 2, 3, 4]
        assert not lock.locked()

    def test_concurrent_saves_serialized(self, tasks_path: Path) -> None:
        store = TaskFileStore(keep_backups=0)
        store.save(tasks_path, lambda: _payload(0))
        state = {"n": 0}
        state_lock = threading.Lock()

        def snapshot() -> dict:
            with state_lock:
                return _payload(state["n"])

        def bump_and_save() -> None:
            with state_lock:
                state["n"] += 1
            store.save(tasks_path, snapshot)

        threads = [threading.Thread(target=bump_and_save) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert store.read(tasks_path) == _payload(8)
        assert len(store.list_backups(tasks_path)) == 8


class TestResolvePath:
    def test_relative(self, tmp_path: Path) -> None:
        assert resolve_tasks_path(tmp_path, "tasks/tasks.json") == (tmp_path / "tasks" / "tasks.json").resolve()

    def test_absolute(self, tmp_path: Path) -> None:
        target = tmp_path / "elsewhere" / "t.json"
        assert resolve_tasks_path(tmp_path, target) == target.resolve()

    def test_root_must_be_directory(self, tmp_path: Path) -> None:
        with pytest.raises(PersistenceError) as excinfo:
            resolve_tasks_path(tmp_path / "missing", "tasks.json")
        assert excinfo.value.code == PATH_RESOLUTION_ERROR
