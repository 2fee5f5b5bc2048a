"""Tests for loading old task file shapes (task_engine/migration.py)."""

from __future__ import annotations

from task_graph.constants import DATA_VERSION, DEFAULT_PROJECT_NAME
from task_graph.task_engine.migration import (
    NO_DESCRIPTION,
    UNTITLED_TASK,
    migrate_subtask,
    migrate_task,
    migrate_tasks_data,
    needs_migration,
)
from task_graph.task_engine.model import Task


def _current(tasks: list[dict]) -> dict:
    return {
        "tasks": tasks,
        "metadata": {
            "version": DATA_VERSION,
            "created": "2024-01-01T00:00:00+00:00",
            "updated": "2024-01-02T00:00:00+00:00",
            "projectName": "Demo",
        },
    }


def _task(task_id: str, **fields) -> dict:
    data = {"id": task_id, "title": "T", "description": "D", "status": "pending", "priority": "medium"}
    data.update(fields)
    return data


class TestNeedsMigration:
    def test_current_shape(self) -> None:
        assert needs_migration(_current([_task("1"), _task("2", subtasks=[{"id": "2.1", "title": "s"}])])) is False

    def test_not_a_dict(self) -> None:
        assert needs_migration([]) is True

    def test_missing_metadata(self) -> None:
        assert needs_migration({"tasks": []}) is True

    def test_old_version(self) -> None:
        data = _current([])
        data["metadata"]["version"] = "0.9"
        assert needs_migration(data) is True

    def test_numeric_id(self) -> None:
        assert needs_migration(_current([_task(1)])) is True

    def test_duplicate_ids(self) -> None:
        assert needs_migration(_current([_task("1"), _task("1")])) is True

    def test_unknown_status(self) -> None:
        assert needs_migration(_current([_task("1", status="todo")])) is True

    def test_bare_subtask_id(self) -> None:
        assert needs_migration(_current([_task("1", subtasks=[{"id": 1, "title": "s"}])])) is True

    def test_self_dependency(self) -> None:
        assert needs_migration(_current([_task("1", dependencies=["1"])])) is True
        assert needs_migration(_current([_task("1", subtasks=[{"id": "1.1", "title": "s", "dependencies": ["1.1"]}])])) is True

    def test_empty_text_fields(self) -> None:
        assert needs_migration(_current([_task("1", title="")])) is True
        assert needs_migration(_current([_task("1", description="  ")])) is True
        assert needs_migration(_current([_task("1", subtasks=[{"id": "1.1", "title": ""}])])) is True

    def test_untidy_dependency_lists(self) -> None:
        assert needs_migration(_current([_task("1"), _task("2", dependencies=[1])])) is True
        assert needs_migration(_current([_task("1"), _task("2", dependencies=["1", "1"])])) is True

    def test_bare_subtask_dependency_is_current(self) -> None:
        data = _current([_task("1"), _task("2", subtasks=[
            {"id": "2.1", "title": "s"},
            {"id": "2.2", "title": "t", "dependencies": ["1"]},
        ])])
        assert needs_migration(data) is False


class TestMigrateTask:
    def test_fills_defaults(self) -> None:
        out = migrate_task({"status": "blocked", "priority": "urgent"}, "4")
        assert out["id"] == "4"
        assert out["title"] == UNTITLED_TASK
        assert out["description"] == NO_DESCRIPTION
        assert out["status"] == "pending"
        assert out["priority"] == "medium"
        assert out["dependencies"] == []

    def test_dependencies_cleaned(self) -> None:
        out = migrate_task({"title": "A", "dependencies": [2, "2", "", "4", 3]}, "4")
        assert out["dependencies"] == ["2", "3"]

    def test_keeps_known_optional_fields(self) -> None:
        raw = {
            "title": "A", "description": "a", "details": "more", "testStrategy": "unit",
            "metadata": {"complexity": 5}, "createdAt": "2024-01-01T00:00:00+00:00",
        }
        out = migrate_task(raw, "1")
        assert out["details"] == "more"
        assert out["testStrategy"] == "unit"
        assert out["metadata"] == {"complexity": 5}
        assert out["createdAt"] == "2024-01-01T00:00:00+00:00"
        assert "updatedAt" not in out

    def test_subtasks_renumbered(self) -> None:
        out = migrate_task({"title": "A", "subtasks": [
            {"id": 1, "title": "first"},
            {"id": "9.4", "title": "foreign"},
            {"id": 1, "title": "duplicate"},
        ]}, "3")
        assert [s["id"] for s in out["subtasks"]] == ["3.1", "3.2", "3.3"]

    def test_result_builds_a_task(self) -> None:
        out = migrate_task({"title": "A", "subtasks": [{"id": 1, "title": "s", "dependencies": ["1", "2"]}]}, "5")
        task = Task.from_dict(out)
        assert task.subtasks[0].dependencies == ["1", "2"]

    def test_sibling_references_qualified(self) -> None:
        raw = {"title": "A", "subtasks": [
            {"id": 1, "title": "s", "dependencies": ["1", "2", "3"]},
            {"id": 2, "title": "t", "dependencies": ["1", "5.1"]},
        ]}
        out = migrate_task(raw, "5", qualify_siblings=True)
        assert out["subtasks"][0]["dependencies"] == ["5.2", "3"]
        assert out["subtasks"][1]["dependencies"] == ["5.1"]
        assert Task.from_dict(out).subtasks[0].dependencies == ["5.2", "3"]


class TestMigrateSubtask:
    def test_bare_number_qualified(self) -> None:
        assert migrate_subtask({"id": 2, "title": "s"}, "7", 1)["id"] == "7.2"

    def test_missing_id_uses_position(self) -> None:
        sub = migrate_subtask({"title": "s", "status": "weird"}, "7", 3)
        assert sub["id"] == "7.3"
        assert sub["status"] == "pending"

    def test_non_dict(self) -> None:
        sub = migrate_subtask("oops", "2", 1)
        assert sub["id"] == "2.1"
        assert sub["title"] == UNTITLED_TASK


class TestMigrateTasksData:
    def test_assigns_missing_and_duplicate_ids(self) -> None:
        data = {"tasks": [{"id": 3, "title": "A"}, {"title": "B"}, {"id": "3", "title": "C"}, {"id": "1.2", "title": "D"}]}
        out = migrate_tasks_data(data)
        assert [t["id"] for t in out["tasks"]] == ["3", "4", "5", "6"]

    def test_metadata_completed(self) -> None:
        out = migrate_tasks_data({"tasks": [], "metadata": {"created": "2020-01-01", "owner": "ops"}})
        meta = out["metadata"]
        assert meta["version"] == DATA_VERSION
        assert meta["created"] == "2020-01-01"
        assert meta["updated"]
        assert meta["projectName"] == DEFAULT_PROJECT_NAME
        assert meta["owner"] == "ops"

    def test_project_name_argument(self) -> None:
        assert migrate_tasks_data({}, project_name="Rocket")["metadata"]["projectName"] == "Rocket"

    def test_garbage_input(self) -> None:
        out = migrate_tasks_data("not an object")
        assert out["tasks"] == []
        assert needs_migration(out) is False

    def test_output_is_current_and_loadable(self) -> None:
        out = migrate_tasks_data({"tasks": [
            {"id": 1, "title": "A", "status": "done", "priority": "high"},
            {"id": 2, "title": "B", "dependencies": [1], "subtasks": [{"id": 1, "title": "s"}]},
        ]})
        assert needs_migration(out) is False
        tasks = [Task.from_dict(t) for t in out["tasks"]]
        assert tasks[1].dependencies == ["1"]
        assert tasks[1].subtasks[0].id == "2.1"

    def test_only_older_files_get_sibling_references_qualified(self) -> None:
        tasks = [
            {"id": "1", "title": "A", "description": "a"},
            {"id": "2", "title": "B", "description": "b", "subtasks": [
                {"id": "2.1", "title": "s"},
                {"id": "2.2", "title": "t", "dependencies": ["1"]},
            ]},
        ]
        old = migrate_tasks_data({"tasks": tasks, "metadata": {"version": "1.0.0"}})
        assert old["tasks"][1]["subtasks"][1]["dependencies"] == ["2.1"]

        current = migrate_tasks_data({"tasks": tasks, "metadata": {"version": DATA_VERSION}})
        assert current["tasks"][1]["subtasks"][1]["dependencies"] == ["1"]
