# tests/test_manager.py

from __future__ import annotations

import json

import pytest

from taskledger import RelatedFile, TaskManager, TaskStatus
from taskledger.schema import TaskComplexityLevel
from taskledger.storage import DELETED_BACKUP_PREFIX

from .fakes import RecordingHistory


def test_created_tasks_are_pending_with_unique_ids(manager: TaskManager) -> None:
    tasks = [manager.create_task(f"T{i}", "desc") for i in range(5)]

    assert len({t.id for t in tasks}) == 5
    assert all(t.status == TaskStatus.PENDING for t in tasks)
    assert [t.name for t in manager.list_tasks()] == ["T0", "T1", "T2", "T3", "T4"]


def test_create_commits_and_wraps_dependencies(manager: TaskManager, history: RecordingHistory) -> None:
    a = manager.create_task("A", "first")
    b = manager.create_task("B", "second", dependencies=[a.id, a.id, "missing-id"])

    assert b.dependency_ids == [a.id]
    assert history.messages[-1] == f"Add new task: B (ID: {b.id})"


def test_update_unknown_task_returns_none(manager: TaskManager) -> None:
    assert manager.update_task("nope", {"name": "x"}) is None


def test_update_rejects_unknown_field(manager: TaskManager) -> None:
    task = manager.create_task("A", "d")

    with pytest.raises(ValueError):
        manager.update_task(task.id, {"colour": "red"})
    with pytest.raises(ValueError):
        manager.update_task(task.id, {"id": "other"})


def test_completed_task_only_accepts_summary_files_and_details(manager: TaskManager) -> None:
    task = manager.create_task("A", "d")
    manager.update_task_status(task.id, TaskStatus.COMPLETED)

    assert manager.update_task(task.id, {"name": "renamed"}) is None
    assert manager.update_task(task.id, {"summary": "ok", "description": "no"}) is None
    assert manager.update_task_status(task.id, TaskStatus.IN_PROGRESS) is None

    updated = manager.update_task(task.id, {
        "summary": "all good",
        "completion_details": {"keyAccomplishments": ["x"]},
        "related_files": [RelatedFile(path="src/app.py", type="TO_MODIFY")],
    })
    assert updated is not None
    assert updated.summary == "all good"
    assert updated.related_files[0].path == "src/app.py"
    assert manager.get_task(task.id).name == "A"


def test_status_transitions_stamp_completed_at(manager: TaskManager) -> None:
    task = manager.create_task("A", "d")

    started = manager.start_task(task.id)
    assert started.status == TaskStatus.IN_PROGRESS
    assert started.completed_at is None

    done = manager.complete_task(task.id, summary="finished")
    assert done.status == TaskStatus.COMPLETED
    assert done.completed_at is not None
    assert done.summary == "finished"


def test_update_status_rejects_unknown_status(manager: TaskManager) -> None:
    task = manager.create_task("A", "d")

    with pytest.raises(ValueError):
        manager.update_task_status(task.id, "blocked")


def test_update_content_applies_only_given_fields(manager: TaskManager) -> None:
    a = manager.create_task("A", "d")
    b = manager.create_task("B", "old", notes="keep")

    result = manager.update_task_content(
        b.id, description="new", dependencies=[a.id, "ghost"], implementation_guide="step 1"
    )

    assert result.success
    assert result.task.description == "new"
    assert result.task.notes == "keep"
    assert result.task.implementation_guide == "step 1"
    assert result.task.dependency_ids == [a.id]


def test_partial_update_drops_unknown_dependencies(manager: TaskManager) -> None:
    a = manager.create_task("A", "d")
    b = manager.create_task("B", "d")

    updated = manager.update_task(b.id, {
        "dependencies": [{"task_id": "ghost"}, a.id, {"taskId": a.id}, b.id],
    })

    assert updated.dependency_ids == [a.id]
    live_ids = {t.id for t in manager.list_tasks()}
    assert all(dep in live_ids for t in manager.list_tasks() for dep in t.dependency_ids)


def test_update_content_without_fields_is_noop(manager: TaskManager, history: RecordingHistory) -> None:
    task = manager.create_task("A", "d")
    commits = len(history.messages)

    result = manager.update_task_content(task.id)

    assert result.success
    assert result.task.id == task.id
    assert len(history.messages) == commits


def test_update_content_rejects_missing_and_completed(manager: TaskManager) -> None:
    task = manager.create_task("A", "d")
    manager.complete_task(task.id)

    assert not manager.update_task_content("nope", name="x").success
    result = manager.update_task_content(task.id, name="x")
    assert not result.success
    assert "completed" in result.message


def test_related_files_can_change_after_completion(manager: TaskManager) -> None:
    task = manager.create_task("A", "d")
    manager.complete_task(task.id)

    result = manager.update_task_related_files(task.id, [RelatedFile(path="README.md", type="REFERENCE")])

    assert result.success
    assert result.task.related_files[0].path == "README.md"


def test_delete_completed_task_fails(manager: TaskManager) -> None:
    task = manager.create_task("A", "d")
    manager.complete_task(task.id)

    result = manager.delete_task(task.id)

    assert not result.success
    assert "completed" in result.message
    assert manager.get_task(task.id) is not None


def test_delete_blocked_by_dependent_names_it(manager: TaskManager) -> None:
    a = manager.create_task("A", "d")
    b = manager.create_task("B", "d", dependencies=[a.id])

    result = manager.delete_task(a.id)

    assert not result.success
    assert '"B"' in result.message
    assert b.id in result.message


def test_delete_writes_backup_and_commits(manager: TaskManager, history: RecordingHistory) -> None:
    task = manager.create_task("Gone", "bye")

    result = manager.delete_task(task.id)

    assert result.success
    assert manager.get_task(task.id) is None
    assert history.messages[-1] == f"Delete task: Gone (ID: {task.id})"
    backups = manager.store.memory_files(DELETED_BACKUP_PREFIX)
    assert len(backups) == 1
    assert json.loads(backups[0].read_text())["id"] == task.id


def test_delete_unknown_task(manager: TaskManager) -> None:
    assert not manager.delete_task("nope").success


def test_initial_request_round_trip_keeps_tasks(manager: TaskManager) -> None:
    manager.create_task("A", "d")

    manager.set_initial_request("Build a web app")

    assert manager.get_initial_request() == "Build a web app"
    assert [t.name for t in manager.list_tasks()] == ["A"]


def test_complexity_takes_highest_metric(manager: TaskManager) -> None:
    simple = manager.create_task("S", "short")
    noisy = manager.create_task("N", "short", notes="n" * 600)
    huge = manager.create_task("H", "x" * 2500)

    assert manager.assess_task_complexity(simple.id).level == TaskComplexityLevel.LOW
    assert manager.assess_task_complexity(noisy.id).level == TaskComplexityLevel.HIGH
    assessment = manager.assess_task_complexity(huge.id)
    assert assessment.level == TaskComplexityLevel.VERY_HIGH
    assert assessment.metrics.description_length == 2500
    assert any("checklist" in r for r in assessment.recommendations)
    assert manager.assess_task_complexity("nope") is None


def test_ready_tasks_follow_completed_prerequisites(manager: TaskManager) -> None:
    a = manager.create_task("A", "d")
    b = manager.create_task("B", "d", dependencies=[a.id])
    manager.create_task("C", "d")

    assert [t.name for t in manager.get_ready_tasks()] == ["A", "C"]

    manager.complete_task(a.id)

    assert [t.id for t in manager.get_ready_tasks()][0] == b.id
    assert [t.name for t in manager.get_ready_tasks()] == ["B", "C"]
    assert manager.get_tasks_data().status_summary["completed"] == 1


def test_list_tasks_by_status(manager: TaskManager) -> None:
    a = manager.create_task("A", "d")
    manager.create_task("B", "d")
    manager.start_task(a.id)

    assert [t.name for t in manager.list_tasks(TaskStatus.IN_PROGRESS)] == ["A"]
    assert [t.name for t in manager.list_tasks("pending")] == ["B"]


def test_sync_task_state_counts(manager: TaskManager, history: RecordingHistory) -> None:
    a = manager.create_task("A", "d")
    manager.create_task("B", "d")
    manager.complete_task(a.id)
    manager.create_archive()

    result = manager.sync_task_state()

    assert result.success
    assert result.stats.total_tasks == 2
    assert result.stats.completed_tasks == 1
    assert result.stats.pending_tasks == 1
    assert result.stats.archives == 1
    assert history.messages[-1] == "Sync task state"


def test_status_report_shows_blocked_tasks(manager: TaskManager) -> None:
    a = manager.create_task("A", "d")
    manager.create_task("B", "d", dependencies=[a.id])

    report = manager.get_status_report()

    assert "blocked by" in report
    assert "0%" in report
