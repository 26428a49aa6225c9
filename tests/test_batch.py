# tests/test_batch.py

from __future__ import annotations

import pytest

from taskledger import BatchTaskSpec, TaskManager, TaskStatus, UpdateMode

from .fakes import RecordingHistory


@pytest.fixture()
def seeded(manager: TaskManager):
    """Store with one completed, one in-progress and one pending task."""
    done = manager.create_task("Done", "finished work")
    manager.complete_task(done.id)
    busy = manager.create_task("Busy", "ongoing")
    manager.start_task(busy.id)
    todo = manager.create_task("Todo", "later")
    return manager.get_task(done.id), manager.get_task(busy.id), manager.get_task(todo.id)


def test_append_keeps_existing_tasks_unchanged(manager: TaskManager, seeded) -> None:
    before = {t.id: t.to_json_dict() for t in manager.list_tasks()}

    result = manager.batch_create_or_update([{"name": "New", "description": "d"}], "append")

    after = {t.id: t.to_json_dict() for t in manager.list_tasks()}
    for task_id, raw in before.items():
        assert after[task_id] == raw
    assert len(after) == 4
    assert [t.name for t in result.tasks] == ["New"]
    assert result.tasks[0].status == TaskStatus.PENDING


def test_overwrite_keeps_only_completed(manager: TaskManager, seeded) -> None:
    done, busy, todo = seeded

    manager.batch_create_or_update([{"name": "Fresh", "description": "d"}], UpdateMode.OVERWRITE)

    tasks = manager.list_tasks()
    assert {t.id for t in tasks if t.name != "Fresh"} == {done.id}
    assert [t.name for t in tasks] == ["Done", "Fresh"]


def test_selective_updates_matching_unfinished_task_in_place(manager: TaskManager) -> None:
    a = manager.create_task("A", "v1")
    other = manager.create_task("Other", "untouched")

    result = manager.batch_create_or_update(
        [BatchTaskSpec(name="A", description="v2", implementation_guide="guide")],
        "selective",
    )

    tasks = manager.list_tasks()
    named_a = [t for t in tasks if t.name == "A"]
    assert len(named_a) == 1
    assert named_a[0].id == a.id
    assert named_a[0].created_at == a.created_at
    assert named_a[0].description == "v2"
    assert named_a[0].implementation_guide == "guide"
    assert manager.get_task(other.id).description == "untouched"
    assert [t.id for t in result.tasks] == [a.id]


def test_selective_creates_new_task_when_name_matches_completed(manager: TaskManager) -> None:
    done = manager.create_task("A", "v1")
    manager.complete_task(done.id)

    manager.batch_create_or_update([{"name": "A", "description": "v2"}], "selective")

    tasks = manager.list_tasks()
    assert len(tasks) == 2
    assert manager.get_task(done.id).description == "v1"
    assert any(t.name == "A" and t.id != done.id and t.status == TaskStatus.PENDING for t in tasks)


def test_clear_all_tasks_mode_discards_everything(manager: TaskManager, seeded) -> None:
    manager.batch_create_or_update([{"name": "Only", "description": "d"}], "clearAllTasks")

    assert [t.name for t in manager.list_tasks()] == ["Only"]


def test_dependencies_resolve_by_name_and_id(manager: TaskManager, seeded) -> None:
    done, _, todo = seeded

    result = manager.batch_create_or_update(
        [
            {"name": "Build", "description": "d", "dependencies": ["Design", todo.id]},
            {"name": "Design", "description": "d", "dependencies": ["Done"]},
        ],
        "append",
    )

    build, design = result.tasks
    assert build.dependency_ids == [design.id, todo.id]
    assert design.dependency_ids == [done.id]
    stored = manager.get_task(build.id)
    assert stored.dependency_ids == [design.id, todo.id]
    assert result.unresolved == []


def test_unresolved_dependencies_are_dropped_and_reported(manager: TaskManager) -> None:
    ghost_id = "123e4567-e89b-12d3-a456-426614174000"

    result = manager.batch_create_or_update(
        [{"name": "X", "description": "d", "dependencies": ["Nobody", ghost_id]}],
        "append",
    )

    assert manager.get_task(result.tasks[0].id).dependencies == []
    assert {(u.task_name, u.reference) for u in result.unresolved} == {("X", "Nobody"), ("X", ghost_id)}


def test_overwrite_cannot_reference_dropped_tasks(manager: TaskManager, seeded) -> None:
    _, busy, _ = seeded

    result = manager.batch_create_or_update(
        [{"name": "N", "description": "d", "dependencies": [busy.id, "Busy"]}],
        "overwrite",
    )

    assert result.tasks[0].dependencies == []
    assert len(result.unresolved) == 2


def test_cycle_is_reported_not_rejected(manager: TaskManager) -> None:
    result = manager.batch_create_or_update(
        [
            {"name": "P", "description": "d", "dependencies": ["Q"]},
            {"name": "Q", "description": "d", "dependencies": ["P"]},
        ],
        "append",
    )

    assert result.cycle is not None
    assert len(manager.list_tasks()) == 2


def test_analysis_result_and_commit_message(manager: TaskManager, history: RecordingHistory) -> None:
    manager.create_task("A", "v1")

    result = manager.batch_create_or_update(
        [{"name": "A", "description": "v2"}, {"name": "B", "description": "new"}],
        "selective",
        global_analysis_result="shared analysis",
    )

    assert all(t.analysis_result == "shared analysis" for t in result.tasks)
    assert history.messages[-1] == "Bulk task operation: selective mode, 1 tasks"


def test_batch_accepts_camel_case_specs(manager: TaskManager) -> None:
    result = manager.batch_create_or_update(
        [{"name": "C", "description": "d", "implementationGuide": "do it",
          "verificationCriteria": "works", "relatedFiles": [{"path": "a.py", "type": "CREATE"}]}],
        "append",
    )

    task = manager.get_task(result.tasks[0].id)
    assert task.implementation_guide == "do it"
    assert task.verification_criteria == "works"
    assert task.related_files[0].path == "a.py"


def test_invalid_mode_raises(manager: TaskManager) -> None:
    with pytest.raises(ValueError):
        manager.batch_create_or_update([], "merge")
