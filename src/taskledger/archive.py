"""
TASKLEDGER - Archive & Recovery
===============================
Point-in-time archives of the snapshot, restore (merge / replace),
clear-with-backup and recovery of deleted tasks. Everything lives as JSON
files in the memory directory next to the snapshot.
"""

import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from .history import HistoryLog
from .schema import (
    ArchiveMeta, ArchiveResult, ClearResult, DeletedTaskInfo, RecoverResult,
    RestoreResult, Task, TaskArchive, TaskDependency, local_now
)
from .storage import (
    ARCHIVE_PREFIX, CLEAR_BACKUP_PREFIX, DELETED_BACKUP_PREFIX,
    SnapshotError, TaskFileStore, extract_tasks, parse_memory_timestamp, parse_task
)

logger = logging.getLogger(__name__)


def _archive_task_count(payload: Any) -> int:
    """Task count from any of the three archive layouts"""
    if isinstance(payload, list):
        return len(payload)
    if not isinstance(payload, dict):
        return 0
    meta = payload.get("meta")
    if isinstance(meta, dict) and meta.get("tasksCount"):
        return int(meta["tasksCount"])
    tasks = extract_tasks(payload)
    return len(tasks) if tasks else 0


def _aware(when: Optional[datetime]) -> Optional[datetime]:
    if when is not None and when.tzinfo is None:
        return when.astimezone()
    return when


class ArchiveManager:
    """
    Archive and recovery operations over one TaskFileStore.

    All public methods return result models; only persistence failures on
    the live snapshot raise (SnapshotError / OSError).
    """

    def __init__(
        self,
        store: TaskFileStore,
        history: HistoryLog,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self.store = store
        self.history = history
        self.id_factory = id_factory

    # ========================================
    # ARCHIVES
    # ========================================

    def create_archive(self, description: Optional[str] = None) -> ArchiveResult:
        """Copy the whole snapshot into archive_<timestamp>.json"""
        description = description or "Manual archive"
        tasks_data = self.store.read()

        # Make sure the live state being archived is in history
        self.history.commit(f"Create archive: {description}")

        meta = ArchiveMeta(description=description, tasks_count=len(tasks_data.tasks))
        path = self.store.write_memory_file(ARCHIVE_PREFIX, {
            "meta": meta.to_json_dict(),
            "tasksData": tasks_data.to_json_dict(),
        })

        logger.info(f"🗄️ Created archive: {path.name} ({meta.tasks_count} tasks)")
        return ArchiveResult(
            success=True,
            archive_file=str(path),
            message=f"Archive created successfully: {path.name}",
        )

    def list_archives(self) -> List[TaskArchive]:
        """Archives in the memory directory, newest first"""
        archives = []
        for path in self.store.memory_files(ARCHIVE_PREFIX):
            try:
                payload = self.store.read_memory_file(path)
            except SnapshotError as e:
                logger.warning(f"Failed to read archive file {path.name}: {e.reason}")
                continue

            meta = payload.get("meta") if isinstance(payload, dict) else None
            archives.append(TaskArchive(
                filename=path.name,
                timestamp=parse_memory_timestamp(path, ARCHIVE_PREFIX),
                tasks_count=_archive_task_count(payload),
                size=path.stat().st_size,
                description=meta.get("description") if isinstance(meta, dict) else None,
            ))

        return sorted(archives, key=lambda a: a.timestamp, reverse=True)

    def restore_from_archive(
        self,
        archive_filename: str,
        merge: bool = False,
        preserve_ids: bool = False,
    ) -> RestoreResult:
        """
        Restore tasks from an archive.

        merge=True adds only tasks whose id is not live yet; merge=False
        replaces the live task list. Ids are regenerated unless preserve_ids
        is set (edges between restored tasks follow the new ids). Every
        restored task gets a fresh updated_at.
        """
        path = self.store.memory_dir / Path(archive_filename).name
        if not path.is_file():
            return RestoreResult(success=False, message="Archive file not found")

        try:
            raw_tasks = extract_tasks(self.store.read_memory_file(path))
        except SnapshotError as e:
            return RestoreResult(success=False, message=f"Failed to read archive: {e.reason}")
        if raw_tasks is None:
            return RestoreResult(success=False, message="Invalid archive format")

        try:
            archived = [parse_task(raw) for raw in raw_tasks]
        except ValidationError as e:
            return RestoreResult(
                success=False,
                message=f"Invalid archive format: {e.error_count()} invalid task field(s)",
            )

        now = local_now()
        id_map = {t.id: (t.id if preserve_ids else self.id_factory()) for t in archived}
        restored = [
            t.model_copy(update={
                "id": id_map[t.id],
                "updated_at": now,
                "dependencies": [
                    TaskDependency(task_id=id_map.get(dep, dep)) for dep in t.dependency_ids
                ],
            })
            for t in archived
        ]

        if merge:
            live = self.store.read_tasks()
            live_ids = {t.id for t in live}
            added = [t for t in restored if t.id not in live_ids]
            final_tasks = live + added
            restored_count = len(added)
        else:
            final_tasks = restored
            restored_count = len(restored)

        final_ids = {t.id for t in final_tasks}
        for i, task in enumerate(final_tasks):
            kept_deps = [d for d in task.dependencies if d.task_id in final_ids]
            if len(kept_deps) != len(task.dependencies):
                logger.warning(f"Dropping dependencies of restored task {task.id} that no longer exist")
                final_tasks[i] = task.model_copy(update={"dependencies": kept_deps})

        action = "merge" if merge else "replace"
        self.store.write_tasks(final_tasks)
        self.history.commit(f"Restore from archive: {path.name} ({action})")

        logger.info(f"♻️ Restored {restored_count} task(s) from {path.name} ({action})")
        return RestoreResult(
            success=True,
            message=f"Successfully restored {restored_count} tasks from archive",
            restored_count=restored_count,
        )

    # ========================================
    # CLEAR
    # ========================================

    def clear_all_tasks(self) -> ClearResult:
        """
        Empty the live snapshot. Completed tasks are first copied to a
        tasks_memory_<timestamp>.json backup; unfinished tasks are discarded
        without a backup.
        """
        tasks = self.store.read_tasks()
        if not tasks:
            return ClearResult(success=True, message="No tasks to clear")

        completed = [t for t in tasks if t.is_completed]
        discarded = len(tasks) - len(completed)
        if discarded:
            logger.warning(f"⚠️ Clearing {discarded} unfinished task(s) without backup")

        backup = self.store.write_memory_file(
            CLEAR_BACKUP_PREFIX, {"tasks": [t.to_json_dict() for t in completed]}
        )
        self.store.write_tasks([])
        self.history.commit(f"Clear all tasks ({len(tasks)} tasks removed)")

        logger.info(f"🧹 Cleared {len(tasks)} task(s), backed up {len(completed)} completed")
        return ClearResult(
            success=True,
            message=(
                f"Cleared all tasks: {len(tasks)} removed, "
                f"{len(completed)} completed task(s) backed up to the memory directory"
            ),
            backup_file=backup.name,
        )

    # ========================================
    # DELETED TASKS
    # ========================================

    def backup_deleted_task(self, task: Task) -> Path:
        """Write backup_deleted_<timestamp>.json holding one task"""
        path = self.store.write_memory_file(DELETED_BACKUP_PREFIX, task.to_json_dict())
        logger.debug(f"Backed up deleted task {task.id} to {path.name}")
        return path

    def get_deleted_tasks(
        self,
        limit: Optional[int] = None,
        since: Optional[datetime] = None,
    ) -> List[DeletedTaskInfo]:
        """Deleted-task backups, most recent deletion first"""
        since = _aware(since)
        deleted: List[DeletedTaskInfo] = []

        for path in self.store.memory_files(DELETED_BACKUP_PREFIX):
            deleted_at = parse_memory_timestamp(path, DELETED_BACKUP_PREFIX)
            if since and deleted_at < since:
                continue
            try:
                raw_tasks = extract_tasks(self.store.read_memory_file(path)) or []
            except SnapshotError as e:
                logger.warning(f"Failed to read backup file {path.name}: {e.reason}")
                continue

            for raw in raw_tasks:
                if not raw.get("id"):
                    continue
                try:
                    task = parse_task(raw)
                except ValidationError:
                    logger.warning(f"Skipping malformed task in {path.name}")
                    continue
                deleted.append(DeletedTaskInfo(task=task, deleted_at=deleted_at, backup_file=str(path)))

        deleted.sort(key=lambda info: info.deleted_at, reverse=True)
        if limit is not None and limit >= 0:
            return deleted[:limit]
        return deleted

    def recover_task(self, task_id: str) -> RecoverResult:
        """Put a deleted task back under its original id"""
        tasks = self.store.read_tasks()
        if any(t.id == task_id for t in tasks):
            return RecoverResult(success=False, message="Task already exists in current task list")

        info = next((d for d in self.get_deleted_tasks() if d.task.id == task_id), None)
        if info is None:
            return RecoverResult(success=False, message="Deleted task not found in backups")

        live_ids = {t.id for t in tasks}
        kept_deps = [d for d in info.task.dependencies if d.task_id in live_ids]
        if len(kept_deps) != len(info.task.dependencies):
            logger.warning(f"Dropping dependencies of recovered task {task_id} that no longer exist")

        recovered = info.task.model_copy(update={"updated_at": local_now(), "dependencies": kept_deps})
        tasks.append(recovered)
        self.store.write_tasks(tasks)
        self.history.commit(f"Recover task: {recovered.name} (ID: {task_id})")

        logger.info(f"🩹 Recovered task: {recovered.name} ({task_id})")
        return RecoverResult(
            success=True,
            message=f'Task "{recovered.name}" recovered successfully',
            recovered_task=recovered,
        )

    def count_summary(self) -> Dict[str, int]:
        return {
            "archives": len(self.store.memory_files(ARCHIVE_PREFIX)),
            "deleted_task_backups": len(self.get_deleted_tasks()),
        }
