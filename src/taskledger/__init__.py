"""
TASKLEDGER - Persistent Task Graph
==================================

File-backed, dependency-aware task store for AI-driven development
workflows, with git history, batch planning, archives and recovery.

Usage:
    from taskledger import TaskManager, StoreConfig

    manager = TaskManager(StoreConfig(data_dir=".claude/tasks"))
    a = manager.create_task("Schema", "Design the database schema")
    b = manager.create_task("API", "Build the REST API", dependencies=[a.id])

    manager.can_execute_task(b.id)       # blocked by a
    manager.complete_task(a.id, summary="Schema done")
    manager.can_execute_task(b.id)       # ready

    # Plan a whole batch, resolving dependencies by name
    manager.batch_create_or_update(
        [{"name": "Docs", "description": "Write docs", "dependencies": ["API"]}],
        update_mode="append",
    )
"""

from .archive import ArchiveManager
from .config import StoreConfig
from .history import GitHistoryLog, HistoryLog, NullHistoryLog
from .manager import TaskManager
from .schema import (
    BatchResult,
    BatchTaskSpec,
    ExecutionCheck,
    HistoryEntry,
    OperationResult,
    RelatedFile,
    RelatedFileType,
    SearchResult,
    Task,
    TaskArchive,
    TaskDependency,
    TasksData,
    TaskStatus,
    UpdateMode,
)
from .search import CommandSearcher, TextSearcher
from .storage import SnapshotError, TaskFileStore

__version__ = "1.0.0"
__all__ = [
    "TaskManager",
    "StoreConfig",
    "TaskFileStore",
    "SnapshotError",
    "ArchiveManager",
    "HistoryLog",
    "GitHistoryLog",
    "NullHistoryLog",
    "TextSearcher",
    "CommandSearcher",
    "Task",
    "TasksData",
    "TaskStatus",
    "TaskDependency",
    "RelatedFile",
    "RelatedFileType",
    "BatchTaskSpec",
    "BatchResult",
    "UpdateMode",
    "ExecutionCheck",
    "OperationResult",
    "HistoryEntry",
    "TaskArchive",
    "SearchResult",
]
