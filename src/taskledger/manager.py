"""
TASKLEDGER - Task Manager
=========================
Handles persistence, state transitions, batch planning and recovery.
The snapshot file is the single source of truth; git history, archives and
deleted-task backups sit beside it.
"""

import logging
import re
from datetime import datetime
from typing import Optional, List, Dict, Any, Iterable, Union

from .archive import ArchiveManager
from .config import StoreConfig
from .graph import can_execute, dependents_of, find_cycle, ready_tasks
from .history import GitHistoryLog, HistoryLog, NullHistoryLog
from .schema import (
    COMPLETED_MUTABLE_FIELDS, COMPLEXITY_THRESHOLDS,
    ArchiveResult, BatchResult, BatchTaskSpec, ClearResult, ComplexityMetrics,
    DeletedTaskInfo, ExecutionCheck, HistoryEntry, OperationResult, RecoverResult,
    RelatedFile, RestoreResult, SearchResult, SyncResult, SyncStats, Task,
    TaskArchive, TaskComplexityAssessment, TaskComplexityLevel, TaskDependency,
    TasksData, TaskStatus, UnresolvedDependency, UpdateMode, local_now
)
from .search import CommandSearcher, TextSearcher, search_tasks
from .storage import TaskFileStore

logger = logging.getLogger(__name__)

UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)

_LEVEL_ORDER = [
    TaskComplexityLevel.LOW,
    TaskComplexityLevel.MEDIUM,
    TaskComplexityLevel.HIGH,
    TaskComplexityLevel.VERY_HIGH,
]


class TaskManager:
    """
    Task store facade.

    Primary storage: {data_dir}/tasks.json
    History: git repository in {data_dir}
    Memory: {data_dir}/memory/ (archives, backups)

    Every mutation reads the whole snapshot, changes it in memory and writes
    it back, then commits to history. There is no locking; the last writer
    wins.
    """

    def __init__(
        self,
        config: Optional[StoreConfig] = None,
        history: Optional[HistoryLog] = None,
        searcher: Optional[TextSearcher] = None,
    ):
        self.config = config or StoreConfig()
        self.store = TaskFileStore(self.config)
        if history is None:
            history = (
                GitHistoryLog(self.config.data_dir, self.config.tasks_file_name)
                if self.config.history_enabled else NullHistoryLog()
            )
        self.history = history
        self.searcher = searcher or CommandSearcher()
        self.archives = ArchiveManager(self.store, self.history)

    # ========================================
    # PERSISTENCE OPERATIONS
    # ========================================

    def _save(self, tasks: List[Task], message: str) -> None:
        self.store.write_tasks(tasks)
        self.history.commit(message)

    def get_tasks_data(self) -> TasksData:
        """The whole snapshot, initial request included"""
        return self.store.read()

    def list_tasks(self, status: Optional[TaskStatus] = None) -> List[Task]:
        tasks = self.store.read_tasks()
        if status is not None:
            tasks = [t for t in tasks if t.status == TaskStatus(status)]
        return tasks

    def get_task(self, task_id: str) -> Optional[Task]:
        return self.store.read().find(task_id)

    def get_initial_request(self) -> Optional[str]:
        return self.store.read().initial_request

    def set_initial_request(self, initial_request: str, commit_message: Optional[str] = None) -> None:
        tasks_data = self.store.read()
        tasks_data.initial_request = initial_request
        self.store.write(tasks_data)
        self.history.commit(commit_message or "Update initial request")

    # ========================================
    # TASK OPERATIONS
    # ========================================

    def create_task(
        self,
        name: str,
        description: str,
        notes: Optional[str] = None,
        dependencies: Optional[Iterable[str]] = None,
        related_files: Optional[List[RelatedFile]] = None,
        agent: Optional[str] = None,
    ) -> Task:
        """Create a PENDING task; dependency ids not in the store are dropped"""
        tasks = self.store.read_tasks()
        known_ids = {t.id for t in tasks}

        edges = []
        for dep_id in dict.fromkeys(dependencies or []):
            if dep_id in known_ids:
                edges.append(TaskDependency(task_id=dep_id))
            else:
                logger.warning(f"Dropping unknown dependency {dep_id} for new task '{name}'")

        task = Task(
            name=name,
            description=description,
            notes=notes,
            status=TaskStatus.PENDING,
            dependencies=edges,
            related_files=related_files or [],
            agent=agent,
        )
        tasks.append(task)
        self._save(tasks, f"Add new task: {task.name} (ID: {task.id})")

        logger.info(f"➕ Created task: {task.name} ({task.id})")
        return task

    @staticmethod
    def _known_dependencies(task_id: str, dependencies: Iterable[Any], tasks: List[Task]) -> List[TaskDependency]:
        """Normalize ids, dicts or TaskDependency values; drop unknown, self and repeated edges"""
        known_ids = {t.id for t in tasks}
        requested = [
            d if isinstance(d, TaskDependency)
            else TaskDependency(task_id=d) if isinstance(d, str)
            else TaskDependency.model_validate(d)
            for d in dependencies or []
        ]
        kept = [d for d in dict.fromkeys(r.task_id for r in requested) if d in known_ids and d != task_id]
        if len(kept) != len(requested):
            logger.warning(f"Dropping unknown, self or repeated dependencies for task {task_id}")
        return [TaskDependency(task_id=d) for d in kept]

    def update_task(self, task_id: str, updates: Dict[str, Any]) -> Optional[Task]:
        """
        Apply a partial update. Returns None when the task is unknown or when
        a completed task is asked to change anything other than its summary,
        completion details or related files.
        """
        unknown = set(updates) - set(Task.model_fields)
        if unknown:
            raise ValueError(f"Unknown task field(s): {', '.join(sorted(unknown))}")
        if "id" in updates:
            raise ValueError("Task id cannot be changed")

        tasks = self.store.read_tasks()
        index = next((i for i, t in enumerate(tasks) if t.id == task_id), None)
        if index is None:
            return None

        current = tasks[index]
        if current.is_completed:
            frozen = set(updates) - COMPLETED_MUTABLE_FIELDS
            if frozen:
                logger.warning(
                    f"⛔ Rejected update of completed task {task_id}: {', '.join(sorted(frozen))}"
                )
                return None

        if "dependencies" in updates:
            updates = {**updates, "dependencies": self._known_dependencies(task_id, updates["dependencies"], tasks)}

        merged = current.model_dump()
        merged.update(updates)
        merged["updated_at"] = local_now()
        tasks[index] = Task.model_validate(merged)

        self._save(tasks, f"Update task: {tasks[index].name} (ID: {task_id})")
        return tasks[index]

    def update_task_status(self, task_id: str, status: Union[TaskStatus, str]) -> Optional[Task]:
        """Change status; moving to COMPLETED stamps completed_at"""
        status = TaskStatus(status)
        updates: Dict[str, Any] = {"status": status}
        if status == TaskStatus.COMPLETED:
            updates["completed_at"] = local_now()

        task = self.update_task(task_id, updates)
        if task:
            logger.info(f"🔁 Task {task.name} ({task_id}) -> {status.value}")
        return task

    def start_task(self, task_id: str) -> Optional[Task]:
        return self.update_task_status(task_id, TaskStatus.IN_PROGRESS)

    def complete_task(
        self,
        task_id: str,
        summary: Optional[str] = None,
        completion_details: Optional[Dict[str, Any]] = None,
    ) -> Optional[Task]:
        """Mark task as completed, optionally recording its summary"""
        task = self.update_task_status(task_id, TaskStatus.COMPLETED)
        if task and (summary or completion_details):
            task = self.update_task_summary(task_id, summary or task.summary or "", completion_details)
        if task:
            logger.info(f"✅ Completed task: {task.name} ({task_id})")
        return task

    def update_task_summary(
        self,
        task_id: str,
        summary: str,
        completion_details: Optional[Dict[str, Any]] = None,
    ) -> Optional[Task]:
        updates: Dict[str, Any] = {"summary": summary}
        if completion_details:
            updates["completion_details"] = completion_details
        return self.update_task(task_id, updates)

    def update_task_content(
        self,
        task_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        notes: Optional[str] = None,
        related_files: Optional[List[RelatedFile]] = None,
        dependencies: Optional[List[str]] = None,
        implementation_guide: Optional[str] = None,
        verification_criteria: Optional[str] = None,
        agent: Optional[str] = None,
    ) -> OperationResult:
        """Edit the planning fields of an unfinished task; None means "leave as is" """
        task = self.get_task(task_id)
        if task is None:
            return OperationResult(success=False, message="Task not found")
        if task.is_completed:
            return OperationResult(success=False, message="Cannot update a completed task")

        updates: Dict[str, Any] = {}
        if name is not None:
            updates["name"] = name
        if description is not None:
            updates["description"] = description
        if notes is not None:
            updates["notes"] = notes
        if related_files is not None:
            updates["related_files"] = related_files
        if dependencies is not None:
            updates["dependencies"] = dependencies
        if implementation_guide is not None:
            updates["implementation_guide"] = implementation_guide
        if verification_criteria is not None:
            updates["verification_criteria"] = verification_criteria
        if agent is not None:
            updates["agent"] = agent

        if not updates:
            return OperationResult(success=True, message="No content to update", task=task)

        updated = self.update_task(task_id, updates)
        if updated is None:
            return OperationResult(success=False, message="Error while updating task")
        return OperationResult(success=True, message="Task content updated", task=updated)

    def update_task_related_files(self, task_id: str, related_files: List[RelatedFile]) -> OperationResult:
        """Replace related files; allowed on completed tasks too"""
        updated = self.update_task(task_id, {"related_files": related_files})
        if updated is None:
            return OperationResult(success=False, message="Task not found")
        return OperationResult(
            success=True,
            message=f"Updated related files ({len(related_files)} file(s))",
            task=updated,
        )

    def delete_task(self, task_id: str) -> OperationResult:
        """
        Delete an unfinished task nobody depends on. The task is written to
        a backup_deleted_<timestamp>.json file first so it can be recovered.
        """
        tasks = self.store.read_tasks()
        task = next((t for t in tasks if t.id == task_id), None)
        if task is None:
            return OperationResult(success=False, message="Task not found")

        if task.is_completed:
            return OperationResult(success=False, message="Cannot delete a completed task")

        dependents = dependents_of(task_id, tasks)
        if dependents:
            names = ", ".join(f'"{t.name}" (ID: {t.id})' for t in dependents)
            return OperationResult(
                success=False,
                message=f"Cannot delete this task because the following tasks depend on it: {names}",
            )

        self.archives.backup_deleted_task(task)
        remaining = [t for t in tasks if t.id != task_id]
        self._save(remaining, f"Delete task: {task.name} (ID: {task_id})")

        logger.info(f"🗑️ Deleted task: {task.name} ({task_id})")
        return OperationResult(success=True, message="Task deleted", task=task)

    # ========================================
    # DEPENDENCY GRAPH
    # ========================================

    def can_execute_task(self, task_id: str) -> ExecutionCheck:
        tasks = self.store.read_tasks()
        task = next((t for t in tasks if t.id == task_id), None)
        if task is None:
            return ExecutionCheck(can_execute=False)

        check = can_execute(task, tasks)
        if check.blocked_by:
            logger.info(f"⛔ Task {task_id} blocked by: {check.blocked_by}")
        return check

    def get_ready_tasks(self) -> List[Task]:
        """Pending tasks whose prerequisites are all completed"""
        return ready_tasks(self.store.read_tasks())

    # ========================================
    # BATCH RECONCILIATION
    # ========================================

    def batch_create_or_update(
        self,
        task_specs: List[Union[BatchTaskSpec, Dict[str, Any]]],
        update_mode: Union[UpdateMode, str],
        global_analysis_result: Optional[str] = None,
    ) -> BatchResult:
        """
        Merge a batch of task specs into the store.

        append      - keep every task, add the batch as new tasks
        overwrite   - keep completed tasks only, add the batch
        selective   - update unfinished tasks with a matching name in place,
                      add the rest, keep everything else
        clearAllTasks - drop every task, add the batch

        Dependencies are resolved afterwards by id or by name against the
        merged set. References that resolve to nothing are dropped and
        reported in the result.
        """
        mode = UpdateMode(update_mode)
        specs = [BatchTaskSpec.model_validate(s) for s in task_specs]
        existing = self.store.read_tasks()

        if mode == UpdateMode.APPEND or mode == UpdateMode.SELECTIVE:
            kept = list(existing)
        elif mode == UpdateMode.OVERWRITE:
            kept = [t for t in existing if t.is_completed]
        else:
            kept = []

        name_to_id = {t.name: t.id for t in kept}
        updatable = {}
        if mode == UpdateMode.SELECTIVE:
            updatable = {t.name: t for t in existing if not t.is_completed}

        now = local_now()
        planned: List[Task] = []
        created: List[Task] = []
        for spec in specs:
            target = updatable.pop(spec.name, None)
            if target is not None:
                changes: Dict[str, Any] = {
                    "description": spec.description,
                    "notes": spec.notes,
                    "implementation_guide": spec.implementation_guide,
                    "verification_criteria": spec.verification_criteria,
                    "analysis_result": global_analysis_result,
                    "agent": spec.agent,
                    "updated_at": now,
                }
                if spec.related_files is not None:
                    changes["related_files"] = spec.related_files
                task = target.model_copy(update=changes)
                kept[kept.index(target)] = task
            else:
                task = Task(
                    name=spec.name,
                    description=spec.description,
                    notes=spec.notes,
                    status=TaskStatus.PENDING,
                    created_at=now,
                    updated_at=now,
                    related_files=spec.related_files or [],
                    implementation_guide=spec.implementation_guide,
                    verification_criteria=spec.verification_criteria,
                    analysis_result=global_analysis_result,
                    agent=spec.agent,
                )
                created.append(task)
            name_to_id[spec.name] = task.id
            planned.append(task)

        all_tasks = kept + created
        all_ids = {t.id for t in all_tasks}
        unresolved: List[UnresolvedDependency] = []

        for spec, task in zip(specs, planned):
            if not spec.dependencies:
                continue
            resolved: List[str] = []
            for ref in spec.dependencies:
                if UUID_RE.match(ref):
                    dep_id = ref if ref in all_ids else None
                else:
                    dep_id = name_to_id.get(ref)
                if dep_id is None:
                    unresolved.append(UnresolvedDependency(task_name=spec.name, reference=ref))
                    continue
                if dep_id not in resolved:
                    resolved.append(dep_id)
            task.dependencies = [TaskDependency(task_id=d) for d in resolved]

        for item in unresolved:
            logger.warning(f"Dropped unresolved dependency '{item.reference}' of task '{item.task_name}'")

        cycle = find_cycle(all_tasks)
        if cycle:
            logger.warning(f"🔄 Dependency cycle detected: {' -> '.join(cycle)}")

        self._save(all_tasks, f"Bulk task operation: {mode.value} mode, {len(created)} tasks")
        logger.info(
            f"📋 Batch {mode.value}: {len(created)} created, "
            f"{len(planned) - len(created)} updated, {len(all_tasks)} total"
        )
        return BatchResult(tasks=planned, unresolved=unresolved, cycle=cycle)

    # ========================================
    # COMPLEXITY
    # ========================================

    def assess_task_complexity(self, task_id: str) -> Optional[TaskComplexityAssessment]:
        task = self.get_task(task_id)
        if task is None:
            return None

        metrics = ComplexityMetrics(
            description_length=len(task.description),
            dependencies_count=len(task.dependencies),
            notes_length=len(task.notes or ""),
            has_notes=bool(task.notes),
        )

        def level_for(value: int, thresholds) -> TaskComplexityLevel:
            medium, high, very_high = thresholds
            if value >= very_high:
                return TaskComplexityLevel.VERY_HIGH
            if value >= high:
                return TaskComplexityLevel.HIGH
            if value >= medium:
                return TaskComplexityLevel.MEDIUM
            return TaskComplexityLevel.LOW

        level = max(
            (
                level_for(metrics.description_length, COMPLEXITY_THRESHOLDS["description_length"]),
                level_for(metrics.dependencies_count, COMPLEXITY_THRESHOLDS["dependencies_count"]),
                level_for(metrics.notes_length, COMPLEXITY_THRESHOLDS["notes_length"]),
            ),
            key=_LEVEL_ORDER.index,
        )

        return TaskComplexityAssessment(
            level=level,
            metrics=metrics,
            recommendations=self._complexity_recommendations(level, metrics),
        )

    @staticmethod
    def _complexity_recommendations(level: TaskComplexityLevel, metrics: ComplexityMetrics) -> List[str]:
        deps_medium, deps_high, _ = COMPLEXITY_THRESHOLDS["dependencies_count"]
        _, _, desc_very_high = COMPLEXITY_THRESHOLDS["description_length"]

        if level == TaskComplexityLevel.LOW:
            return [
                "Low complexity: the task can be executed directly",
                "Set clear completion criteria so verification has a firm basis",
            ]
        if level == TaskComplexityLevel.MEDIUM:
            recs = [
                "Moderate complexity: plan the execution steps in detail",
                "Work in stages and check progress regularly",
            ]
            if metrics.dependencies_count > 0:
                recs.append("Check the status and output quality of every dependency")
            return recs
        if level == TaskComplexityLevel.HIGH:
            recs = [
                "High complexity: analyse and plan thoroughly before starting",
                "Consider splitting the task into smaller independent subtasks",
                "Define milestones and checkpoints to track progress and quality",
            ]
            if metrics.dependencies_count > deps_medium:
                recs.append("Many dependencies: draw the dependency graph to confirm execution order")
            return recs

        recs = [
            "⚠️ Very high complexity: strongly consider splitting into several tasks",
            "Define the scope and interfaces of each subtask before executing",
            "Assess risks and prepare mitigations for likely blockers",
            "Set concrete test and verification criteria for each subtask",
        ]
        if metrics.description_length >= desc_very_high:
            recs.append("Very long description: extract the key points into a structured checklist")
        if metrics.dependencies_count >= deps_high:
            recs.append("Too many dependencies: revisit the task boundaries")
        return recs

    # ========================================
    # ARCHIVE & RECOVERY
    # ========================================

    def create_archive(self, description: Optional[str] = None) -> ArchiveResult:
        return self.archives.create_archive(description)

    def list_archives(self) -> List[TaskArchive]:
        return self.archives.list_archives()

    def restore_from_archive(self, archive_filename: str, merge: bool = False,
                             preserve_ids: bool = False) -> RestoreResult:
        return self.archives.restore_from_archive(archive_filename, merge=merge, preserve_ids=preserve_ids)

    def clear_all_tasks(self) -> ClearResult:
        return self.archives.clear_all_tasks()

    def get_deleted_tasks(self, limit: Optional[int] = None,
                          since: Optional[datetime] = None) -> List[DeletedTaskInfo]:
        return self.archives.get_deleted_tasks(limit=limit, since=since)

    def recover_task(self, task_id: str) -> RecoverResult:
        return self.archives.recover_task(task_id)

    # ========================================
    # HISTORY & SEARCH
    # ========================================

    def get_task_history(
        self,
        task_id: Optional[str] = None,
        operation: Optional[str] = None,
        limit: Optional[int] = None,
        since: Optional[datetime] = None,
    ) -> List[HistoryEntry]:
        return self.history.query(task_id=task_id, operation=operation, limit=limit, since=since)

    def search_tasks(self, query: str, is_id: bool = False, page: int = 1,
                     page_size: int = 5) -> SearchResult:
        return search_tasks(
            self.store,
            query,
            is_id=is_id,
            page=page,
            page_size=page_size,
            searcher=self.searcher,
            max_files=self.config.search_max_files,
        )

    def sync_task_state(self) -> SyncResult:
        """Statistics over the snapshot, history and memory directory"""
        tasks_data = self.get_tasks_data()
        summary = tasks_data.status_summary
        counts = self.archives.count_summary()
        git_commits = self.history.count_commits()
        self.history.commit("Sync task state")

        return SyncResult(
            success=True,
            message="Task state synchronized successfully",
            stats=SyncStats(
                total_tasks=len(tasks_data.tasks),
                pending_tasks=summary[TaskStatus.PENDING.value],
                in_progress_tasks=summary[TaskStatus.IN_PROGRESS.value],
                completed_tasks=summary[TaskStatus.COMPLETED.value],
                last_updated=tasks_data.updated_at,
                git_commits=git_commits,
                archives=counts["archives"],
                deleted_task_backups=counts["deleted_task_backups"],
            ),
        )

    # ========================================
    # REPORTING
    # ========================================

    def get_status_report(self) -> str:
        """Generate human-readable status report"""
        tasks_data = self.get_tasks_data()
        tasks = tasks_data.tasks
        if not tasks:
            return "No tasks"

        done = tasks_data.status_summary[TaskStatus.COMPLETED.value]
        pct = int(done / len(tasks) * 100)

        lines = [
            f"📋 {len(tasks)} task(s)",
            f"Progress: {'█' * (pct // 10)}{'░' * (10 - pct // 10)} {pct}%",
            "",
            "Tasks:",
        ]

        status_icons = {
            TaskStatus.PENDING: "⬜",
            TaskStatus.IN_PROGRESS: "🔵",
            TaskStatus.COMPLETED: "✅",
        }

        for task in tasks:
            icon = status_icons.get(task.status, "❓")
            check = can_execute(task, tasks)
            blocked = f" (blocked by: {check.blocked_by})" if check.blocked_by else ""
            lines.append(f"  {icon} [{task.id}] {task.name}{blocked}")

        return "\n".join(lines)
