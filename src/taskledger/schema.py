"""
TASKLEDGER - Task Schema Definition
===================================
Persistent task graph for AI-driven development workflows.
Models are stored on disk with camelCase keys and used in Python with
snake_case attributes.
"""

from enum import Enum
from typing import Optional, List, Dict, Any
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
import uuid


def local_now() -> datetime:
    """Current time in the server's local timezone"""
    return datetime.now().astimezone()


def _as_local(value: Optional[datetime]) -> Optional[datetime]:
    # Naive timestamps in old files were written in local time
    if value is not None and value.tzinfo is None:
        return value.astimezone()
    return value


class LedgerModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TaskStatus(str, Enum):
    """Task lifecycle states"""
    PENDING = "pending"           # Not started
    IN_PROGRESS = "in_progress"   # Currently executing
    COMPLETED = "completed"       # Finished, mostly frozen


class RelatedFileType(str, Enum):
    TO_MODIFY = "TO_MODIFY"
    REFERENCE = "REFERENCE"
    CREATE = "CREATE"
    DEPENDENCY = "DEPENDENCY"
    OTHER = "OTHER"


class RelatedFile(LedgerModel):
    """A file the task touches or reads"""
    path: str
    type: RelatedFileType = RelatedFileType.OTHER
    description: Optional[str] = None
    line_start: Optional[int] = None
    line_end: Optional[int] = None


class TaskDependency(LedgerModel):
    """Edge from a task to one of its prerequisites"""
    task_id: str


class Task(LedgerModel):
    """Individual task definition"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    description: str = ""
    notes: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING

    # Dependencies
    dependencies: List[TaskDependency] = Field(default_factory=list)

    # Timestamps
    created_at: datetime = Field(default_factory=local_now)
    updated_at: datetime = Field(default_factory=local_now)
    completed_at: Optional[datetime] = None

    # Completion
    summary: Optional[str] = None
    completion_details: Optional[Dict[str, Any]] = None

    # Planning
    implementation_guide: Optional[str] = None
    verification_criteria: Optional[str] = None
    analysis_result: Optional[str] = None
    related_files: List[RelatedFile] = Field(default_factory=list)

    # Metadata
    agent: Optional[str] = None  # e.g., "frontend-developer"

    @field_validator("created_at", "updated_at", "completed_at")
    @classmethod
    def _localize(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_local(value)

    @field_validator("related_files", mode="before")
    @classmethod
    def _none_files(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def dependency_ids(self) -> List[str]:
        return [dep.task_id for dep in self.dependencies]

    @property
    def is_completed(self) -> bool:
        return self.status == TaskStatus.COMPLETED


# Fields that may still change once a task is completed
COMPLETED_MUTABLE_FIELDS = frozenset({"summary", "related_files", "completion_details"})


class TasksData(LedgerModel):
    """Complete snapshot - every live task plus project metadata"""
    tasks: List[Task] = Field(default_factory=list)
    initial_request: Optional[str] = None
    created_at: datetime = Field(default_factory=local_now)
    updated_at: datetime = Field(default_factory=local_now)

    @field_validator("created_at", "updated_at")
    @classmethod
    def _localize(cls, value: datetime) -> datetime:
        return _as_local(value)

    def find(self, task_id: str) -> Optional[Task]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    @property
    def status_summary(self) -> Dict[str, int]:
        summary = {status.value: 0 for status in TaskStatus}
        for task in self.tasks:
            summary[task.status.value] += 1
        return summary


# ============================================================
# BATCH RECONCILIATION
# ============================================================

class UpdateMode(str, Enum):
    """How an incoming batch is merged into the store"""
    APPEND = "append"
    OVERWRITE = "overwrite"
    SELECTIVE = "selective"
    CLEAR_ALL_TASKS = "clearAllTasks"


class BatchTaskSpec(LedgerModel):
    """One incoming task in a batch; dependencies are ids or task names"""
    name: str
    description: str = ""
    notes: Optional[str] = None
    dependencies: List[str] = Field(default_factory=list)
    related_files: Optional[List[RelatedFile]] = None
    implementation_guide: Optional[str] = None
    verification_criteria: Optional[str] = None
    agent: Optional[str] = None


class UnresolvedDependency(LedgerModel):
    task_name: str
    reference: str


class BatchResult(LedgerModel):
    tasks: List[Task] = Field(default_factory=list)
    unresolved: List[UnresolvedDependency] = Field(default_factory=list)
    cycle: Optional[List[str]] = None


# ============================================================
# RESULTS
# ============================================================

class OperationResult(LedgerModel):
    success: bool
    message: str
    task: Optional[Task] = None


class ExecutionCheck(LedgerModel):
    can_execute: bool
    blocked_by: Optional[List[str]] = None


class HistoryEntry(LedgerModel):
    """One commit of the snapshot file"""
    timestamp: str
    commit: str
    message: str
    task_id: Optional[str] = None
    task_name: Optional[str] = None
    operation: Optional[str] = None


class ArchiveMeta(LedgerModel):
    created_at: datetime = Field(default_factory=local_now)
    description: str = "Manual archive"
    tasks_count: int = 0
    version: str = "1.0"


class TaskArchive(LedgerModel):
    filename: str
    timestamp: datetime
    tasks_count: int
    size: int
    description: Optional[str] = None


class ArchiveResult(LedgerModel):
    success: bool
    message: str
    archive_file: str = ""


class RestoreResult(LedgerModel):
    success: bool
    message: str
    restored_count: Optional[int] = None


class ClearResult(LedgerModel):
    success: bool
    message: str
    backup_file: Optional[str] = None


class DeletedTaskInfo(LedgerModel):
    task: Task
    deleted_at: datetime
    backup_file: str


class RecoverResult(LedgerModel):
    success: bool
    message: str
    recovered_task: Optional[Task] = None


class Pagination(LedgerModel):
    current_page: int
    total_pages: int
    total_results: int
    has_more: bool


class SearchResult(LedgerModel):
    tasks: List[Task] = Field(default_factory=list)
    pagination: Pagination


class SyncStats(LedgerModel):
    total_tasks: int
    pending_tasks: int
    in_progress_tasks: int
    completed_tasks: int
    last_updated: datetime
    git_commits: int
    archives: int
    deleted_task_backups: int


class SyncResult(LedgerModel):
    success: bool
    message: str
    stats: Optional[SyncStats] = None


# ============================================================
# COMPLEXITY ASSESSMENT
# ============================================================

class TaskComplexityLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"


# (medium, high, very_high) lower bounds per metric
COMPLEXITY_THRESHOLDS = {
    "description_length": (500, 1000, 2000),
    "dependencies_count": (2, 5, 10),
    "notes_length": (200, 500, 1000),
}


class ComplexityMetrics(LedgerModel):
    description_length: int
    dependencies_count: int
    notes_length: int
    has_notes: bool


class TaskComplexityAssessment(LedgerModel):
    level: TaskComplexityLevel
    metrics: ComplexityMetrics
    recommendations: List[str] = Field(default_factory=list)
