"""
TASKLEDGER - Persistence Layer
==============================
Reads and writes the single snapshot file, and the timestamped JSON files
kept in the memory directory (archives, clear backups, deleted-task backups).
"""

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .config import StoreConfig
from .schema import Task, TasksData, local_now

logger = logging.getLogger(__name__)

ARCHIVE_PREFIX = "archive"
DELETED_BACKUP_PREFIX = "backup_deleted"
CLEAR_BACKUP_PREFIX = "tasks_memory"

_TIMESTAMP_FORMAT = "%Y-%m-%dT%H-%M-%S"
_TIMESTAMP_RE = re.compile(r"^(\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2})(?:-(\d{1,6}))?")


class SnapshotError(Exception):
    """The snapshot (or a memory file) could not be read or understood"""

    def __init__(self, path: Path, reason: str):
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


def parse_task(raw: Dict[str, Any]) -> Task:
    """Validate one serialized task, treating null timestamps as missing"""
    cleaned = {
        key: value for key, value in raw.items()
        if not (key in ("createdAt", "updatedAt", "created_at", "updated_at") and value is None)
    }
    return Task.model_validate(cleaned)


def extract_tasks(payload: Any) -> Optional[List[Dict[str, Any]]]:
    """
    Pull the raw task list out of any historical file shape:
    {meta, tasksData: {tasks}}, {tasks: [...]}, a bare list, or a single task.
    Returns None when the payload matches none of them.
    """
    if isinstance(payload, list):
        return [t for t in payload if isinstance(t, dict)]
    if not isinstance(payload, dict):
        return None
    tasks_data = payload.get("tasksData")
    if isinstance(tasks_data, dict) and isinstance(tasks_data.get("tasks"), list):
        return [t for t in tasks_data["tasks"] if isinstance(t, dict)]
    if isinstance(payload.get("tasks"), list):
        return [t for t in payload["tasks"] if isinstance(t, dict)]
    if payload.get("id"):
        return [payload]
    return None


def parse_tasks_lenient(raw_tasks: List[Dict[str, Any]], source: Path) -> List[Task]:
    tasks = []
    for raw in raw_tasks:
        try:
            tasks.append(parse_task(raw))
        except ValidationError as e:
            logger.warning(f"Skipping malformed task in {source.name}: {e.error_count()} error(s)")
    return tasks


def memory_file_name(prefix: str, when: Optional[datetime] = None) -> str:
    when = when or local_now()
    return f"{prefix}_{when.strftime(_TIMESTAMP_FORMAT)}-{when.microsecond:06d}.json"


def parse_memory_timestamp(path: Path, prefix: str) -> datetime:
    """Timestamp encoded in a memory file name, or the file mtime"""
    stem = path.name[len(prefix) + 1:] if path.name.startswith(prefix + "_") else ""
    match = _TIMESTAMP_RE.match(stem)
    if match:
        try:
            parsed = datetime.strptime(match.group(1), _TIMESTAMP_FORMAT)
            if match.group(2):
                parsed = parsed.replace(microsecond=int(match.group(2).ljust(6, "0")))
            return parsed.astimezone()
        except ValueError:
            pass
    return datetime.fromtimestamp(path.stat().st_mtime).astimezone()


class TaskFileStore:
    """
    File-backed snapshot storage.

    Primary storage: {data_dir}/tasks.json
    Side storage: {data_dir}/memory/*.json

    Every operation is a whole-file read or write; the last writer wins.
    """

    def __init__(self, config: StoreConfig):
        self.config = config
        self.tasks_file = config.tasks_file_path()
        self.memory_dir = config.memory_dir()

    # ========================================
    # SNAPSHOT
    # ========================================

    def ensure(self) -> None:
        """Create the data directory and an empty snapshot if missing"""
        self.config.data_dir.mkdir(parents=True, exist_ok=True)
        if not self.tasks_file.exists():
            self.tasks_file.write_text(json.dumps({"tasks": []}), encoding="utf-8")
            logger.info(f"📁 Created empty snapshot: {self.tasks_file}")

    def read(self) -> TasksData:
        """Load the snapshot, accepting the legacy bare-list shape"""
        self.ensure()
        payload = self._load_json(self.tasks_file)

        try:
            if isinstance(payload, list):
                return TasksData(tasks=[parse_task(t) for t in payload])
            if not isinstance(payload, dict):
                raise SnapshotError(self.tasks_file, "expected a task list or an object")

            data: Dict[str, Any] = {
                "tasks": [parse_task(t) for t in payload.get("tasks") or []],
                "initialRequest": payload.get("initialRequest"),
            }
            for key in ("createdAt", "updatedAt"):
                if payload.get(key):
                    data[key] = payload[key]
            return TasksData.model_validate(data)
        except ValidationError as e:
            raise SnapshotError(self.tasks_file, f"invalid task data ({e.error_count()} error(s))") from e

    def read_tasks(self) -> List[Task]:
        return self.read().tasks

    def write(self, tasks_data: TasksData) -> None:
        """Write the whole snapshot, refreshing updated_at"""
        self.ensure()
        tasks_data.updated_at = local_now()
        self.tasks_file.write_text(
            json.dumps(tasks_data.to_json_dict(), indent=2, ensure_ascii=False),
            encoding="utf-8",
        )
        logger.debug(f"💾 Saved snapshot: {len(tasks_data.tasks)} task(s)")

    def write_tasks(self, tasks: List[Task]) -> TasksData:
        """Replace the task list, keeping initial request and createdAt"""
        tasks_data = self.read()
        tasks_data.tasks = list(tasks)
        self.write(tasks_data)
        return tasks_data

    # ========================================
    # MEMORY DIRECTORY
    # ========================================

    def ensure_memory_dir(self) -> Path:
        self.memory_dir.mkdir(parents=True, exist_ok=True)
        return self.memory_dir

    def new_memory_path(self, prefix: str) -> Path:
        """Unique timestamped path in the memory directory"""
        memory_dir = self.ensure_memory_dir()
        path = memory_dir / memory_file_name(prefix)
        counter = 1
        while path.exists():
            path = memory_dir / f"{path.stem.split('__')[0]}__{counter}.json"
            counter += 1
        return path

    def write_memory_file(self, prefix: str, payload: Any) -> Path:
        path = self.new_memory_path(prefix)
        path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        logger.debug(f"💾 Wrote memory file: {path.name}")
        return path

    def memory_files(self, prefix: Optional[str] = None) -> List[Path]:
        """Memory files (optionally by prefix), newest name first"""
        if not self.memory_dir.is_dir():
            return []
        pattern = f"{prefix}_*.json" if prefix else "*.json"
        return sorted(self.memory_dir.glob(pattern), key=lambda p: p.name, reverse=True)

    def read_memory_file(self, path: Path) -> Any:
        return self._load_json(path)

    @staticmethod
    def _load_json(path: Path) -> Any:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise SnapshotError(path, f"malformed JSON at line {e.lineno}") from e
        except OSError as e:
            raise SnapshotError(path, f"unreadable ({e.strerror or e})") from e
