"""
TASKLEDGER - Versioned History Log
==================================
Audit trail of the snapshot file kept in a local git repository next to it.
History is best effort: a failing git never fails a store operation.
"""

import logging
import re
import subprocess
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

from .schema import HistoryEntry, local_now

logger = logging.getLogger(__name__)

GITIGNORE = """# Temporary files
*.tmp
*.log

# OS files
.DS_Store
Thumbs.db
"""

_TASK_ID_RE = re.compile(r"ID:\s*([a-f0-9-]+)", re.IGNORECASE)
_TASK_NAME_RE = re.compile(r"task:\s*(.+?)(?:\s*\(ID:[^)]*\))?$", re.IGNORECASE)
_OPERATION_RE = re.compile(r"^\[[^\]]*\]\s*([^:]+)")


def local_timestamp() -> str:
    """ISO 8601 local time with offset, second precision"""
    return local_now().replace(microsecond=0).isoformat()


def parse_log_line(line: str) -> Optional[HistoryEntry]:
    """Parse one `%H|%ai|%s` line of git log output"""
    parts = line.split("|", 2)
    if len(parts) != 3:
        return None
    commit, timestamp, message = parts
    task_id = _TASK_ID_RE.search(message)
    task_name = _TASK_NAME_RE.search(message)
    operation = _OPERATION_RE.match(message)
    return HistoryEntry(
        timestamp=timestamp,
        commit=commit,
        message=message,
        task_id=task_id.group(1) if task_id else None,
        task_name=task_name.group(1).strip() if task_name else None,
        operation=operation.group(1).strip() if operation else None,
    )


class HistoryLog:
    """Interface for the snapshot audit log"""

    def ensure_initialized(self) -> None:
        raise NotImplementedError

    def commit(self, message: str) -> None:
        raise NotImplementedError

    def query(
        self,
        task_id: Optional[str] = None,
        operation: Optional[str] = None,
        limit: Optional[int] = None,
        since: Optional[datetime] = None,
    ) -> List[HistoryEntry]:
        raise NotImplementedError

    def count_commits(self) -> int:
        raise NotImplementedError


class NullHistoryLog(HistoryLog):
    """Used when history is switched off"""

    def ensure_initialized(self) -> None:
        return

    def commit(self, message: str) -> None:
        logger.debug(f"History disabled, not committing: {message}")

    def query(self, task_id=None, operation=None, limit=None, since=None) -> List[HistoryEntry]:
        return []

    def count_commits(self) -> int:
        return 0


class GitHistoryLog(HistoryLog):
    """
    Git-backed history of one snapshot file.

    The repository is created lazily on first use inside the data directory.
    Only the snapshot file is ever staged.
    """

    def __init__(self, data_dir: Path, tracked_file: str = "tasks.json", git: str = "git"):
        self.data_dir = Path(data_dir)
        self.tracked_file = tracked_file
        self.git = git

    def _run(self, args: Sequence[str]) -> subprocess.CompletedProcess:
        logger.debug(f"git {' '.join(args)}")
        return subprocess.run(
            [self.git, *args],
            cwd=self.data_dir,
            capture_output=True,
            text=True,
            check=True,
        )

    def ensure_initialized(self) -> None:
        if (self.data_dir / ".git").exists():
            return
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._run(["init"])
        self._run(["config", "user.name", "Taskledger"])
        self._run(["config", "user.email", "taskledger@localhost"])
        (self.data_dir / ".gitignore").write_text(GITIGNORE, encoding="utf-8")
        self._run(["add", ".gitignore"])
        self._run(["commit", "-m", "Initial commit: Initialize task repository"])
        logger.info(f"📚 Initialized history repository in {self.data_dir}")

    def commit(self, message: str) -> None:
        try:
            self.ensure_initialized()
            self._run(["add", self.tracked_file])
            status = self._run(["status", "--porcelain", self.tracked_file])
            if not status.stdout.strip():
                logger.debug(f"Nothing to commit for: {message}")
                return
            self._run(["commit", "-m", f"[{local_timestamp()}] {message}"])
            logger.debug(f"📝 Committed: {message}")
        except (OSError, subprocess.CalledProcessError) as e:
            stderr = getattr(e, "stderr", None) or ""
            logger.warning(f"History commit failed ({message}): {e} {stderr.strip()}")

    def query(
        self,
        task_id: Optional[str] = None,
        operation: Optional[str] = None,
        limit: Optional[int] = None,
        since: Optional[datetime] = None,
    ) -> List[HistoryEntry]:
        args = ["log", "--pretty=format:%H|%ai|%s", r"--grep=\[.*\]"]
        if limit:
            args.append(f"-n{int(limit)}")
        if since:
            args.append(f"--since={since.date().isoformat()}")
        args += ["--", self.tracked_file]

        try:
            self.ensure_initialized()
            result = self._run(args)
        except (OSError, subprocess.CalledProcessError) as e:
            logger.warning(f"History query failed: {e}")
            return []

        entries = [
            entry for entry in (parse_log_line(line) for line in result.stdout.strip().splitlines())
            if entry is not None
        ]

        if task_id:
            entries = [e for e in entries if e.task_id == task_id or task_id in e.message]

        if operation:
            needle = operation.lower()
            entries = [
                e for e in entries
                if (e.operation and needle in e.operation.lower()) or needle in e.message.lower()
            ]

        return entries

    def count_commits(self) -> int:
        try:
            self.ensure_initialized()
            result = self._run(["rev-list", "--count", "HEAD"])
            return int(result.stdout.strip() or 0)
        except (OSError, subprocess.CalledProcessError, ValueError) as e:
            logger.warning(f"Could not count history commits: {e}")
            return 0
