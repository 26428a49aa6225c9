"""
TASKLEDGER - Task Search
========================
Keyword / id search over the live snapshot plus the JSON files kept in the
memory directory. Historical files are located with the platform's text
search tool, then parsed and filtered with the same rule as live tasks.
"""

import logging
import math
import re
import subprocess
import sys
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from .schema import Pagination, SearchResult, Task
from .storage import SnapshotError, TaskFileStore, extract_tasks, parse_tasks_lenient

logger = logging.getLogger(__name__)

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def split_keywords(query: str) -> List[str]:
    return [k for k in query.split() if k]


def task_matches(task: Task, query: str, is_id: bool = False) -> bool:
    """
    Id search is an exact id match. Keyword search needs every keyword
    (case-insensitive) in at least one of name, description, notes,
    implementation guide or summary.
    """
    if is_id:
        return task.id == query

    fields = [
        task.name,
        task.description,
        task.notes or "",
        task.implementation_guide or "",
        task.summary or "",
    ]
    haystacks = [f.lower() for f in fields]
    return all(
        any(keyword.lower() in h for h in haystacks)
        for keyword in split_keywords(query)
    )


def filter_tasks(tasks: Iterable[Task], query: str, is_id: bool = False) -> List[Task]:
    return [t for t in tasks if task_matches(t, query, is_id)]


def sort_results(tasks: Iterable[Task]) -> List[Task]:
    """Completed tasks first (newest completion first), then newest update first"""
    def key(task: Task):
        if task.completed_at is not None:
            return (0, -task.completed_at.timestamp())
        return (1, -task.updated_at.timestamp())
    return sorted(tasks, key=key)


def paginate(tasks: List[Task], page: int, page_size: int) -> SearchResult:
    if page_size < 1:
        raise ValueError("page_size must be at least 1")
    total_results = len(tasks)
    total_pages = math.ceil(total_results / page_size)
    safe_page = max(1, min(page, total_pages or 1))
    start = (safe_page - 1) * page_size
    return SearchResult(
        tasks=tasks[start:start + page_size],
        pagination=Pagination(
            current_page=safe_page,
            total_pages=total_pages or 1,
            total_results=total_results,
            has_more=safe_page < total_pages,
        ),
    )


# ============================================================
# TEXT SEARCH TOOLS
# ============================================================

class TextSearcher:
    """Finds files under a directory containing every keyword"""

    def find_files(self, keywords: Sequence[str], directory: Path) -> List[Path]:
        raise NotImplementedError


class CommandSearcher(TextSearcher):
    """
    Shells out to grep (Unix-like) or findstr (Windows).

    The first keyword is searched recursively; each further keyword narrows
    the matched file list. No shell is involved, so arguments only lose
    control characters.
    """

    def __init__(self, platform: Optional[str] = None):
        self.platform = platform or sys.platform

    @property
    def is_windows(self) -> bool:
        return self.platform.startswith("win")

    def recursive_command(self, keyword: str, directory: Path) -> List[str]:
        if self.is_windows:
            return ["findstr", "/s", "/i", "/m", f"/c:{keyword}", str(directory / "*.json")]
        return ["grep", "-r", "-l", "-i", "-F", "--include=*.json", "-e", keyword, str(directory)]

    def narrow_command(self, keyword: str, files: Sequence[Path]) -> List[str]:
        if self.is_windows:
            return ["findstr", "/i", "/m", f"/c:{keyword}", *[str(f) for f in files]]
        return ["grep", "-l", "-i", "-F", "-e", keyword, *[str(f) for f in files]]

    def _run(self, command: List[str], cwd: Path) -> List[Path]:
        logger.debug(f"Search command: {command}")
        try:
            result = subprocess.run(command, cwd=cwd, capture_output=True, text=True)
        except OSError as e:
            logger.warning(f"Search tool unavailable ({command[0]}): {e}")
            return []
        # 1 means "no match" for both grep and findstr
        if result.returncode not in (0, 1):
            logger.warning(f"Search command failed ({result.returncode}): {result.stderr.strip()}")
            return []
        files = []
        for line in result.stdout.splitlines():
            line = line.strip()
            if line:
                path = Path(line)
                files.append(path if path.is_absolute() else cwd / path)
        return files

    def find_files(self, keywords: Sequence[str], directory: Path) -> List[Path]:
        cleaned = [_CONTROL_CHARS.sub("", k) for k in keywords]
        cleaned = [k for k in cleaned if k]
        if not cleaned or not directory.is_dir():
            return []

        directory = directory.resolve()
        files = self._run(self.recursive_command(cleaned[0], directory), directory)
        for keyword in cleaned[1:]:
            if not files:
                break
            files = self._run(self.narrow_command(keyword, files), directory)
        return sorted(set(files))


# ============================================================
# SEARCH
# ============================================================

def search_memory(
    store: TaskFileStore,
    searcher: TextSearcher,
    query: str,
    is_id: bool = False,
    max_files: int = 10,
) -> List[Task]:
    """Matching tasks from the newest-named memory files that contain the query"""
    keywords = [query] if is_id else split_keywords(query)
    if not keywords:
        return []

    candidates = searcher.find_files(keywords, store.memory_dir)
    candidates = sorted(candidates, key=lambda p: p.name, reverse=True)[:max_files]

    found: List[Task] = []
    for path in candidates:
        try:
            raw_tasks = extract_tasks(store.read_memory_file(path))
        except SnapshotError as e:
            logger.debug(f"Skipping unreadable memory file: {e}")
            continue
        if not raw_tasks:
            continue
        found.extend(filter_tasks(parse_tasks_lenient(raw_tasks, path), query, is_id))
    return found


def search_tasks(
    store: TaskFileStore,
    query: str,
    is_id: bool = False,
    page: int = 1,
    page_size: int = 5,
    searcher: Optional[TextSearcher] = None,
    max_files: int = 10,
) -> SearchResult:
    """Search live and historical tasks; live entries win on duplicate ids"""
    live = filter_tasks(store.read_tasks(), query, is_id)
    historical = search_memory(store, searcher or CommandSearcher(), query, is_id, max_files)

    merged = {t.id: t for t in live}
    for task in historical:
        merged.setdefault(task.id, task)

    result = paginate(sort_results(merged.values()), page, page_size)
    logger.info(
        f"🔎 Search '{query}': {result.pagination.total_results} result(s) "
        f"({len(live)} live, {len(historical)} historical)"
    )
    return result
