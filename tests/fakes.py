# tests/fakes.py

from __future__ import annotations

from pathlib import Path
from typing import List, Sequence

from taskledger.history import HistoryLog
from taskledger.search import TextSearcher


class FakeSearcher(TextSearcher):
    """Pure-Python stand-in for grep: case-insensitive substring match on file text."""

    def __init__(self) -> None:
        self.calls: List[List[str]] = []

    def find_files(self, keywords: Sequence[str], directory: Path) -> List[Path]:
        self.calls.append(list(keywords))
        if not directory.is_dir():
            return []
        out = []
        for path in directory.glob("*.json"):
            text = path.read_text(encoding="utf-8").lower()
            if all(k.lower() in text for k in keywords):
                out.append(path)
        return out


class RecordingHistory(HistoryLog):
    """Keeps commit messages in memory."""

    def __init__(self) -> None:
        self.messages: List[str] = []

    def ensure_initialized(self) -> None:
        return

    def commit(self, message: str) -> None:
        self.messages.append(message)

    def query(self, task_id=None, operation=None, limit=None, since=None):
        return []

    def count_commits(self) -> int:
        return len(self.messages)
