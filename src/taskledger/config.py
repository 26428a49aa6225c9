"""
TASKLEDGER - Configuration
==========================
One explicit settings object handed to the store; nothing is cached at
module level. StoreConfig.from_env covers the usual deployment knobs.
"""

import os
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, Field

ENV_PREFIX = "TASKLEDGER"


def _k(suffix: str) -> str:
    return f"{ENV_PREFIX}_{suffix}"


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


class StoreConfig(BaseModel):
    """Where the snapshot lives and how the store behaves"""
    data_dir: Path = Path(".claude/tasks")
    tasks_file_name: str = "tasks.json"
    memory_dir_name: str = "memory"
    history_enabled: bool = True
    search_max_files: int = Field(default=10, ge=1)

    def tasks_file_path(self) -> Path:
        return self.data_dir / self.tasks_file_name

    def memory_dir(self) -> Path:
        return self.data_dir / self.memory_dir_name

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "StoreConfig":
        """Build a config from TASKLEDGER_* variables (DATA_DIR is honoured too)."""
        env = os.environ if env is None else env
        defaults = cls()

        raw_dir = env.get(_k("DATA_DIR")) or env.get("DATA_DIR")
        data_dir = Path(raw_dir).expanduser() if raw_dir and raw_dir.strip() else defaults.data_dir

        return cls(
            data_dir=data_dir,
            tasks_file_name=env.get(_k("TASKS_FILE")) or defaults.tasks_file_name,
            history_enabled=_env_bool(env, _k("HISTORY"), defaults.history_enabled),
            search_max_files=max(1, _env_int(env, _k("SEARCH_MAX_FILES"), defaults.search_max_files)),
        )
