# tests/conftest.py

from __future__ import annotations

from pathlib import Path

import pytest

from taskledger import StoreConfig, TaskManager

from .fakes import FakeSearcher, RecordingHistory


@pytest.fixture()
def config(tmp_path: Path) -> StoreConfig:
    return StoreConfig(data_dir=tmp_path / "data", history_enabled=False)


@pytest.fixture()
def history() -> RecordingHistory:
    return RecordingHistory()


@pytest.fixture()
def searcher() -> FakeSearcher:
    return FakeSearcher()


@pytest.fixture()
def manager(config: StoreConfig, history: RecordingHistory, searcher: FakeSearcher) -> TaskManager:
    """
    TaskManager on a tmp data dir.

    History and text search are replaced by in-memory fakes so the tests
    don't depend on git or grep being installed.
    """
    return TaskManager(config, history=history, searcher=searcher)
