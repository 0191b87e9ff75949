"""Shared test fixtures."""

from pathlib import Path

import pytest

from rachel.scheduler.store import TaskStore
from rachel.tools.scheduler_tools import init_scheduler_tools


@pytest.fixture(autouse=True)
def _reset_singletons():
    """Keep the store singleton and tool wiring from leaking between tests."""
    TaskStore._reset()
    init_scheduler_tools(None)
    yield
    TaskStore._reset()
    init_scheduler_tools(None)


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "tasks.db"


@pytest.fixture
async def store(db_path: Path) -> TaskStore:
    """Create a TaskStore backed by a temp database."""
    return TaskStore(db_path=db_path)
