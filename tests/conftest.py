"""Shared fixtures for taskgraph tests.

File handling in tests:
- Use tmp_path for any directory or file creation so tests are isolated and cleaned up.
- Use taskgraph.io_utils read_text/write_text for consistent UTF-8 I/O.
"""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Any

import pytest

from taskgraph import log
from taskgraph.config import Config
from taskgraph.events import WILDCARD, EventBus
from taskgraph.io_utils import write_text
from taskgraph.repository import TaskGraphRepository
from taskgraph.storage import JsonFileStorage, MemoryStorage
from taskgraph.tasks.model import (
    Dependency,
    DependencyType,
    ProgressState,
    Task,
    TaskStatus,
)


@pytest.fixture(autouse=True)
def _quiet_log():
    """Reset verbose mode between tests; the CLI flips it globally."""
    log.set_verbose(False)
    yield
    log.set_verbose(False)


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """Create a minimal git repo for testing."""
    subprocess.run(["git", "init"], cwd=tmp_path, capture_output=True, check=True)
    subprocess.run(
        ["git", "config", "user.name", "Test"], cwd=tmp_path, capture_output=True
    )
    subprocess.run(
        ["git", "config", "user.email", "test@test"], cwd=tmp_path, capture_output=True
    )
    subprocess.run(
        ["git", "config", "commit.gpgsign", "false"], cwd=tmp_path, capture_output=True
    )
    write_text(tmp_path / "README.md", "# Test")
    subprocess.run(["git", "add", "README.md"], cwd=tmp_path, capture_output=True)
    subprocess.run(
        ["git", "commit", "-m", "Initial"], cwd=tmp_path, capture_output=True
    )
    return tmp_path


def _git_commit(repo: Path, message: str, filename: str = "file.txt") -> str:
    """Append to *filename*, commit with *message*, return the new HEAD hash."""
    target = repo / filename
    previous = target.read_text(encoding="utf-8") if target.exists() else ""
    write_text(target, previous + message + "\n")
    subprocess.run(["git", "add", filename], cwd=repo, capture_output=True, check=True)
    subprocess.run(["git", "commit", "-m", message], cwd=repo, capture_output=True, check=True)
    r = subprocess.run(
        ["git", "rev-parse", "HEAD"], cwd=repo, capture_output=True, text=True, check=True
    )
    return r.stdout.strip()


@pytest.fixture
def git_commit():
    return _git_commit


def _make_task(
    id: str,
    title: str = "",
    status: TaskStatus = TaskStatus.PENDING,
    depends_on: list[str] | None = None,
    weak: list[str] | None = None,
    state: ProgressState | None = None,
    priority: int = 3,
) -> Task:
    deps = [Dependency(d, DependencyType.STRONG) for d in depends_on or []]
    deps += [Dependency(d, DependencyType.WEAK) for d in weak or []]
    return Task(
        id=id,
        title=title or f"Task {id}",
        description=f"Description of {id}",
        status=status,
        priority=priority,
        progress_state=state,
        dependencies=deps,
    )


def _record(id: str, **overrides: Any) -> dict[str, Any]:
    """A raw JSON task record, as callers hand it to ``save``."""
    data: dict[str, Any] = {
        "id": id,
        "title": f"Task {id}",
        "description": f"Description of {id}",
        "status": "pending",
        "dependencies": [],
    }
    data.update(overrides)
    return data


class Recorder:
    """Collects (event, payload) pairs from an EventBus."""

    def __init__(self, bus: EventBus) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []
        bus.subscribe(WILDCARD, lambda name, payload: self.events.append((name, payload)))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]


@pytest.fixture
def make_task():
    return _make_task


@pytest.fixture
def record():
    return _record


@pytest.fixture
def cfg(tmp_path: Path) -> Config:
    return Config(root=str(tmp_path))


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(bus: EventBus) -> Recorder:
    return Recorder(bus)


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage(lock_timeout=1.0)


@pytest.fixture
def repo(storage: MemoryStorage, cfg: Config, bus: EventBus) -> TaskGraphRepository:
    """Repository over in-memory storage."""
    return TaskGraphRepository(storage, cfg, notifier=bus)


@pytest.fixture
def file_repo(cfg: Config, bus: EventBus) -> TaskGraphRepository:
    """Repository over JSON files under tmp_path."""
    return TaskGraphRepository(
        JsonFileStorage(cfg.root_path, lock_timeout=2.0), cfg, notifier=bus
    )
