"""Configuration defaults, env vars, and runtime options for taskgraph."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


VERSION = "0.1.0"

DEFAULT_TASKS_DIR = "ai-context/tasks"
DEFAULT_TASKS_FILE = "current-tasks.json"
DEFAULT_HISTORY_DIR = "task-history"
DEFAULT_LOCK_TIMEOUT = 30.0


@dataclass
class Config:
    """Runtime configuration for a task store."""

    # Storage layout
    root: str = ""
    tasks_dir: str = DEFAULT_TASKS_DIR
    tasks_file: str = DEFAULT_TASKS_FILE
    history_dir: str = DEFAULT_HISTORY_DIR

    # Concurrency
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT

    # Misc
    verbose: bool = False

    def __post_init__(self) -> None:
        if not self.root:
            self.root = os.environ.get("TASKGRAPH_ROOT") or str(Path.cwd())
        if self.tasks_dir == DEFAULT_TASKS_DIR:
            self.tasks_dir = os.environ.get("TASKGRAPH_TASKS_DIR") or DEFAULT_TASKS_DIR
        if self.tasks_file == DEFAULT_TASKS_FILE:
            self.tasks_file = os.environ.get("TASKGRAPH_TASKS_FILE") or DEFAULT_TASKS_FILE
        if self.lock_timeout <= 0:
            raise ValueError(f"lock_timeout must be positive, got {self.lock_timeout}")

    @property
    def root_path(self) -> Path:
        return Path(self.root)

    @property
    def history_path(self) -> str:
        """History directory relative to the storage root."""
        return f"{self.tasks_dir}/{self.history_dir}"


def resolve_repo_root() -> Path:
    """Return the git repository root, falling back to cwd."""
    import subprocess

    try:
        result = subprocess.run(
            ["git", "rev-parse", "--show-toplevel"],
            capture_output=True,
            text=True,
            check=True,
        )
        return Path(result.stdout.strip())
    except (subprocess.CalledProcessError, FileNotFoundError):
        return Path.cwd()
