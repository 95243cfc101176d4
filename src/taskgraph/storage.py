"""Key/value JSON storage backing the task repository.

A store addresses documents by ``(directory, filename)``. Two backends:
``JsonFileStorage`` writes files under a root directory, ``MemoryStorage``
keeps deep copies in a dict (embedding and tests). Every failure surfaces as
``PersistenceError``; nothing here retries.
"""

from __future__ import annotations

import copy
import json
import threading
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from pathlib import Path
from typing import Any, Protocol

from taskgraph import log
from taskgraph.config import DEFAULT_LOCK_TIMEOUT
from taskgraph.errors import LockTimeout, PersistenceError
from taskgraph.io_utils import atomic_write_text, read_text
from taskgraph.locking import file_lock


class StoragePort(Protocol):
    def exists(self, directory: str, filename: str) -> bool: ...

    def read_json(self, directory: str, filename: str) -> Any | None: ...

    def write_json(self, directory: str, filename: str, data: Any) -> bool: ...

    def ensure_directory(self, directory: str) -> None: ...

    def lock(self, directory: str, filename: str) -> AbstractContextManager[None]: ...


class JsonFileStorage:
    """JSON documents as UTF-8 files under *root*."""

    def __init__(self, root: Path | str, *, lock_timeout: float = DEFAULT_LOCK_TIMEOUT) -> None:
        self.root = Path(root)
        self.lock_timeout = lock_timeout

    def path(self, directory: str, filename: str) -> Path:
        return self.root / directory / filename

    def exists(self, directory: str, filename: str) -> bool:
        return self.path(directory, filename).is_file()

    def ensure_directory(self, directory: str) -> None:
        target = self.root / directory
        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PersistenceError(f"Cannot create directory: {exc}", str(target)) from exc

    def read_json(self, directory: str, filename: str) -> Any | None:
        p = self.path(directory, filename)
        if not p.is_file():
            return None
        try:
            return json.loads(read_text(p))
        except json.JSONDecodeError as exc:
            raise PersistenceError(f"Invalid JSON at line {exc.lineno}: {exc.msg}", str(p)) from exc
        except OSError as exc:
            raise PersistenceError(f"Cannot read file: {exc}", str(p)) from exc

    def write_json(self, directory: str, filename: str, data: Any) -> bool:
        p = self.path(directory, filename)
        self.ensure_directory(directory)
        try:
            atomic_write_text(p, json.dumps(data, indent=2, ensure_ascii=False) + "\n")
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceError(f"Cannot write file: {exc}", str(p)) from exc
        log.debug(f"Wrote {p}")
        return True

    def lock(self, directory: str, filename: str) -> AbstractContextManager[None]:
        return file_lock(self.path(directory, f".{filename}.lock"), self.lock_timeout)


class MemoryStorage:
    """In-process store; documents are deep-copied in and out."""

    def __init__(self, *, lock_timeout: float = DEFAULT_LOCK_TIMEOUT) -> None:
        self.documents: dict[tuple[str, str], Any] = {}
        self.directories: set[str] = set()
        self.writes = 0
        self.lock_timeout = lock_timeout
        self._lock = threading.Lock()

    def exists(self, directory: str, filename: str) -> bool:
        return (directory, filename) in self.documents

    def ensure_directory(self, directory: str) -> None:
        self.directories.add(directory)

    def read_json(self, directory: str, filename: str) -> Any | None:
        return copy.deepcopy(self.documents.get((directory, filename)))

    def write_json(self, directory: str, filename: str, data: Any) -> bool:
        try:
            # Same serializability contract as the file backend.
            json.dumps(data)
        except (TypeError, ValueError) as exc:
            raise PersistenceError(f"Cannot serialize document: {exc}", f"{directory}/{filename}") from exc
        self.directories.add(directory)
        self.documents[(directory, filename)] = copy.deepcopy(data)
        self.writes += 1
        return True

    @contextmanager
    def lock(self, directory: str, filename: str) -> Iterator[None]:
        if not self._lock.acquire(timeout=self.lock_timeout):
            raise LockTimeout(f"{directory}/{filename}", self.lock_timeout)
        try:
            yield
        finally:
            self._lock.release()
