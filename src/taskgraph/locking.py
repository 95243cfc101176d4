"""File locking for the task store.

Uses flock so separate processes serialize their read-modify-write cycles;
a per-path thread lock does the same for threads of one process, since
flock alone does not exclude threads sharing a descriptor table.
"""

from __future__ import annotations

import fcntl
import os
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from taskgraph import log
from taskgraph.errors import LockTimeout

POLL_INTERVAL = 0.05

_thread_locks: dict[str, threading.Lock] = {}
_registry_guard = threading.Lock()


def _thread_lock(lock_file: Path) -> threading.Lock:
    key = str(lock_file.resolve())
    with _registry_guard:
        lock = _thread_locks.get(key)
        if lock is None:
            lock = _thread_locks[key] = threading.Lock()
        return lock


@contextmanager
def file_lock(lock_file: Path, timeout: float) -> Iterator[None]:
    """Hold an exclusive lock on *lock_file* for the duration of the block.

    Not re-entrant. Raises ``LockTimeout`` after *timeout* seconds.
    """
    lock_file.parent.mkdir(parents=True, exist_ok=True)
    tlock = _thread_lock(lock_file)
    if not tlock.acquire(timeout=timeout):
        raise LockTimeout(str(lock_file), timeout)

    try:
        fd = open(lock_file, "w", encoding="utf-8")
        start = time.monotonic()
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() - start > timeout:
                    fd.close()
                    raise LockTimeout(str(lock_file), timeout) from None
                time.sleep(POLL_INTERVAL)

        try:
            fd.write(f"{os.getpid()}\n")
            fd.flush()
            log.debug(f"Lock acquired: {lock_file}")
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            fd.close()
            log.debug(f"Lock released: {lock_file}")
    finally:
        tlock.release()
