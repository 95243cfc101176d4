"""Exception hierarchy for task graph operations.

Every error carries the identifiers needed to render it without another
lookup (task id, attempted state, offending path).
"""

from __future__ import annotations

from collections.abc import Iterable


class TaskGraphError(Exception):
    """Base class for all taskgraph errors."""


class NotFoundError(TaskGraphError):
    """A referenced task (or other entity) does not exist."""

    def __init__(self, identifier: str, kind: str = "Task") -> None:
        self.identifier = identifier
        self.kind = kind
        super().__init__(f"{kind} {identifier} not found")


class InvalidStateError(TaskGraphError):
    """A progress state value is not one of the known states."""

    def __init__(self, state: object, task_id: str | None = None) -> None:
        self.state = state
        self.task_id = task_id
        where = f" for task {task_id}" if task_id else ""
        super().__init__(f"Invalid progress state{where}: {state!r}")


class InvalidTransitionError(TaskGraphError):
    """The requested progress state is not reachable from the current one."""

    def __init__(
        self,
        current: str,
        target: str,
        allowed: Iterable[str] = (),
        task_id: str | None = None,
    ) -> None:
        self.current = current
        self.target = target
        self.allowed = tuple(allowed)
        self.task_id = task_id
        allowed_str = ", ".join(self.allowed) if self.allowed else "none"
        where = f"Task {task_id}: " if task_id else ""
        super().__init__(
            f"{where}transition from {current} to {target} is not allowed "
            f"(allowed from {current}: {allowed_str})"
        )


class DependencyBlockedError(TaskGraphError):
    """A task cannot advance because its dependency check failed."""

    def __init__(self, task_id: str, errors: Iterable[str]) -> None:
        self.task_id = task_id
        self.errors = list(errors)
        super().__init__(f"Task {task_id} is blocked: {'; '.join(self.errors)}")


class DuplicateTaskError(TaskGraphError):
    """A task id is already taken in the collection."""

    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"Task {task_id} already exists")


class ValidationError(TaskGraphError):
    """Raised by throwing operations when input fails validation.

    ``validate`` and ``save`` never raise this; they return the error list.
    """

    def __init__(self, message: str, errors: Iterable[str] = ()) -> None:
        self.errors = list(errors)
        full = f"{message}: {', '.join(self.errors)}" if self.errors else message
        super().__init__(full)


class PersistenceError(TaskGraphError):
    """Reading or writing the task store failed."""

    def __init__(self, message: str, path: str | None = None) -> None:
        self.path = path
        super().__init__(f"{message} ({path})" if path else message)


class ConcurrentModificationError(PersistenceError):
    """The stored collection changed between our read and our write."""

    def __init__(self, path: str, expected: int, found: int) -> None:
        self.expected = expected
        self.found = found
        super().__init__(
            f"Task store was modified concurrently (expected version {expected}, found {found})",
            path,
        )


class LockTimeout(PersistenceError):
    """The store lock could not be acquired in time."""

    def __init__(self, path: str, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout:g}s waiting for lock", path)
