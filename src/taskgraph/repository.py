"""TaskGraphRepository: the task collection behind one storage document.

Every operation reloads the whole collection; every mutation runs one
locked read-modify-write cycle and bumps the stored ``version``. Two kinds
of mutators exist side by side:

* ``try_save`` / ``save`` soft-fail: validation problems come back as a
  result (or ``False``) and nothing is written.
* everything else raises a :class:`~taskgraph.errors.TaskGraphError`
  subclass (``NotFoundError``, ``InvalidStateError``, ...).

``PersistenceError`` propagates from both kinds.

Usage::

    repo = TaskGraphRepository.open(Config(root="."))
    repo.save({"id": "T001", "title": "Setup", "description": "...",
               "status": "pending", "dependencies": []})
    repo.update_progress("T001", "in_development")
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from taskgraph import events, log
from taskgraph.config import Config
from taskgraph.errors import (
    ConcurrentModificationError,
    DependencyBlockedError,
    DuplicateTaskError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from taskgraph.git_ops import extract_task_ids
from taskgraph.io_utils import read_text, write_text
from taskgraph.storage import JsonFileStorage, StoragePort
from taskgraph.tasks.graph import DependencyCheck, DependencyGraphChecker, format_cycle
from taskgraph.tasks.hierarchy import HierarchyIndex
from taskgraph.tasks.model import (
    Hierarchy,
    ProgressState,
    Task,
    TaskCollection,
    TaskStatus,
    migrate_record,
)
from taskgraph.tasks.progress import ProgressStateMachine
from taskgraph.tasks.validate import TaskValidator, validate_hierarchy


@dataclass
class SaveResult:
    saved: bool
    errors: list[str] = field(default_factory=list)
    task: Task | None = None

    def __bool__(self) -> bool:
        return self.saved


@dataclass
class _Txn:
    collection: TaskCollection
    loaded_version: int
    dirty: bool = False


def _changed_fields(old: Task | None, new: Task) -> list[str]:
    if old is None:
        return sorted(new.to_dict())
    before, after = old.to_dict(), new.to_dict()
    return sorted(k for k in before.keys() | after.keys() if before.get(k) != after.get(k))


class TaskGraphRepository:
    def __init__(
        self,
        storage: StoragePort,
        cfg: Config | None = None,
        *,
        notifier: events.Notifier | None = None,
        validator: TaskValidator | None = None,
        checker: DependencyGraphChecker | None = None,
        machine: ProgressStateMachine | None = None,
    ) -> None:
        self.storage = storage
        self.cfg = cfg or Config()
        self.directory = self.cfg.tasks_dir
        self.filename = self.cfg.tasks_file
        self.notifier: events.Notifier = notifier or events.NullNotifier()
        self.validator = validator or TaskValidator()
        self.checker = checker or DependencyGraphChecker()
        self.machine = machine or ProgressStateMachine()

    @classmethod
    def open(cls, cfg: Config, *, notifier: events.Notifier | None = None) -> TaskGraphRepository:
        """Repository over JSON files under ``cfg.root``."""
        storage = JsonFileStorage(cfg.root_path, lock_timeout=cfg.lock_timeout)
        return cls(storage, cfg, notifier=notifier)

    @property
    def location(self) -> str:
        return f"{self.directory}/{self.filename}"

    # ── loading / writing ────────────────────────────────────────

    def _read(self) -> TaskCollection:
        if not self.storage.exists(self.directory, self.filename):
            return TaskCollection()
        data = self.storage.read_json(self.directory, self.filename)
        if data is not None and not isinstance(data, dict):
            raise PersistenceError("Task store must contain a JSON object", self.location)
        try:
            return TaskCollection.from_dict(data)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise PersistenceError(f"Malformed task record: {exc!r}", self.location) from exc

    def _stored_version(self) -> int:
        if not self.storage.exists(self.directory, self.filename):
            return 0
        data = self.storage.read_json(self.directory, self.filename)
        if not isinstance(data, dict):
            return 0
        try:
            return int(data.get("version") or 0)
        except (TypeError, ValueError):
            return 0

    @contextmanager
    def _transaction(self) -> Iterator[_Txn]:
        """Locked read-modify-write; writes only if the body marks it dirty."""
        with self.storage.lock(self.directory, self.filename):
            collection = self._read()
            txn = _Txn(collection=collection, loaded_version=collection.version)
            yield txn
            if not txn.dirty:
                return
            found = self._stored_version()
            if found != txn.loaded_version:
                raise ConcurrentModificationError(self.location, txn.loaded_version, found)
            collection.version = txn.loaded_version + 1
            self.storage.write_json(self.directory, self.filename, collection.to_dict())
            log.debug(f"Task store written (version {collection.version})")

    def _emit(self, event: str, payload: dict[str, Any]) -> None:
        try:
            self.notifier.notify(event, payload)
        except Exception as exc:  # noqa: BLE001 - notification is fire-and-forget
            log.warn(f"Notification {event} failed: {exc}")

    @staticmethod
    def _locate(c: TaskCollection, task_id: str) -> tuple[int, Task]:
        idx = c.index_of(task_id)
        if idx < 0:
            raise NotFoundError(task_id)
        return idx, c.tasks[idx]

    # ── queries ──────────────────────────────────────────────────

    def load(self) -> TaskCollection:
        return self._read()

    def get_all(self) -> list[Task]:
        return self._read().tasks

    def get_by_id(self, task_id: str) -> Task | None:
        return self._read().get_task(task_id)

    def find(self, predicate: Callable[[Task], bool]) -> list[Task]:
        return [t for t in self._read().tasks if predicate(t)]

    def get_by_status(self, status: TaskStatus | str) -> list[Task]:
        return self.find(lambda t: t.status.value == getattr(status, "value", status))

    def get_by_dependency(self, task_id: str) -> list[Task]:
        return self.find(lambda t: task_id in t.dependency_ids())

    def get_by_priority(self, priority: int) -> list[Task]:
        return self.find(lambda t: t.priority == priority)

    def get_by_progress_state(self, state: ProgressState | str) -> list[Task]:
        """Tasks whose effective state matches; untracked tasks count as not_started."""
        return self.find(lambda t: t.effective_state.value == getattr(state, "value", state))

    def get_by_commit(self, commit_hash: str) -> list[Task]:
        """Tasks that have *commit_hash* linked (exact match on the stored hash)."""
        return self.find(lambda t: commit_hash in t.git_commits)

    def check_dependencies(self, task_id: str) -> DependencyCheck:
        return self.checker.check(task_id, self._read().tasks)

    def check_graph(self) -> list[str]:
        """Problems across the whole collection: every cycle and every dangling edge."""
        tasks = self._read().tasks
        errors = [format_cycle(c) for c in self.checker.find_cycles(tasks)]
        ids = {t.id for t in tasks}
        for t in tasks:
            for dep in t.dependencies:
                if dep.task_id not in ids:
                    errors.append(f"Dependency {dep.task_id} of task {t.id} not found")
        return errors

    # ── soft-fail save ───────────────────────────────────────────

    def try_save(self, task: Task | Mapping[str, Any]) -> SaveResult:
        """Validate and upsert *task*; report problems instead of raising.

        Nothing is written when validation fails or when the task's edges
        would close a dependency cycle.
        """
        result = self.validator.validate(task)
        if isinstance(task, Task):
            task_id = task.id
        else:
            task_id = task.get("id") if isinstance(task, Mapping) else None
        if not result.is_valid:
            log.problems(f"Task {task_id} not saved", result.errors)
            return SaveResult(saved=False, errors=result.errors)

        candidate = task if isinstance(task, Task) else Task.from_dict(dict(task))
        candidate = self.machine.normalize(candidate)

        with self._transaction() as txn:
            c = txn.collection
            idx = c.index_of(candidate.id)
            previous = c.tasks[idx] if idx >= 0 else None
            tasks = list(c.tasks)
            if idx >= 0:
                tasks[idx] = candidate
            else:
                tasks.append(candidate)

            cycles = self.checker.cycles_from(candidate.id, tasks)
            if cycles:
                errors = [format_cycle(cy) for cy in cycles]
                log.problems(f"Task {candidate.id} not saved", errors)
                return SaveResult(saved=False, errors=errors)

            c.tasks = tasks
            txn.dirty = True

        log.debug(f"Task {candidate.id} saved ({'updated' if previous else 'created'})")
        self._emit(
            events.TASK_SAVED,
            {
                "task_id": candidate.id,
                "created": previous is None,
                "changes": _changed_fields(previous, candidate),
            },
        )
        return SaveResult(saved=True, task=candidate)

    def save(self, task: Task | Mapping[str, Any]) -> bool:
        return self.try_save(task).saved

    # ── throwing mutators ────────────────────────────────────────

    def create(self, task: Task | Mapping[str, Any]) -> Task:
        """Add a new task; raises instead of soft-failing."""
        result = self.validator.validate(task)
        if not result.is_valid:
            raise ValidationError("Invalid task data", result.errors)
        candidate = task if isinstance(task, Task) else Task.from_dict(dict(task))
        candidate = self.machine.normalize(candidate)

        with self._transaction() as txn:
            c = txn.collection
            if c.get_task(candidate.id) is not None:
                raise DuplicateTaskError(candidate.id)
            tasks = [*c.tasks, candidate]
            cycles = self.checker.cycles_from(candidate.id, tasks)
            if cycles:
                raise ValidationError(
                    f"Task {candidate.id} would create a dependency cycle",
                    [format_cycle(cy) for cy in cycles],
                )
            c.tasks = tasks
            txn.dirty = True

        log.debug(f"Task {candidate.id} created")
        self._emit(events.TASK_CREATED, {"task_id": candidate.id, "changes": _changed_fields(None, candidate)})
        return candidate

    def update_progress(
        self,
        task_id: str,
        new_state: ProgressState | str,
        custom_percentage: int | None = None,
        *,
        force: bool = False,
    ) -> Task:
        """Move *task_id* to *new_state*.

        Raises ``NotFoundError``, ``InvalidStateError``,
        ``InvalidTransitionError``, ``ValidationError`` (percentage out of
        range) or ``DependencyBlockedError``. ``force`` skips only the
        dependency gate, never the state machine.
        """
        with self._transaction() as txn:
            c = txn.collection
            idx, task = self._locate(c, task_id)
            updated = self.machine.transition(task, new_state, custom_percentage)

            result = self.validator.validate(updated)
            if not result.is_valid:
                raise ValidationError(f"Invalid progress update for task {task_id}", result.errors)

            if not force and updated.effective_state is not ProgressState.NOT_STARTED:
                check = self.checker.check(task_id, c.tasks)
                if not check.is_valid:
                    raise DependencyBlockedError(task_id, check.errors)
            elif force:
                log.debug(f"Task {task_id}: dependency gate skipped (force)")

            c.tasks[idx] = updated
            txn.dirty = True

        before = task.effective_state.value
        after = updated.effective_state.value
        log.debug(f"Task {task_id}: {before} -> {after} ({updated.progress_percentage}%)")
        self._emit(
            events.TASK_PROGRESS_UPDATED,
            {
                "task_id": task_id,
                "changes": _changed_fields(task, updated),
                "from_state": before,
                "to_state": after,
                "progress_percentage": updated.progress_percentage,
                "status": updated.status.value,
            },
        )
        return updated

    def associate_commit(self, task_id: str, commit_hash: str) -> Task:
        """Record *commit_hash* on the task; idempotent, skips the write when present."""
        if not isinstance(commit_hash, str) or not commit_hash.strip():
            raise ValidationError("Invalid commit hash", [f"commit hash must be a non-empty string: {commit_hash!r}"])
        commit_hash = commit_hash.strip()

        with self._transaction() as txn:
            c = txn.collection
            idx, task = self._locate(c, task_id)
            if commit_hash in task.git_commits:
                log.debug(f"Task {task_id}: commit {commit_hash} already associated")
                return task
            updated = replace(task, git_commits=[*task.git_commits, commit_hash])
            c.tasks[idx] = updated
            txn.dirty = True

        self._emit(
            events.TASK_COMMIT_ASSOCIATED,
            {"task_id": task_id, "changes": ["git_commits"], "commit": commit_hash},
        )
        return updated

    def associate_commits_from_message(self, commit_hash: str, message: str) -> list[str]:
        """Link *commit_hash* to every existing task referenced as ``#Tnnn`` in *message*.

        Returns the ids newly linked. Unknown ids are skipped with a warning.
        """
        ids = extract_task_ids(message)
        if not ids:
            return []

        linked: list[str] = []
        with self._transaction() as txn:
            c = txn.collection
            for tid in ids:
                idx = c.index_of(tid)
                if idx < 0:
                    log.warn(f"Commit {commit_hash[:7]} references unknown task {tid}")
                    continue
                task = c.tasks[idx]
                if commit_hash in task.git_commits:
                    continue
                c.tasks[idx] = replace(task, git_commits=[*task.git_commits, commit_hash])
                linked.append(tid)
            txn.dirty = bool(linked)

        for tid in linked:
            self._emit(
                events.TASK_COMMIT_ASSOCIATED,
                {"task_id": tid, "changes": ["git_commits"], "commit": commit_hash},
            )
        return linked

    def delete(self, task_id: str) -> str:
        """Remove a task, then archive its record under the history directory.

        Also drops it from story membership and from the focus pointer.
        Edges pointing at it are left in place and surface as
        "not found" in dependency checks. Returns the archive file name.
        """
        with self._transaction() as txn:
            c = txn.collection
            idx, task = self._locate(c, task_id)

            record = task.to_dict()
            del c.tasks[idx]
            index = HierarchyIndex(c)
            stories = index.detach_task(task_id)
            focus_cleared = index.clear_focus_if(task_id)
            txn.dirty = True

            dependents = [t.id for t in c.tasks if task_id in t.dependency_ids()]

        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        archive = f"{task_id}-{stamp}.json"
        self.storage.write_json(self.cfg.history_path, archive, record)
        if dependents:
            log.warn(f"Tasks still depending on deleted {task_id}: {', '.join(dependents)}")
        self._emit(
            events.TASK_DELETED,
            {
                "task_id": task_id,
                "archive": archive,
                "detached_from": stories,
                "focus_cleared": focus_cleared,
                "dependents": dependents,
            },
        )
        return archive

    # ── hierarchy & focus ────────────────────────────────────────

    def get_hierarchy(self) -> Hierarchy:
        return self._read().hierarchy

    def update_hierarchy(self, hierarchy: Hierarchy | Mapping[str, Any]) -> Hierarchy:
        """Replace the hierarchy wholesale (no merge); raises ``ValidationError``."""
        if not isinstance(hierarchy, Hierarchy):
            errors = validate_hierarchy(hierarchy)
            if errors:
                raise ValidationError("Invalid task hierarchy", errors)
            hierarchy = Hierarchy.from_dict(dict(hierarchy))

        with self._transaction() as txn:
            HierarchyIndex(txn.collection).set_hierarchy(hierarchy)
            txn.dirty = True

        self._emit(
            events.HIERARCHY_UPDATED,
            {"epics": len(hierarchy.epics), "stories": len(hierarchy.stories)},
        )
        return hierarchy

    def get_current_focus(self) -> str | None:
        return self._read().current_focus

    def set_current_focus(self, task_id: str) -> str:
        with self._transaction() as txn:
            index = HierarchyIndex(txn.collection)
            previous = index.get_current_focus()
            index.set_current_focus(task_id)
            txn.dirty = previous != task_id

        self._emit(events.FOCUS_CHANGED, {"task_id": task_id, "previous": previous})
        return task_id

    # ── export / import ──────────────────────────────────────────

    def export_task(self, task_id: str, path: Path | str) -> Path:
        task = self.get_by_id(task_id)
        if task is None:
            raise NotFoundError(task_id)
        out = Path(path)
        try:
            out.parent.mkdir(parents=True, exist_ok=True)
            write_text(out, json.dumps(task.to_dict(), indent=2, ensure_ascii=False) + "\n")
        except OSError as exc:
            raise PersistenceError(f"Cannot write export: {exc}", str(out)) from exc
        return out

    def import_task(self, path: Path | str) -> Task:
        src = Path(path)
        try:
            data = json.loads(read_text(src))
        except OSError as exc:
            raise PersistenceError(f"Cannot read import file: {exc}", str(src)) from exc
        except json.JSONDecodeError as exc:
            raise PersistenceError(f"Invalid JSON at line {exc.lineno}: {exc.msg}", str(src)) from exc
        if not isinstance(data, dict):
            raise ValidationError("Invalid task data in import file", [f"expected an object in {src}"])
        return self.create(migrate_record(data))
