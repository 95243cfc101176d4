"""Field-level validation of task records and the task hierarchy.

Validation works on plain JSON records so malformed input (a bad id, an
unknown status) can be reported instead of failing at model construction.
All rules run; errors accumulate rather than stopping at the first one.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from taskgraph.tasks.model import (
    DependencyType,
    Hierarchy,
    ProgressState,
    Task,
    TaskStatus,
    is_task_id,
)

REQUIRED_FIELDS: tuple[str, ...] = ("id", "title", "description", "status", "dependencies")
MAX_TITLE_LENGTH = 200

_STATUSES = frozenset(s.value for s in TaskStatus)
_STATES = frozenset(s.value for s in ProgressState)
_DEP_TYPES = frozenset(t.value for t in DependencyType)


@dataclass
class ValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.is_valid

    @classmethod
    def from_errors(cls, errors: list[str]) -> ValidationResult:
        return cls(is_valid=not errors, errors=errors)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _check_dependencies(deps: Any, errors: list[str]) -> None:
    if not isinstance(deps, list):
        errors.append("dependencies must be a list")
        return
    for i, dep in enumerate(deps):
        if not isinstance(dep, Mapping):
            errors.append(f"dependencies[{i}] is not an object")
            continue
        dep_id = dep.get("task_id")
        if not is_task_id(dep_id):
            errors.append(f"dependencies[{i}] has invalid task_id: {dep_id!r}")
        dep_type = dep.get("type")
        if dep_type is not None and dep_type not in _DEP_TYPES:
            errors.append(f"dependencies[{i}] has invalid type: {dep_type!r}")


class TaskValidator:
    """Validate a single task record.

    ``validate`` is pure and never raises; it accepts a :class:`Task` or a
    mapping shaped like the stored JSON record.
    """

    def validate(self, task: Task | Mapping[str, Any] | None) -> ValidationResult:
        if isinstance(task, Task):
            record: Mapping[str, Any] = task.to_dict()
        elif isinstance(task, Mapping):
            record = task
        else:
            return ValidationResult.from_errors([f"Task record must be an object, got {type(task).__name__}"])

        errors: list[str] = []

        for name in REQUIRED_FIELDS:
            if name not in record or _missing(record[name]):
                errors.append(f"Missing required field: {name}")

        task_id = record.get("id")
        if not _missing(task_id) and not is_task_id(task_id):
            errors.append(f"Invalid task id format: {task_id!r} (expected T followed by 3 digits)")

        for name in ("title", "description"):
            value = record.get(name)
            if value is not None and not isinstance(value, str):
                errors.append(f"{name} must be a string")

        title = record.get("title")
        if isinstance(title, str) and len(title) > MAX_TITLE_LENGTH:
            errors.append(f"Title must be at most {MAX_TITLE_LENGTH} characters (got {len(title)})")

        status = record.get("status")
        if not _missing(status) and status not in _STATUSES:
            errors.append(f"Invalid status: {status!r}")

        if record.get("priority") is not None:
            priority = record["priority"]
            if not _is_int(priority):
                errors.append(f"Priority must be an integer: {priority!r}")
            elif not 1 <= priority <= 5:
                errors.append(f"Invalid priority (1-5): {priority}")

        if record.get("estimated_hours") is not None:
            hours = record["estimated_hours"]
            if not _is_number(hours) or hours < 0:
                errors.append(f"Invalid estimated_hours: {hours!r}")

        if record.get("progress_percentage") is not None:
            pct = record["progress_percentage"]
            if not _is_int(pct) or not 0 <= pct <= 100:
                errors.append(f"Invalid progress_percentage (0-100): {pct!r}")

        state = record.get("progress_state")
        if state is not None and state not in _STATES:
            errors.append(f"Invalid progress_state: {state!r}")

        if record.get("dependencies") is not None:
            _check_dependencies(record["dependencies"], errors)

        commits = record.get("git_commits")
        if commits is not None and (
            not isinstance(commits, list) or not all(isinstance(c, str) and c for c in commits)
        ):
            errors.append("git_commits must be a list of commit hashes")

        return ValidationResult.from_errors(errors)


_default_validator = TaskValidator()


def validate_task(task: Task | Mapping[str, Any] | None) -> ValidationResult:
    """Validate *task* with the default validator."""
    return _default_validator.validate(task)


def validate_hierarchy(
    hierarchy: Hierarchy | Mapping[str, Any] | None,
    task_ids: Iterable[str] | None = None,
) -> list[str]:
    """Return structural and referential errors for a hierarchy.

    When *task_ids* is given, every ``story.tasks`` entry must name one of
    them. Every ``epic.stories`` entry must name a story in the same
    hierarchy, and epic/story ids must be unique.
    """
    if hierarchy is None:
        return ["Hierarchy is missing"]
    if isinstance(hierarchy, Mapping):
        errors: list[str] = []
        for key in ("epics", "stories"):
            if key in hierarchy and not isinstance(hierarchy[key], list):
                errors.append(f"{key} must be a list")
        if errors:
            return errors
        try:
            hierarchy = Hierarchy.from_dict(dict(hierarchy))
        except (KeyError, TypeError, AttributeError) as exc:
            return [f"Malformed hierarchy entry: {exc}"]

    errors = []
    known_tasks = set(task_ids) if task_ids is not None else None

    story_ids: set[str] = set()
    for story in hierarchy.stories:
        if story.story_id in story_ids:
            errors.append(f"Duplicate story id: {story.story_id}")
        story_ids.add(story.story_id)
        if known_tasks is None:
            continue
        for tid in story.tasks:
            if tid not in known_tasks:
                errors.append(f"Story {story.story_id} references unknown task {tid}")

    epic_ids: set[str] = set()
    for epic in hierarchy.epics:
        if epic.epic_id in epic_ids:
            errors.append(f"Duplicate epic id: {epic.epic_id}")
        epic_ids.add(epic.epic_id)
        for sid in epic.stories:
            if sid not in story_ids:
                errors.append(f"Epic {epic.epic_id} references unknown story {sid}")

    return errors
