"""Task, dependency, and hierarchy data models shared by every component."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

TASK_ID_PATTERN = re.compile(r"^T[0-9]{3}$")


def is_task_id(value: object) -> bool:
    """Return ``True`` when *value* is a string of the form ``T`` + 3 digits."""
    return isinstance(value, str) and TASK_ID_PATTERN.fullmatch(value) is not None


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"


class ProgressState(str, Enum):
    NOT_STARTED = "not_started"
    PLANNING = "planning"
    IN_DEVELOPMENT = "in_development"
    IMPLEMENTATION_COMPLETE = "implementation_complete"
    IN_REVIEW = "in_review"
    REVIEW_COMPLETE = "review_complete"
    IN_TESTING = "in_testing"
    COMPLETED = "completed"


class DependencyType(str, Enum):
    STRONG = "strong"
    WEAK = "weak"


@dataclass
class Dependency:
    task_id: str
    type: DependencyType = DependencyType.STRONG

    def __post_init__(self) -> None:
        self.type = DependencyType(self.type)

    @property
    def is_strong(self) -> bool:
        return self.type is DependencyType.STRONG

    def to_dict(self) -> dict[str, str]:
        return {"task_id": self.task_id, "type": self.type.value}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | str) -> Dependency:
        # A bare id and an omitted type are both gating edges.
        if isinstance(data, str):
            return cls(task_id=data)
        return cls(task_id=data["task_id"], type=data.get("type") or DependencyType.STRONG)


_TASK_KEYS = (
    "id",
    "title",
    "description",
    "status",
    "priority",
    "estimated_hours",
    "progress_percentage",
    "progress_state",
    "dependencies",
    "git_commits",
)


@dataclass
class Task:
    """A single work item.

    ``progress_state`` is ``None`` until progress tracking is used for the
    task; the effective state is then ``not_started``. Keys the model does
    not know about are kept in ``extra`` so stored records round-trip.
    """

    id: str
    title: str = ""
    description: str = ""
    status: TaskStatus = TaskStatus.PENDING
    priority: int = 3
    estimated_hours: float | None = None
    progress_percentage: int = 0
    progress_state: ProgressState | None = None
    dependencies: list[Dependency] = field(default_factory=list)
    git_commits: list[str] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.status = TaskStatus(self.status)
        if self.progress_state is not None:
            self.progress_state = ProgressState(self.progress_state)

    @property
    def effective_state(self) -> ProgressState:
        return self.progress_state or ProgressState.NOT_STARTED

    @property
    def is_completed(self) -> bool:
        return self.status is TaskStatus.COMPLETED

    def dependency_ids(self) -> list[str]:
        return [d.task_id for d in self.dependencies]

    def strong_dependencies(self) -> list[Dependency]:
        return [d for d in self.dependencies if d.is_strong]

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = dict(self.extra)
        data.update(
            {
                "id": self.id,
                "title": self.title,
                "description": self.description,
                "status": self.status.value,
                "priority": self.priority,
                "progress_percentage": self.progress_percentage,
                "dependencies": [d.to_dict() for d in self.dependencies],
                "git_commits": list(self.git_commits),
            }
        )
        if self.estimated_hours is not None:
            data["estimated_hours"] = self.estimated_hours
        if self.progress_state is not None:
            data["progress_state"] = self.progress_state.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Task:
        """Build a Task from a JSON record.

        Raises ``KeyError``/``ValueError``/``TypeError`` on malformed input;
        run the validator first when the record comes from outside.
        """
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            description=data.get("description", ""),
            status=data.get("status") or TaskStatus.PENDING,
            priority=data.get("priority", 3),
            estimated_hours=data.get("estimated_hours"),
            progress_percentage=data.get("progress_percentage", 0),
            progress_state=data.get("progress_state") or None,
            dependencies=[Dependency.from_dict(d) for d in data.get("dependencies") or []],
            git_commits=list(data.get("git_commits") or []),
            extra={k: v for k, v in data.items() if k not in _TASK_KEYS},
        )


_LEGACY_PROGRESS = {
    TaskStatus.COMPLETED.value: (100, ProgressState.COMPLETED.value),
    TaskStatus.IN_PROGRESS.value: (50, ProgressState.IN_DEVELOPMENT.value),
}


def migrate_record(data: dict[str, Any]) -> dict[str, Any]:
    """Upgrade a task record written by the older, pre-progress format.

    Bare string dependencies become strong edges. A record without
    ``progress_percentage`` predates progress tracking: its percentage and
    state are seeded from ``status`` and missing defaults are filled in.
    Current-format records come back unchanged apart from the dependency
    rewrite. Returns a new dict; *data* is not mutated.
    """
    record = dict(data)
    deps = record.get("dependencies")
    if isinstance(deps, list):
        record["dependencies"] = [
            {"task_id": d, "type": DependencyType.STRONG.value} if isinstance(d, str) else d for d in deps
        ]
    if "progress_percentage" not in record:
        percentage, state = _LEGACY_PROGRESS.get(
            record.get("status"), (0, ProgressState.NOT_STARTED.value)
        )
        record["progress_percentage"] = percentage
        record.setdefault("progress_state", state)
    record.setdefault("priority", 3)
    if not isinstance(record.get("git_commits"), list):
        record["git_commits"] = []
    return record


@dataclass
class Story:
    story_id: str
    title: str = ""
    tasks: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"story_id": self.story_id, "title": self.title, "tasks": list(self.tasks)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Story:
        return cls(
            story_id=data["story_id"],
            title=data.get("title", ""),
            tasks=list(data.get("tasks") or []),
        )


@dataclass
class Epic:
    epic_id: str
    title: str = ""
    stories: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"epic_id": self.epic_id, "title": self.title, "stories": list(self.stories)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Epic:
        return cls(
            epic_id=data["epic_id"],
            title=data.get("title", ""),
            stories=list(data.get("stories") or []),
        )


@dataclass
class Hierarchy:
    """Epic -> story -> task containment, by id reference only."""

    epics: list[Epic] = field(default_factory=list)
    stories: list[Story] = field(default_factory=list)

    def get_story(self, story_id: str) -> Story | None:
        for s in self.stories:
            if s.story_id == story_id:
                return s
        return None

    def get_epic(self, epic_id: str) -> Epic | None:
        for e in self.epics:
            if e.epic_id == epic_id:
                return e
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "epics": [e.to_dict() for e in self.epics],
            "stories": [s.to_dict() for s in self.stories],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Hierarchy:
        if not data:
            return cls()
        return cls(
            epics=[Epic.from_dict(e) for e in data.get("epics") or []],
            stories=[Story.from_dict(s) for s in data.get("stories") or []],
        )


@dataclass
class TaskCollection:
    """The whole stored document: tasks, hierarchy, focus, and write version."""

    tasks: list[Task] = field(default_factory=list)
    hierarchy: Hierarchy = field(default_factory=Hierarchy)
    current_focus: str | None = None
    version: int = 0

    def get_task(self, task_id: str) -> Task | None:
        for t in self.tasks:
            if t.id == task_id:
                return t
        return None

    def index_of(self, task_id: str) -> int:
        for i, t in enumerate(self.tasks):
            if t.id == task_id:
                return i
        return -1

    def task_ids(self) -> list[str]:
        return [t.id for t in self.tasks]

    def to_dict(self) -> dict[str, Any]:
        return {
            "tasks": [t.to_dict() for t in self.tasks],
            "task_hierarchy": self.hierarchy.to_dict(),
            "current_focus": self.current_focus,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> TaskCollection:
        if not data:
            return cls()
        return cls(
            tasks=[Task.from_dict(migrate_record(t)) for t in data.get("tasks") or []],
            hierarchy=Hierarchy.from_dict(data.get("task_hierarchy")),
            current_focus=data.get("current_focus"),
            version=int(data.get("version") or 0),
        )
