"""Dependency graph checks: cycle detection and strong-dependency gating.

Traversal is a depth-first walk that marks each node UNVISITED, IN_PROGRESS
or DONE. IN_PROGRESS nodes are exactly the current DFS path, so meeting one
again means the edge just followed closes a cycle. Strong and weak edges are
traversed alike; only the gating pass looks at edge type.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum

from taskgraph.tasks.model import Task, TaskStatus


class Mark(Enum):
    UNVISITED = "unvisited"
    IN_PROGRESS = "in_progress"
    DONE = "done"


@dataclass
class DependencyCheck:
    """Result of :func:`check_dependencies`.

    ``errors`` holds every problem as a renderable message; the structured
    fields expose the same findings by kind.
    """

    is_valid: bool
    errors: list[str] = field(default_factory=list)
    cycles: list[list[str]] = field(default_factory=list)
    missing: list[tuple[str, str]] = field(default_factory=list)
    incomplete: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.is_valid


def format_cycle(path: list[str]) -> str:
    return f"Dependency cycle detected: {' -> '.join(path)}"


def _index(tasks: Iterable[Task] | Mapping[str, Task]) -> dict[str, Task]:
    if isinstance(tasks, Mapping):
        return dict(tasks)
    index: dict[str, Task] = {}
    for t in tasks:
        if not isinstance(t, Task):
            raise TypeError(f"expected Task, got {type(t).__name__}")
        index[t.id] = t
    return index


class DependencyGraphChecker:
    """Cycle detection and gating over a full task set."""

    def _walk(
        self,
        start: str,
        index: dict[str, Task],
        marks: dict[str, Mark],
        cycles: list[list[str]],
        missing: list[tuple[str, str]],
    ) -> None:
        """Iterative DFS from *start*, appending findings to the given lists."""
        if marks.get(start, Mark.UNVISITED) is not Mark.UNVISITED:
            return
        path: list[str] = [start]
        marks[start] = Mark.IN_PROGRESS
        stack: list[Iterator[str]] = [iter(index[start].dependency_ids())]

        while stack:
            dep_id = next(stack[-1], None)
            if dep_id is None:
                marks[path.pop()] = Mark.DONE
                stack.pop()
                continue

            mark = marks.get(dep_id, Mark.UNVISITED)
            if mark is Mark.IN_PROGRESS:
                cycles.append(path[path.index(dep_id):] + [dep_id])
                continue
            if mark is Mark.DONE:
                continue
            if dep_id not in index:
                edge = (path[-1], dep_id)
                if edge not in missing:
                    missing.append(edge)
                continue

            marks[dep_id] = Mark.IN_PROGRESS
            path.append(dep_id)
            stack.append(iter(index[dep_id].dependency_ids()))

    def cycles_from(self, task_id: str, tasks: Iterable[Task] | Mapping[str, Task]) -> list[list[str]]:
        """Return the cycles reachable from *task_id*."""
        index = _index(tasks)
        cycles: list[list[str]] = []
        if task_id in index:
            self._walk(task_id, index, {}, cycles, [])
        return cycles

    def find_cycles(self, tasks: Iterable[Task] | Mapping[str, Task]) -> list[list[str]]:
        """Return every cycle found by walking from each task in turn.

        Marks are shared across starts, so a cycle is reported once.
        """
        index = _index(tasks)
        marks: dict[str, Mark] = {}
        cycles: list[list[str]] = []
        for tid in index:
            self._walk(tid, index, marks, cycles, [])
        return cycles

    def check(self, task_id: str, tasks: Iterable[Task] | Mapping[str, Task]) -> DependencyCheck:
        """Check *task_id* for cycles, missing targets and incomplete strong deps.

        Reports data problems in the result; raises only ``TypeError`` for
        arguments of the wrong type.
        """
        if not isinstance(task_id, str):
            raise TypeError(f"task_id must be a string, got {type(task_id).__name__}")
        index = _index(tasks)

        task = index.get(task_id)
        if task is None:
            return DependencyCheck(is_valid=False, errors=[f"Task {task_id} not found"])

        cycles: list[list[str]] = []
        missing: list[tuple[str, str]] = []
        self._walk(task_id, index, {}, cycles, missing)

        errors = [format_cycle(c) for c in cycles]
        errors += [f"Dependency {dst} of task {src} not found" for src, dst in missing]

        incomplete: list[str] = []
        for dep in task.strong_dependencies():
            target = index.get(dep.task_id)
            if target is None or dep.task_id in incomplete:
                continue
            if target.status is not TaskStatus.COMPLETED:
                incomplete.append(dep.task_id)
                errors.append(
                    f"Strong dependency {dep.task_id} of task {task_id} is not yet completed "
                    f"(status: {target.status.value})"
                )

        return DependencyCheck(
            is_valid=not errors,
            errors=errors,
            cycles=cycles,
            missing=missing,
            incomplete=incomplete,
        )


_default_checker = DependencyGraphChecker()


def check_dependencies(task_id: str, tasks: Iterable[Task] | Mapping[str, Task]) -> DependencyCheck:
    return _default_checker.check(task_id, tasks)


def find_cycle(tasks: Iterable[Task] | Mapping[str, Task]) -> list[str]:
    """Return the first cycle path found, or an empty list."""
    cycles = _default_checker.find_cycles(tasks)
    return cycles[0] if cycles else []
