"""Progress state machine: states, default percentages, allowed transitions.

::

    not_started -> planning -> in_development -> implementation_complete
        -> in_review -> review_complete -> in_testing -> completed

``in_review`` and ``in_testing`` may fall back to ``in_development``;
``not_started`` may skip planning. ``completed`` is terminal. The coarse
``status`` is always derived from the state, never set alongside it.
"""

from __future__ import annotations

from dataclasses import replace
from typing import NamedTuple

from taskgraph.errors import InvalidStateError, InvalidTransitionError
from taskgraph.tasks.model import ProgressState, Task, TaskStatus

PS = ProgressState


class StateInfo(NamedTuple):
    description: str
    default_percentage: int


PROGRESS_STATES: dict[ProgressState, StateInfo] = {
    PS.NOT_STARTED: StateInfo("Work has not started", 0),
    PS.PLANNING: StateInfo("Planning the task", 10),
    PS.IN_DEVELOPMENT: StateInfo("Under development", 30),
    PS.IMPLEMENTATION_COMPLETE: StateInfo("Implementation finished", 60),
    PS.IN_REVIEW: StateInfo("In code review", 70),
    PS.REVIEW_COMPLETE: StateInfo("Review finished", 80),
    PS.IN_TESTING: StateInfo("In testing", 90),
    PS.COMPLETED: StateInfo("Task completed", 100),
}

STATE_TRANSITIONS: dict[ProgressState, frozenset[ProgressState]] = {
    PS.NOT_STARTED: frozenset({PS.PLANNING, PS.IN_DEVELOPMENT}),
    PS.PLANNING: frozenset({PS.IN_DEVELOPMENT}),
    PS.IN_DEVELOPMENT: frozenset({PS.IMPLEMENTATION_COMPLETE, PS.IN_REVIEW}),
    PS.IMPLEMENTATION_COMPLETE: frozenset({PS.IN_REVIEW}),
    PS.IN_REVIEW: frozenset({PS.REVIEW_COMPLETE, PS.IN_DEVELOPMENT}),
    PS.REVIEW_COMPLETE: frozenset({PS.IN_TESTING}),
    PS.IN_TESTING: frozenset({PS.COMPLETED, PS.IN_DEVELOPMENT}),
    PS.COMPLETED: frozenset(),
}

_ORDER = list(PROGRESS_STATES)


def parse_state(value: ProgressState | str, task_id: str | None = None) -> ProgressState:
    """Coerce *value* to a :class:`ProgressState` or raise ``InvalidStateError``."""
    if isinstance(value, ProgressState):
        return value
    try:
        return ProgressState(value)
    except ValueError:
        raise InvalidStateError(value, task_id) from None


def derive_status(state: ProgressState) -> TaskStatus:
    if state is PS.COMPLETED:
        return TaskStatus.COMPLETED
    if state is PS.NOT_STARTED:
        return TaskStatus.PENDING
    return TaskStatus.IN_PROGRESS


def default_percentage(state: ProgressState) -> int:
    return PROGRESS_STATES[state].default_percentage


def allowed_transitions(state: ProgressState) -> list[ProgressState]:
    """Targets reachable from *state*, in lifecycle order."""
    targets = STATE_TRANSITIONS[state]
    return [s for s in _ORDER if s in targets]


def next_state(state: ProgressState | None) -> ProgressState | None:
    """The forward step from *state*: the earliest later state it may move to.

    An untracked task (``None``) starts at ``not_started``; ``completed``
    has no next state.
    """
    if state is None:
        return PS.NOT_STARTED
    position = _ORDER.index(state)
    for target in allowed_transitions(state):
        if _ORDER.index(target) > position:
            return target
    return None


def can_transition(current: ProgressState, target: ProgressState) -> bool:
    """Self-transitions are always allowed."""
    return current is target or target in STATE_TRANSITIONS[current]


class ProgressStateMachine:
    """Apply validated progress transitions to tasks.

    Transitions return a new :class:`Task`; the input is never mutated.
    """

    def transition(
        self,
        task: Task,
        new_state: ProgressState | str,
        custom_percentage: int | None = None,
    ) -> Task:
        target = parse_state(new_state, task.id)
        current = task.effective_state
        if not can_transition(current, target):
            raise InvalidTransitionError(
                current.value,
                target.value,
                allowed=[s.value for s in allowed_transitions(current)],
                task_id=task.id,
            )

        pct = custom_percentage if custom_percentage is not None else default_percentage(target)
        return replace(
            task,
            progress_state=target,
            progress_percentage=pct,
            status=derive_status(target),
        )

    def normalize(self, task: Task) -> Task:
        """Re-derive ``status`` for a task that has progress tracking in use."""
        if task.progress_state is None:
            return task
        status = derive_status(task.progress_state)
        if status is task.status:
            return task
        return replace(task, status=status)


_default_machine = ProgressStateMachine()


def transition(task: Task, new_state: ProgressState | str, custom_percentage: int | None = None) -> Task:
    return _default_machine.transition(task, new_state, custom_percentage)
