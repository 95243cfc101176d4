"""Fire-and-forget notifications for task changes.

The repository calls ``notify(event, payload)`` after a successful write.
Delivery is best-effort: a failing handler is logged and skipped, and never
undoes or fails the operation that triggered it.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable
from typing import Any, Protocol

from taskgraph import log

TASK_CREATED = "task:created"
TASK_SAVED = "task:saved"
TASK_DELETED = "task:deleted"
TASK_PROGRESS_UPDATED = "task:progress_updated"
TASK_COMMIT_ASSOCIATED = "task:commit_associated"
FOCUS_CHANGED = "task:focus_changed"
HIERARCHY_UPDATED = "task:hierarchy_updated"

ALL_EVENTS: tuple[str, ...] = (
    TASK_CREATED,
    TASK_SAVED,
    TASK_DELETED,
    TASK_PROGRESS_UPDATED,
    TASK_COMMIT_ASSOCIATED,
    FOCUS_CHANGED,
    HIERARCHY_UPDATED,
)

WILDCARD = "*"

Handler = Callable[[str, dict[str, Any]], None]


class Notifier(Protocol):
    def notify(self, event: str, payload: dict[str, Any]) -> None: ...


class NullNotifier:
    def notify(self, event: str, payload: dict[str, Any]) -> None:
        log.debug(f"event {event}: {payload}")


class EventBus:
    """Synchronous in-process pub/sub.

    Usage::

        bus = EventBus()
        bus.subscribe(TASK_PROGRESS_UPDATED, lambda name, p: print(p["task_id"]))
        bus.subscribe("*", audit_handler)   # every event
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, event: str, handler: Handler) -> Callable[[], None]:
        """Register *handler*; returns a function that unsubscribes it."""
        self._handlers[event].append(handler)

        def _unsubscribe() -> None:
            if handler in self._handlers[event]:
                self._handlers[event].remove(handler)

        return _unsubscribe

    def handlers(self, event: str) -> list[Handler]:
        return [*self._handlers.get(event, []), *self._handlers.get(WILDCARD, [])]

    def notify(self, event: str, payload: dict[str, Any]) -> None:
        log.debug(f"event {event}: {payload}")
        for handler in self.handlers(event):
            try:
                handler(event, payload)
            except Exception as exc:  # noqa: BLE001 - handlers must not break writes
                log.warn(f"Handler for {event} failed: {exc}")
