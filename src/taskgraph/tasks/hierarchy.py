"""Epic/story/task containment and the current-focus pointer."""

from __future__ import annotations

from taskgraph.errors import NotFoundError, ValidationError
from taskgraph.tasks.model import Epic, Hierarchy, Story, TaskCollection
from taskgraph.tasks.validate import validate_hierarchy


class HierarchyIndex:
    """Hierarchy and focus bookkeeping over one loaded :class:`TaskCollection`.

    Membership is stored by id only, so reverse lookups scan the referencing
    list. Mutations apply to the wrapped collection; persisting it is the
    caller's job.
    """

    def __init__(self, collection: TaskCollection) -> None:
        self._c = collection

    # ── hierarchy ────────────────────────────────────────────────

    def get_hierarchy(self) -> Hierarchy:
        return self._c.hierarchy

    def validate(self, hierarchy: Hierarchy) -> list[str]:
        return validate_hierarchy(hierarchy, self._c.task_ids())

    def set_hierarchy(self, hierarchy: Hierarchy) -> Hierarchy:
        """Replace the whole hierarchy; no partial merge.

        Raises ``ValidationError`` when a story names an unknown task or an
        epic names an unknown story.
        """
        errors = self.validate(hierarchy)
        if errors:
            raise ValidationError("Invalid task hierarchy", errors)
        self._c.hierarchy = hierarchy
        return hierarchy

    def story_for_task(self, task_id: str) -> Story | None:
        for story in self._c.hierarchy.stories:
            if task_id in story.tasks:
                return story
        return None

    def epic_for_story(self, story_id: str) -> Epic | None:
        for epic in self._c.hierarchy.epics:
            if story_id in epic.stories:
                return epic
        return None

    def detach_task(self, task_id: str) -> list[str]:
        """Remove *task_id* from every story; return the affected story ids."""
        touched: list[str] = []
        for story in self._c.hierarchy.stories:
            if task_id in story.tasks:
                story.tasks = [t for t in story.tasks if t != task_id]
                touched.append(story.story_id)
        return touched

    # ── focus ────────────────────────────────────────────────────

    def get_current_focus(self) -> str | None:
        return self._c.current_focus

    def set_current_focus(self, task_id: str) -> str:
        if self._c.get_task(task_id) is None:
            raise NotFoundError(task_id)
        self._c.current_focus = task_id
        return task_id

    def clear_focus_if(self, task_id: str) -> bool:
        if self._c.current_focus == task_id:
            self._c.current_focus = None
            return True
        return False
