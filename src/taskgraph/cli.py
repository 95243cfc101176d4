"""taskgraph CLI: manage the task graph stored under ``ai-context/tasks``.

Installed as ``taskgraph`` console_script.
"""

from __future__ import annotations

import json
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import click
from rich.markup import escape

from taskgraph import __version__
from taskgraph import log as glog
from taskgraph.config import Config, resolve_repo_root
from taskgraph.errors import DependencyBlockedError, TaskGraphError, ValidationError
from taskgraph.io_utils import read_text
from taskgraph.repository import TaskGraphRepository
from taskgraph.tasks.model import Dependency, DependencyType, ProgressState, Task, TaskStatus
from taskgraph.tasks.progress import PROGRESS_STATES, allowed_transitions, next_state

CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"])

_STATE_CHOICE = click.Choice([s.value for s in ProgressState])
_STATUS_CHOICE = click.Choice([s.value for s in TaskStatus])

_STATUS_COLOR = {
    TaskStatus.PENDING: "white",
    TaskStatus.IN_PROGRESS: "cyan",
    TaskStatus.COMPLETED: "green",
    TaskStatus.BLOCKED: "red",
}


@contextmanager
def _reporting_errors() -> Iterator[None]:
    """Turn taskgraph errors into an error report and exit status 1."""
    try:
        yield
    except (ValidationError, DependencyBlockedError) as exc:
        header = str(exc).split(":", 1)[0]
        glog.problems(header, exc.errors, as_error=True)
        sys.exit(1)
    except TaskGraphError as exc:
        glog.error(str(exc))
        sys.exit(1)


def _repo(ctx: click.Context) -> TaskGraphRepository:
    cfg: Config = ctx.obj
    return TaskGraphRepository.open(cfg)


def _task_line(task: Task) -> str:
    color = _STATUS_COLOR.get(task.status, "white")
    return (
        f"  [bold]{task.id}[/bold] [{color}]{task.status.value:<11}[/{color}] "
        f"{task.progress_percentage:>3}%  p{task.priority}  {escape(task.title)}"
    )


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option(
    "--dir",
    "root",
    default="",
    type=click.Path(file_okay=False),
    help="Storage root (default: $TASKGRAPH_ROOT or cwd)",
)
@click.option("--tasks-file", default="", help="Task store file name")
@click.option("-v", "--verbose", is_flag=True, help="Show debug output")
@click.version_option(__version__, prog_name="taskgraph")
@click.pass_context
def main(ctx: click.Context, root: str, tasks_file: str, verbose: bool) -> None:
    """taskgraph: dependency-aware task tracking.

    Tasks live in one JSON document with their dependencies, progress
    state, linked commits, the epic/story hierarchy and the current focus.

    \b
    EXAMPLES:
      taskgraph add T001 "Set up project" -d "Scaffold the repo"
      taskgraph add T002 "Add auth" -d "OAuth login" --depends T001
      taskgraph progress T001 in_development
      taskgraph check T002
      taskgraph scan-commits main..HEAD
    """
    glog.set_verbose(verbose)
    kwargs: dict[str, object] = {"verbose": verbose}
    if root:
        kwargs["root"] = root
    if tasks_file:
        kwargs["tasks_file"] = tasks_file
    ctx.obj = Config(**kwargs)


# ── Tasks ────────────────────────────────────────────────────────────


@main.command()
@click.argument("task_id")
@click.argument("title")
@click.option("-d", "--description", required=True, help="Task description")
@click.option("--priority", type=click.IntRange(1, 5), default=3, show_default=True)
@click.option("--hours", "estimated_hours", type=float, default=None, help="Estimated hours")
@click.option("--status", type=_STATUS_CHOICE, default="pending", show_default=True)
@click.option("--depends", multiple=True, help="Strong (gating) dependency; repeatable")
@click.option("--weak", multiple=True, help="Weak (informational) dependency; repeatable")
@click.pass_context
def add(
    ctx: click.Context,
    task_id: str,
    title: str,
    description: str,
    priority: int,
    estimated_hours: float | None,
    status: str,
    depends: tuple[str, ...],
    weak: tuple[str, ...],
) -> None:
    """Create a new task."""
    deps = [Dependency(d, DependencyType.STRONG) for d in depends]
    deps += [Dependency(d, DependencyType.WEAK) for d in weak]
    task = Task(
        id=task_id,
        title=title,
        description=description,
        status=TaskStatus(status),
        priority=priority,
        estimated_hours=estimated_hours,
        dependencies=deps,
    )
    with _reporting_errors():
        created = _repo(ctx).create(task)
    glog.success(f"Created {created.id}: {created.title}")


@main.command("list")
@click.option("--status", type=_STATUS_CHOICE, default=None)
@click.option("--priority", type=click.IntRange(1, 5), default=None)
@click.option("--state", type=_STATE_CHOICE, default=None, help="Progress state")
@click.option("--depends-on", default=None, help="Only tasks depending on this id")
@click.option("--commit", "commit_hash", default=None, help="Only tasks linked to this commit hash")
@click.pass_context
def list_tasks(
    ctx: click.Context,
    status: str | None,
    priority: int | None,
    state: str | None,
    depends_on: str | None,
    commit_hash: str | None,
) -> None:
    """List tasks, optionally filtered."""
    with _reporting_errors():
        repo = _repo(ctx)
        tasks = repo.get_by_commit(commit_hash) if commit_hash else repo.get_all()
        focus = repo.get_current_focus()

    if status:
        tasks = [t for t in tasks if t.status.value == status]
    if priority is not None:
        tasks = [t for t in tasks if t.priority == priority]
    if state:
        tasks = [t for t in tasks if t.effective_state.value == state]
    if depends_on:
        tasks = [t for t in tasks if depends_on in t.dependency_ids()]

    if not tasks:
        glog.info("No tasks.")
        return
    for task in tasks:
        line = _task_line(task)
        if task.id == focus:
            line += "  [magenta](focus)[/magenta]"
        glog.console.print(line)


@main.command()
@click.argument("task_id")
@click.pass_context
def show(ctx: click.Context, task_id: str) -> None:
    """Show one task with its dependency check."""
    with _reporting_errors():
        repo = _repo(ctx)
        task = repo.get_by_id(task_id)
        if task is None:
            glog.error(f"Task {task_id} not found")
            sys.exit(1)
        check = repo.check_dependencies(task_id)

    state = task.effective_state
    c = glog.console
    c.print(f"[bold]{task.id}[/bold] {escape(task.title)}")
    c.print(f"  {escape(task.description)}")
    c.print(f"  status:   {task.status.value}")
    c.print(f"  progress: {state.value} ({task.progress_percentage}%) - {PROGRESS_STATES[state].description}")
    nxt = next_state(state)
    if nxt is None:
        c.print("  next:     none (terminal)")
    else:
        also = ", ".join(s.value for s in allowed_transitions(state))
        c.print(f"  next:     {nxt.value} (allowed: {also})")
    c.print(f"  priority: {task.priority}")
    if task.estimated_hours is not None:
        c.print(f"  estimate: {task.estimated_hours:g}h")
    if task.dependencies:
        deps = ", ".join(f"{d.task_id} ({d.type.value})" for d in task.dependencies)
        c.print(f"  depends:  {deps}")
    if task.git_commits:
        c.print(f"  commits:  {', '.join(h[:7] for h in task.git_commits)}")
    if check.is_valid:
        glog.success("Dependencies satisfied")
    else:
        glog.problems("Dependency problems", check.errors)


@main.command()
@click.argument("task_id")
@click.argument("state", type=_STATE_CHOICE)
@click.option("--percent", type=int, default=None, help="Override the state's default percentage")
@click.option("--force", is_flag=True, help="Skip the strong-dependency gate")
@click.pass_context
def progress(ctx: click.Context, task_id: str, state: str, percent: int | None, force: bool) -> None:
    """Move a task to a new progress STATE."""
    with _reporting_errors():
        task = _repo(ctx).update_progress(task_id, state, percent, force=force)
    glog.success(
        f"{task.id}: {task.effective_state.value} ({task.progress_percentage}%, {task.status.value})"
    )


@main.command()
@click.argument("task_id")
@click.argument("commit_hash")
@click.pass_context
def link(ctx: click.Context, task_id: str, commit_hash: str) -> None:
    """Associate a git commit with a task."""
    with _reporting_errors():
        task = _repo(ctx).associate_commit(task_id, commit_hash)
    glog.success(f"{task.id}: {len(task.git_commits)} commit(s) linked")


@main.command("scan-commits")
@click.argument("rev_range", default="HEAD")
@click.option("--max-count", type=int, default=0, help="Only scan the newest N commits (0=all)")
@click.option("--repo", "repo_path", type=click.Path(file_okay=False), default=None, help="Git repository path")
@click.pass_context
def scan_commits(ctx: click.Context, rev_range: str, max_count: int, repo_path: str | None) -> None:
    """Link commits to tasks referenced as #Tnnn in their messages."""
    from taskgraph import git_ops

    cwd = Path(repo_path) if repo_path else resolve_repo_root()
    if not git_ops.is_repository(cwd):
        glog.error(f"Not a git repository: {cwd}")
        sys.exit(1)
    try:
        commits = git_ops.list_commits(rev_range, cwd=cwd, max_count=max_count)
    except git_ops.GitError as exc:
        glog.error(str(exc))
        sys.exit(1)

    total = 0
    with _reporting_errors():
        repo = _repo(ctx)
        for commit in commits:
            if not commit.task_ids:
                continue
            linked = repo.associate_commits_from_message(commit.hash, commit.message)
            for tid in linked:
                glog.info(f"{commit.short_hash} -> {tid}")
            total += len(linked)
    glog.success(f"Scanned {len(commits)} commit(s), {total} new link(s)")


@main.command()
@click.argument("task_id", required=False)
@click.pass_context
def check(ctx: click.Context, task_id: str | None) -> None:
    """Check one task's dependencies, or the whole graph when no id is given."""
    with _reporting_errors():
        repo = _repo(ctx)
        if task_id:
            errors = repo.check_dependencies(task_id).errors
        else:
            errors = repo.check_graph()
    if errors:
        glog.problems(f"{len(errors)} problem(s) found", errors, as_error=True)
        sys.exit(1)
    glog.success("No dependency problems")


@main.command()
@click.argument("task_id", required=False)
@click.pass_context
def focus(ctx: click.Context, task_id: str | None) -> None:
    """Show the current focus, or set it to TASK_ID."""
    with _reporting_errors():
        repo = _repo(ctx)
        if task_id:
            repo.set_current_focus(task_id)
            glog.success(f"Focus set to {task_id}")
            return
        current = repo.get_current_focus()
    if current:
        glog.console.print(current)
    else:
        glog.info("No current focus.")


@main.command()
@click.argument("task_id")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def delete(ctx: click.Context, task_id: str, yes: bool) -> None:
    """Delete a task (its record is archived first)."""
    if not yes:
        click.confirm(f"Delete task {task_id}?", abort=True)
    with _reporting_errors():
        archive = _repo(ctx).delete(task_id)
    glog.success(f"Deleted {task_id} (archived as {archive})")


@main.command("export")
@click.argument("task_id")
@click.option("-o", "--output", default="", help="Output path (default: task-<id>-export.json)")
@click.pass_context
def export_cmd(ctx: click.Context, task_id: str, output: str) -> None:
    """Export one task to a JSON file."""
    with _reporting_errors():
        path = _repo(ctx).export_task(task_id, output or f"task-{task_id}-export.json")
    glog.success(f"Exported {task_id} to {path}")


@main.command("import")
@click.argument("path", type=click.Path(dir_okay=False))
@click.pass_context
def import_cmd(ctx: click.Context, path: str) -> None:
    """Import one task from a JSON file."""
    with _reporting_errors():
        task = _repo(ctx).import_task(path)
    glog.success(f"Imported {task.id}: {task.title}")


# ── Hierarchy ────────────────────────────────────────────────────────


@main.group()
def hierarchy() -> None:
    """Show or replace the epic/story hierarchy."""


@hierarchy.command("show")
@click.pass_context
def hierarchy_show(ctx: click.Context) -> None:
    """Print epics, their stories and member tasks."""
    with _reporting_errors():
        h = _repo(ctx).get_hierarchy()
    if not h.epics and not h.stories:
        glog.info("No hierarchy defined.")
        return
    c = glog.console
    placed: set[str] = set()
    for epic in h.epics:
        c.print(f"[bold]{escape(epic.epic_id)}[/bold] {escape(epic.title)}")
        for sid in epic.stories:
            story = h.get_story(sid)
            placed.add(sid)
            title = story.title if story else ""
            c.print(f"  {escape(sid)} {escape(title)}")
            if story:
                for tid in story.tasks:
                    c.print(f"    {tid}")
    for story in h.stories:
        if story.story_id in placed:
            continue
        c.print(f"{escape(story.story_id)} {escape(story.title)} (no epic)")
        for tid in story.tasks:
            c.print(f"  {tid}")


@hierarchy.command("set")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def hierarchy_set(ctx: click.Context, path: str) -> None:
    """Replace the hierarchy with the JSON document at PATH."""
    try:
        data = json.loads(read_text(path))
    except json.JSONDecodeError as exc:
        glog.error(f"Invalid JSON in {path}: {exc.msg} (line {exc.lineno})")
        sys.exit(1)
    if not isinstance(data, dict):
        glog.error(f"{path} must contain a JSON object with 'epics' and 'stories'")
        sys.exit(1)
    with _reporting_errors():
        h = _repo(ctx).update_hierarchy(data)
    glog.success(f"Hierarchy updated: {len(h.epics)} epic(s), {len(h.stories)} story(ies)")
