"""CLI tests: every command runs in-process against a store under tmp_path."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from taskgraph import __version__
from taskgraph.cli import main
from taskgraph.io_utils import read_text, write_text


@pytest.fixture
def cli_runner():
    """Click CliRunner for invoking the CLI in-process."""
    return CliRunner()


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("TASKGRAPH_ROOT", "TASKGRAPH_TASKS_DIR", "TASKGRAPH_TASKS_FILE"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def run(cli_runner, tmp_path: Path):
    """Invoke the CLI with --dir pointing at tmp_path."""

    def _run(*args: str, input: str | None = None):
        return cli_runner.invoke(main, ["--dir", str(tmp_path), *args], input=input)

    return _run


def _store(tmp_path: Path) -> dict:
    return json.loads(read_text(tmp_path / "ai-context" / "tasks" / "current-tasks.json"))


# ── Main entry and help ────────────────────────────────────────────────


class TestCliHelpAndVersion:
    def test_help_long(self, cli_runner):
        r = cli_runner.invoke(main, ["--help"])
        assert r.exit_code == 0
        assert "taskgraph" in r.output
        for cmd in ("add", "list", "progress", "scan-commits", "hierarchy"):
            assert cmd in r.output

    def test_help_short(self, cli_runner):
        r = cli_runner.invoke(main, ["-h"])
        assert r.exit_code == 0

    def test_version(self, cli_runner):
        r = cli_runner.invoke(main, ["--version"])
        assert r.exit_code == 0
        assert __version__ in r.output

    def test_subcommand_help(self, cli_runner):
        r = cli_runner.invoke(main, ["progress", "--help"])
        assert r.exit_code == 0
        assert "--force" in r.output


# ── add / list / show ──────────────────────────────────────────────────


class TestAddListShow:
    def test_add_and_list(self, run, tmp_path: Path):
        r = run("add", "T001", "Setup", "-d", "Scaffold")
        assert r.exit_code == 0, r.output
        assert "Created T001" in r.output

        r = run("list")
        assert r.exit_code == 0
        assert "T001" in r.output
        assert "Setup" in r.output

        data = _store(tmp_path)
        assert data["tasks"][0]["id"] == "T001"
        assert data["version"] == 1

    def test_add_with_dependencies(self, run, tmp_path: Path):
        run("add", "T001", "Base", "-d", "x")
        run("add", "T002", "Other", "-d", "x")
        r = run("add", "T003", "Top", "-d", "x", "--depends", "T001", "--weak", "T002", "--hours", "2.5")
        assert r.exit_code == 0, r.output
        deps = _store(tmp_path)["tasks"][2]["dependencies"]
        assert deps == [{"task_id": "T001", "type": "strong"}, {"task_id": "T002", "type": "weak"}]

    def test_add_invalid_id(self, run):
        r = run("add", "bad-id", "x", "-d", "y")
        assert r.exit_code == 1
        assert "Invalid task id format" in r.output

    def test_add_duplicate(self, run):
        run("add", "T001", "Setup", "-d", "x")
        r = run("add", "T001", "Again", "-d", "x")
        assert r.exit_code == 1
        assert "already exists" in r.output

    def test_add_cycle(self, run):
        run("add", "T001", "A", "-d", "x", "--depends", "T002")
        r = run("add", "T002", "B", "-d", "x", "--depends", "T001")
        assert r.exit_code == 1
        assert "cycle" in r.output

    def test_add_requires_description(self, run):
        r = run("add", "T001", "Setup")
        assert r.exit_code == 2

    def test_list_empty(self, run):
        r = run("list")
        assert r.exit_code == 0
        assert "No tasks." in r.output

    def test_list_filters(self, run):
        run("add", "T001", "Alpha", "-d", "x", "--priority", "1")
        run("add", "T002", "Beta", "-d", "x", "--depends", "T001")
        run("progress", "T001", "planning")

        r = run("list", "--priority", "1")
        assert "Alpha" in r.output and "Beta" not in r.output

        r = run("list", "--state", "planning")
        assert "Alpha" in r.output and "Beta" not in r.output

        r = run("list", "--status", "pending")
        assert "Beta" in r.output and "Alpha" not in r.output

        r = run("list", "--depends-on", "T001")
        assert "Beta" in r.output and "Alpha" not in r.output

    def test_show(self, run):
        run("add", "T001", "Base", "-d", "Base work")
        run("add", "T002", "Top", "-d", "Top work", "--depends", "T001")
        r = run("show", "T002")
        assert r.exit_code == 0
        assert "Top work" in r.output
        assert "T001 (strong)" in r.output
        assert "not yet completed" in r.output
        assert "next:     planning (allowed: planning, in_development)" in r.output

    def test_show_terminal_state(self, run):
        run("add", "T001", "Base", "-d", "x")
        for state in ("in_development", "in_review", "review_complete", "in_testing", "completed"):
            assert run("progress", "T001", state).exit_code == 0
        r = run("show", "T001")
        assert "next:     none (terminal)" in r.output

    def test_show_unknown(self, run):
        r = run("show", "T404")
        assert r.exit_code == 1
        assert "T404 not found" in r.output


# ── progress ───────────────────────────────────────────────────────────


class TestProgress:
    def test_progress(self, run, tmp_path: Path):
        run("add", "T001", "Setup", "-d", "x")
        r = run("progress", "T001", "in_development")
        assert r.exit_code == 0, r.output
        assert "in_development (30%, in_progress)" in r.output
        task = _store(tmp_path)["tasks"][0]
        assert task["progress_state"] == "in_development"
        assert task["status"] == "in_progress"

    def test_custom_percent(self, run, tmp_path: Path):
        run("add", "T001", "Setup", "-d", "x")
        run("progress", "T001", "planning", "--percent", "5")
        assert _store(tmp_path)["tasks"][0]["progress_percentage"] == 5

    def test_invalid_transition(self, run):
        run("add", "T001", "Setup", "-d", "x")
        r = run("progress", "T001", "completed")
        assert r.exit_code == 1
        assert "not allowed" in r.output

    def test_unknown_state(self, run):
        run("add", "T001", "Setup", "-d", "x")
        r = run("progress", "T001", "shipped")
        assert r.exit_code == 2

    def test_blocked_and_force(self, run):
        run("add", "T001", "Base", "-d", "x")
        run("add", "T002", "Top", "-d", "x", "--depends", "T001")
        r = run("progress", "T002", "planning")
        assert r.exit_code == 1
        assert "blocked" in r.output

        r = run("progress", "T002", "planning", "--force")
        assert r.exit_code == 0, r.output


# ── commits ────────────────────────────────────────────────────────────


class TestCommits:
    def test_link(self, run, tmp_path: Path):
        run("add", "T001", "Setup", "-d", "x")
        r = run("link", "T001", "abc1234")
        assert r.exit_code == 0
        r = run("link", "T001", "abc1234")
        assert "1 commit(s) linked" in r.output
        assert _store(tmp_path)["tasks"][0]["git_commits"] == ["abc1234"]

    def test_link_unknown_task(self, run):
        r = run("link", "T404", "abc1234")
        assert r.exit_code == 1

    def test_scan_commits(self, run, git_repo: Path, git_commit, tmp_path: Path):
        run("add", "T001", "Setup", "-d", "x")
        sha = git_commit(git_repo, "Scaffold #T001 (see #T404)")
        r = run("scan-commits", "--repo", str(git_repo))
        assert r.exit_code == 0, r.output
        assert "1 new link(s)" in r.output
        assert _store(tmp_path)["tasks"][0]["git_commits"] == [sha]

        r = run("scan-commits", "--repo", str(git_repo))
        assert "0 new link(s)" in r.output

    def test_scan_commits_outside_repository(self, run, tmp_path_factory):
        plain = tmp_path_factory.mktemp("plain")
        r = run("scan-commits", "--repo", str(plain))
        assert r.exit_code == 1
        assert "Not a git repository" in r.output

    def test_list_by_commit(self, run):
        run("add", "T001", "Alpha", "-d", "x")
        run("add", "T002", "Beta", "-d", "x")
        run("link", "T002", "abc1234")
        r = run("list", "--commit", "abc1234")
        assert r.exit_code == 0
        assert "Beta" in r.output and "Alpha" not in r.output

    def test_scan_commits_bad_range(self, run, git_repo: Path):
        r = run("scan-commits", "nope..HEAD", "--repo", str(git_repo))
        assert r.exit_code == 1


# ── check / focus / hierarchy ──────────────────────────────────────────


class TestCheckFocusHierarchy:
    def test_check_clean(self, run):
        run("add", "T001", "Setup", "-d", "x")
        r = run("check")
        assert r.exit_code == 0
        assert "No dependency problems" in r.output

    def test_check_task(self, run):
        run("add", "T001", "Base", "-d", "x")
        run("add", "T002", "Top", "-d", "x", "--depends", "T001")
        r = run("check", "T002")
        assert r.exit_code == 1
        assert "not yet completed" in r.output

    def test_check_graph_dangling(self, run):
        run("add", "T002", "Top", "-d", "x", "--depends", "T009")
        r = run("check")
        assert r.exit_code == 1
        assert "Dependency T009 of task T002 not found" in r.output

    def test_focus(self, run):
        run("add", "T001", "Setup", "-d", "x")
        r = run("focus")
        assert "No current focus." in r.output
        r = run("focus", "T001")
        assert r.exit_code == 0
        r = run("focus")
        assert "T001" in r.output

    def test_focus_unknown(self, run):
        r = run("focus", "T404")
        assert r.exit_code == 1

    def test_hierarchy_set_and_show(self, run, tmp_path: Path):
        run("add", "T001", "Setup", "-d", "x")
        doc = tmp_path / "h.json"
        write_text(
            doc,
            json.dumps(
                {
                    "epics": [{"epic_id": "E1", "title": "Platform", "stories": ["S1"]}],
                    "stories": [{"story_id": "S1", "title": "Bootstrap", "tasks": ["T001"]}],
                }
            ),
        )
        r = run("hierarchy", "set", str(doc))
        assert r.exit_code == 0, r.output
        r = run("hierarchy", "show")
        assert "Platform" in r.output
        assert "Bootstrap" in r.output
        assert "T001" in r.output

    def test_hierarchy_set_reads_utf8(self, run, tmp_path: Path):
        doc = tmp_path / "h.json"
        write_text(doc, json.dumps({"epics": [{"epic_id": "E1", "title": "Plataforma ñ"}]}, ensure_ascii=False))
        r = run("hierarchy", "set", str(doc))
        assert r.exit_code == 0, r.output
        assert "Plataforma ñ" in run("hierarchy", "show").output

    def test_hierarchy_unknown_task(self, run, tmp_path: Path):
        doc = tmp_path / "h.json"
        write_text(doc, json.dumps({"stories": [{"story_id": "S1", "tasks": ["T404"]}]}))
        r = run("hierarchy", "set", str(doc))
        assert r.exit_code == 1
        assert "unknown task T404" in r.output

    def test_hierarchy_empty(self, run):
        r = run("hierarchy", "show")
        assert "No hierarchy defined." in r.output


# ── delete / export / import ───────────────────────────────────────────


class TestDeleteExportImport:
    def test_delete(self, run, tmp_path: Path):
        run("add", "T001", "Setup", "-d", "x")
        r = run("delete", "T001", "--yes")
        assert r.exit_code == 0, r.output
        assert _store(tmp_path)["tasks"] == []
        history = tmp_path / "ai-context" / "tasks" / "task-history"
        assert len(list(history.glob("T001-*.json"))) == 1

    def test_delete_declined(self, run, tmp_path: Path):
        run("add", "T001", "Setup", "-d", "x")
        r = run("delete", "T001", input="n\n")
        assert r.exit_code == 1
        assert len(_store(tmp_path)["tasks"]) == 1

    def test_export_import(self, run, tmp_path: Path):
        run("add", "T001", "Setup", "-d", "x")
        out = tmp_path / "t1.json"
        r = run("export", "T001", "-o", str(out))
        assert r.exit_code == 0, r.output
        assert json.loads(read_text(out))["id"] == "T001"

        run("delete", "T001", "--yes")
        r = run("import", str(out))
        assert r.exit_code == 0, r.output
        assert "Imported T001" in r.output
        assert _store(tmp_path)["tasks"][0]["id"] == "T001"
