"""Git helpers: read commits and pull task references out of their messages."""

from __future__ import annotations

import re
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from taskgraph import log

# A task reference in a commit message: "#T012".
TASK_REF_PATTERN = re.compile(r"#(T[0-9]{3})(?![0-9])")

_FIELD_SEP = "\x1f"
_RECORD_SEP = "\x1e"


class GitError(RuntimeError):
    pass


@dataclass
class CommitInfo:
    hash: str
    subject: str
    body: str = ""
    task_ids: list[str] = field(default_factory=list)

    @property
    def short_hash(self) -> str:
        return self.hash[:7]

    @property
    def message(self) -> str:
        return f"{self.subject}\n\n{self.body}".strip()


def _git(*args: str, cwd: Path | None = None, check: bool = False) -> subprocess.CompletedProcess[str]:
    """Run a git command, capturing output."""
    return subprocess.run(
        ["git", *args],
        capture_output=True,
        text=True,
        cwd=cwd,
        check=check,
    )


def extract_task_ids(message: str) -> list[str]:
    """Return task ids referenced as ``#Tnnn`` in *message*, de-duplicated in order."""
    if not message:
        return []
    seen: set[str] = set()
    ids: list[str] = []
    for match in TASK_REF_PATTERN.finditer(message):
        tid = match.group(1)
        if tid not in seen:
            seen.add(tid)
            ids.append(tid)
    return ids


def is_repository(cwd: Path | None = None) -> bool:
    r = _git("rev-parse", "--is-inside-work-tree", cwd=cwd)
    return r.returncode == 0 and r.stdout.strip() == "true"


def list_commits(rev_range: str = "HEAD", cwd: Path | None = None, max_count: int = 0) -> list[CommitInfo]:
    """Return commits in *rev_range* (newest first) with their task references."""
    args = ["log", f"--format=%H{_FIELD_SEP}%s{_FIELD_SEP}%b{_RECORD_SEP}"]
    if max_count > 0:
        args.append(f"--max-count={max_count}")
    args.append(rev_range)
    r = _git(*args, cwd=cwd)
    if r.returncode != 0:
        raise GitError(f"git log {rev_range} failed: {r.stderr.strip()}")

    commits: list[CommitInfo] = []
    for record in r.stdout.split(_RECORD_SEP):
        record = record.strip("\n")
        if not record.strip():
            continue
        parts = record.split(_FIELD_SEP)
        if len(parts) < 3:
            log.debug(f"Skipping malformed git log record: {record!r}")
            continue
        sha, subject, body = parts[0].strip(), parts[1], parts[2].strip()
        commits.append(
            CommitInfo(
                hash=sha,
                subject=subject,
                body=body,
                task_ids=extract_task_ids(f"{subject}\n{body}"),
            )
        )
    return commits
