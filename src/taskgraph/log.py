"""Console logging for taskgraph, colored via Rich.

Repository operations report through these helpers so the CLI and library
callers share one output format. Errors go to stderr.
"""

from __future__ import annotations

from collections.abc import Iterable

from rich.console import Console
from rich.markup import escape

console = Console(highlight=False, soft_wrap=True)
_err_console = Console(highlight=False, soft_wrap=True, stderr=True)

_verbose = False


def set_verbose(enabled: bool) -> None:
    global _verbose
    _verbose = enabled


def info(msg: str) -> None:
    console.print(f"[blue]\\[INFO][/blue] {escape(msg)}")


def success(msg: str) -> None:
    console.print(f"[green]\\[OK][/green] {escape(msg)}")


def warn(msg: str) -> None:
    console.print(f"[yellow]\\[WARN][/yellow] {escape(msg)}")


def error(msg: str) -> None:
    _err_console.print(f"[red]\\[ERROR][/red] {escape(msg)}")


def debug(msg: str) -> None:
    if _verbose:
        console.print(f"[dim]\\[DEBUG] {escape(msg)}[/dim]")


def problems(header: str, items: Iterable[str], *, as_error: bool = False) -> None:
    """Print *header* followed by one indented line per item.

    Used for validation and dependency-check reports, which are lists rather
    than single messages.
    """
    lines = [f"  - {escape(item)}" for item in items]
    if as_error:
        _err_console.print(f"[red]\\[ERROR][/red] {escape(header)}")
        for line in lines:
            _err_console.print(line)
    else:
        console.print(f"[yellow]\\[WARN][/yellow] {escape(header)}")
        for line in lines:
            console.print(line)
