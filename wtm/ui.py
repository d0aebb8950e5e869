"""Console output with rich and prompts with questionary."""

from __future__ import annotations

import sys
from collections.abc import Iterable

import click
import questionary
from rich.console import Console
from rich.table import Table
from rich.text import Text

from .errors import UserCancelled
from .models import RegistryEntry, Worktree

console = Console()
err_console = Console(stderr=True)


def _interactive() -> bool:
    return sys.stdin.isatty() and sys.stdout.isatty()


def success(message: str) -> None:
    console.print(Text(f"✓ {message}", style="green"))


def info(message: str) -> None:
    console.print(Text(message))


def warn(message: str) -> None:
    err_console.print(Text(f"! {message}", style="yellow"))


def fail(message: str) -> None:
    err_console.print(Text(f"✗ {message}", style="bold red"))


def confirm(text: str, default: bool = False) -> bool:
    if _interactive():
        return bool(questionary.confirm(text, default=default).unsafe_ask())
    return click.confirm(text, default=default, err=True)


def require_confirmation(text: str) -> None:
    if not confirm(text):
        raise UserCancelled()


class ConsolePrompter:
    """Prompts used by the naming engine."""

    def confirm(self, text: str) -> bool:
        return confirm(text, default=True)

    def text(self, text: str) -> str:
        if _interactive():
            answer = questionary.text(text).unsafe_ask()
        else:
            answer = click.prompt(text, default="", show_default=False, err=True)
        return (answer or "").strip()


def worktree_table(worktrees: Iterable[Worktree], stale: Iterable[RegistryEntry] = ()) -> Table:
    table = Table(show_edge=False, header_style="bold")
    table.add_column("BRANCH")
    table.add_column("PATH")
    table.add_column("CREATED")
    for wt in worktrees:
        created = wt.created_at.strftime("%Y-%m-%d %H:%M") if wt.created_at else "-"
        table.add_row(wt.branch or "(detached)", str(wt.path), created)
    for entry in stale:
        table.add_row(
            Text(entry.branch or "(detached)", style="dim"),
            Text(str(entry.path), style="dim"),
            Text("stale", style="yellow"),
        )
    return table


def print_worktrees(
    repo_name: str, worktrees: list[Worktree], stale: list[RegistryEntry] | None = None
) -> None:
    stale = stale or []
    if not worktrees and not stale:
        info(f"No worktrees in {repo_name}.")
        return
    console.print(Text(repo_name, style="bold"))
    console.print(worktree_table(worktrees, stale))

