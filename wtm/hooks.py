"""Post-creation side effects: dependency install and the weekly notes log."""

from __future__ import annotations

import datetime as dt
import logging
import os
import shutil
import subprocess
from pathlib import Path

from . import git_ops
from .errors import ExternalCallFailed, ToolMissing

logger = logging.getLogger(__name__)

MANIFESTS = (
    ("pnpm-lock.yaml", "pnpm"),
    ("yarn.lock", "yarn"),
    ("package-lock.json", "npm"),
    ("package.json", "npm"),
)
INSTALL_ENV = {
    "CI": "true",
    "npm_config_audit": "false",
    "npm_config_fund": "false",
}
NOTES_COMMIT_MESSAGE = "feat: ✨ update"


class HookError(ExternalCallFailed):
    """A post-creation step failed."""


def detect_package_manager(worktree_path: Path) -> str | None:
    for manifest, manager in MANIFESTS:
        if (worktree_path / manifest).is_file():
            return manager
    return None


def install_dependencies(worktree_path: Path) -> str | None:
    """Install JS dependencies if a manifest is present; return the manager used."""
    manager = detect_package_manager(worktree_path)
    if manager is None:
        return None
    binary = manager if shutil.which(manager) else "npm"
    if shutil.which(binary) is None:
        raise ToolMissing(binary)
    if binary != manager:
        logger.info("%s not found, installing with npm", manager)
    logger.debug("running %s install in %s", binary, worktree_path)
    try:
        subprocess.run(
            [binary, "install"],
            cwd=worktree_path,
            env={**os.environ, **INSTALL_ENV},
            check=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or exc.stdout or "").strip() or "unknown error"
        raise HookError(f"`{binary} install` failed: {stderr.splitlines()[-1]}") from exc
    return binary


def notes_file(notes_dir: Path, repo_name: str, today: dt.date) -> Path:
    year, week, _ = today.isocalendar()
    return notes_dir / repo_name / f"{year}-{week:02d}.md"


def append_note(notes_dir: Path, repo_name: str, message: str, today: dt.date | None = None) -> Path:
    """Append `message` under today's heading in this week's file."""
    today = today or dt.date.today()
    path = notes_file(notes_dir, repo_name, today)
    path.parent.mkdir(parents=True, exist_ok=True)
    existing = path.read_text(encoding="utf-8") if path.is_file() else ""
    year, week, _ = today.isocalendar()
    day_header = f"## {today.strftime('%A')} ({today.strftime('%d.%m.%Y')})"

    chunks: list[str] = []
    if not existing:
        chunks.append(f"# Week {week}, {year}\n")
    if day_header not in existing:
        chunks.append(f"\n{day_header}\n\n")
    chunks.append(f"- {message}\n")
    with path.open("a", encoding="utf-8") as handle:
        handle.write("".join(chunks))
    return path


def sync_notes(notes_dir: Path) -> None:
    if git_ops.try_run(["pull", "--no-rebase"], cwd=notes_dir) is None:
        logger.info("notes pull failed, committing locally")
    git_ops.run(["add", "."], cwd=notes_dir)
    git_ops.run(["commit", "--no-verify", "-m", NOTES_COMMIT_MESSAGE], cwd=notes_dir)
    git_ops.run(["push"], cwd=notes_dir)


def log_to_notes(
    notes_dir: Path, repo_name: str, message: str, today: dt.date | None = None
) -> Path | None:
    """Record `message` in the notes log and sync the notes repository if it is one."""
    if "notes.md" in repo_name:
        return None
    path = append_note(notes_dir, repo_name, message, today)
    if (notes_dir / ".git").exists():
        sync_notes(notes_dir)
    return path
