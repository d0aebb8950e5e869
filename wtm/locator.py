"""Repository discovery under a workspace root."""

from __future__ import annotations

import datetime as dt
import logging
import os
from collections.abc import Iterable
from pathlib import Path

from . import git_ops
from .cache import SessionCache
from .errors import ValidationFailed
from .models import Repository, SelectionOption
from .selection import Selector, select

logger = logging.getLogger(__name__)


def _is_repository(directory: Path) -> bool:
    try:
        return (directory / ".git").exists()
    except OSError:
        return False


def _describe(path: Path, with_details: bool) -> Repository:
    try:
        modified = dt.datetime.fromtimestamp(path.stat().st_mtime)
    except OSError:
        modified = None
    if not with_details:
        return Repository(path=path, name=path.name, last_modified=modified)
    return Repository(
        path=path,
        name=path.name,
        remote_url=git_ops.remote_url(path),
        branch=git_ops.current_branch(path),
        last_modified=modified,
    )


def open_repository(path: Path, with_details: bool = True) -> Repository:
    """Return the Repository at `path`, which must contain a `.git` entry."""
    path = path.expanduser().absolute()
    if not path.is_dir():
        raise ValidationFailed(f"Not a directory: {path}")
    if not _is_repository(path):
        raise ValidationFailed(f"Not a git repository: {path}")
    return _describe(path, with_details)


def find_repositories(root: Path, max_depth: int = 3, with_details: bool = True) -> list[Repository]:
    """Find git repositories below `root`, at most `max_depth` levels down.

    A directory holding a `.git` entry is reported and never descended
    into. Unreadable directories are skipped. Results are sorted by path.
    """
    root = root.expanduser()
    if not root.is_dir():
        raise ValidationFailed(f"Search root does not exist or is not a directory: {root}")
    root = root.resolve()

    found: set[Path] = set()
    pending: list[tuple[Path, int]] = [(root, 0)]
    while pending:
        directory, depth = pending.pop()
        if _is_repository(directory):
            found.add(directory)
            continue
        if depth >= max_depth:
            continue
        try:
            with os.scandir(directory) as it:
                entries = list(it)
        except OSError as exc:
            logger.debug("skipping %s: %s", directory, exc)
            continue
        for entry in entries:
            if entry.name == ".git":
                continue
            try:
                if entry.is_dir(follow_symlinks=False):
                    pending.append((Path(entry.path), depth + 1))
            except OSError:
                continue

    return [_describe(path, with_details) for path in sorted(found)]


def recall(session: SessionCache) -> Repository | None:
    """Return the cached last project if it is still a repository."""
    if session.last_project is None:
        return None
    try:
        return open_repository(session.last_project)
    except ValidationFailed:
        return None


def repository_options(repositories: Iterable[Repository]) -> list[SelectionOption]:
    options = []
    for repo in repositories:
        description = str(repo.path.parent)
        if repo.branch:
            description = f"{description} [{repo.branch}]"
        options.append(SelectionOption(key=str(repo.path), label=repo.name, description=description))
    return options


def pick_repository(
    repositories: list[Repository],
    session: SessionCache,
    selector: Selector | None = None,
    prompt: str = "Select a project",
) -> Repository:
    """Let the user choose a repository, defaulting to the last one picked.

    The choice is remembered on `session`; persisting it is up to the caller.
    """
    default = str(session.last_project) if session.last_project else None
    key = select(repository_options(repositories), prompt, default=default, selector=selector)
    chosen = next(repo for repo in repositories if str(repo.path) == key)
    session.remember(chosen.path)
    return chosen
