"""Data models for wtm."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class Repository:
    """A git project found on disk."""

    path: Path
    name: str
    remote_url: str | None = None
    branch: str | None = None
    last_modified: dt.datetime | None = None

    @property
    def git_entry(self) -> Path:
        return self.path / ".git"

    def is_valid(self) -> bool:
        """Check that the path is absolute and still holds a `.git` entry."""
        return self.path.is_absolute() and self.git_entry.exists()


@dataclass(frozen=True)
class RegistryEntry:
    """One record from `git worktree list --porcelain`."""

    path: Path
    head: str = ""
    branch: str | None = None
    bare: bool = False
    locked: bool = False
    prunable: bool = False

    @property
    def is_detached(self) -> bool:
        """Check if this entry has no branch attached."""
        return self.branch is None


@dataclass(frozen=True)
class Worktree:
    """A linked checkout whose directory and registry entry agree."""

    path: Path
    branch: str | None
    repository: Repository = field(compare=False, repr=False)
    created_at: dt.datetime | None = None


@dataclass
class Reconciliation:
    """Registry entries and worktree directories sorted by agreement."""

    consistent: list[RegistryEntry] = field(default_factory=list)
    stale: list[RegistryEntry] = field(default_factory=list)
    orphaned: list[Path] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not self.stale and not self.orphaned


@dataclass(frozen=True)
class CommitType:
    name: str
    emoji: str
    description: str


@dataclass(frozen=True)
class BranchPlan:
    """Names derived for a single worktree creation request."""

    branch: str
    folder: str
    commit_title: str
    commit_body: str | None = None
    ticket: str | None = None


@dataclass(frozen=True)
class DeletionResult:
    """Outcome of deleting a worktree."""

    path: Path
    used_fallback: bool
    method: str
    reason: str | None = None
    branch: str | None = None
    branch_deleted: bool = False
    branch_error: str | None = None


@dataclass(frozen=True)
class SelectionOption:
    """A choice shown by any selection backend."""

    key: str
    label: str
    description: str | None = None

    def matches(self, query: str) -> bool:
        """Case-insensitive substring match on key, label and description."""
        needle = query.lower()
        haystacks = [self.key, self.label, self.description or ""]
        return any(needle in text.lower() for text in haystacks)
