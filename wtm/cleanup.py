"""Removal of merged worktrees, stale registry entries and orphaned directories."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from . import git_ops
from .errors import ValidationFailed
from .models import RegistryEntry, Repository, Worktree
from .orchestrator import WorktreeOrchestrator

logger = logging.getLogger(__name__)


class CleanupEngine:
    def __init__(self, orchestrator: WorktreeOrchestrator) -> None:
        self.orchestrator = orchestrator

    def merged_candidates(self, repository: Repository, target: str = "main") -> list[RegistryEntry]:
        """Worktrees on branches fully merged into `target`.

        Detached entries, `target` itself and protected branches are never
        candidates.
        """
        if git_ops.resolve_ref(repository.path, target) is None:
            raise ValidationFailed(f"Target branch {target!r} does not exist in {repository.name}")
        protected = self.orchestrator.protected_branches() | {target}
        candidates: list[RegistryEntry] = []
        for entry in self.orchestrator.reconcile(repository).consistent:
            if entry.is_detached:
                logger.debug("skipping detached worktree %s", entry.path)
                continue
            if entry.branch in protected:
                continue
            if git_ops.is_ancestor(repository.path, entry.branch, target):
                candidates.append(entry)
        return candidates

    def clean_merged(self, repository: Repository, target: str = "main") -> list[Worktree]:
        """Remove merged worktrees and their local branches; return what was removed."""
        removed: list[Worktree] = []
        for entry in self.merged_candidates(repository, target):
            branch = entry.branch
            if branch is None:
                continue
            try:
                git_ops.remove_worktree(repository.path, entry.path)
            except git_ops.GitError as exc:
                self.orchestrator.warn(f"Skipped {entry.path}: {exc}")
                continue
            try:
                # merged into `target`, not necessarily into HEAD, so -d would refuse
                git_ops.delete_branch(repository.path, branch, force=True)
            except git_ops.GitError as exc:
                self.orchestrator.warn(f"Removed {entry.path} but kept branch {branch}: {exc}")
            removed.append(Worktree(path=entry.path, branch=branch, repository=repository))
        return removed

    def prune_stale(self, repository: Repository) -> list[RegistryEntry]:
        """Drop registry entries whose directories are gone; directories are untouched."""
        stale = [entry for entry in self.orchestrator.reconcile(repository).stale if not entry.locked]
        if stale:
            git_ops.prune_worktrees(repository.path)
        return stale

    def remove_orphans(self, repository: Repository, scan_root: Path) -> list[Path]:
        """Delete directories under `scan_root` that point into `repository` but are unregistered."""
        removed: list[Path] = []
        for path in self.orchestrator.reconcile(repository, scan_root=scan_root).orphaned:
            try:
                shutil.rmtree(path)
            except OSError as exc:
                self.orchestrator.warn(f"Could not remove orphaned directory {path}: {exc}")
                continue
            removed.append(path)
        return removed
