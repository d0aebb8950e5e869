"""Worktree creation, listing, deletion and registry reconciliation."""

from __future__ import annotations

import dataclasses
import datetime as dt
import logging
import shutil
from collections.abc import Callable, Sequence
from pathlib import Path

from . import git_ops, hooks
from .config import Config
from .errors import ExternalCallFailed, ToolMissing, ValidationFailed
from .fallback import attempt_then_recover
from .models import BranchPlan, DeletionResult, Reconciliation, RegistryEntry, Repository, Worktree
from .naming import folder_for_branch, validate_branch_name

logger = logging.getLogger(__name__)

BASE_BRANCH_CANDIDATES = ("develop", "main", "master")
PROTECTED_BRANCHES = frozenset({"main", "master", "develop"})


def read_gitdir_pointer(path: Path) -> Path | None:
    """Return the target of a worktree's `.git` pointer file, if it has one."""
    git_file = path / ".git"
    if not git_file.is_file():
        return None
    try:
        text = git_file.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    if not text.startswith("gitdir:"):
        return None
    target = Path(text.removeprefix("gitdir:").strip())
    if not target.is_absolute():
        target = path / target
    return target.resolve()


def owning_repository_root(path: Path) -> Path | None:
    """Map a linked worktree back to the repository whose `.git` it points into."""
    pointer = read_gitdir_pointer(path)
    if pointer is None or pointer.parent.name != "worktrees":
        return None
    common = pointer.parent.parent
    return common.parent if common.name == ".git" else common


def repository_common_dir(repository: Repository) -> Path | None:
    if repository.git_entry.is_dir():
        return repository.git_entry.resolve()
    return git_ops.common_dir(repository.path)


def is_linked_worktree(path: Path, repository: Repository) -> bool:
    """Check `path` has a `.git` pointer file into the repository's git dir."""
    pointer = read_gitdir_pointer(path)
    common = repository_common_dir(repository)
    if pointer is None or common is None:
        return False
    return pointer.is_relative_to(common)


def _same_path(left: Path, right: Path) -> bool:
    return left.resolve() == right.resolve()


def _created_at(path: Path) -> dt.datetime | None:
    try:
        return dt.datetime.fromtimestamp(path.stat().st_ctime)
    except OSError:
        return None


class WorktreeOrchestrator:
    def __init__(
        self,
        worktrees_dir: Path,
        remotes: Sequence[str] = ("origin",),
        default_branch: str = "main",
        notes_dir: Path | None = None,
        install: bool = True,
        on_warning: Callable[[str], None] | None = None,
    ) -> None:
        self.worktrees_dir = worktrees_dir
        self.remotes = tuple(remotes)
        self.default_branch = default_branch
        self.notes_dir = notes_dir
        self.install = install
        self.on_warning = on_warning

    @classmethod
    def from_config(
        cls, config: Config, on_warning: Callable[[str], None] | None = None
    ) -> WorktreeOrchestrator:
        return cls(
            worktrees_dir=config.worktrees_dir,
            remotes=config.remotes,
            default_branch=config.default_branch,
            notes_dir=config.notes_dir if config.notes_enabled else None,
            on_warning=on_warning,
        )

    def warn(self, message: str) -> None:
        if self.on_warning is None:
            logger.warning(message)
            return
        logger.debug("warning: %s", message)
        self.on_warning(message)

    def protected_branches(self) -> frozenset[str]:
        return PROTECTED_BRANCHES | {self.default_branch}

    def resolve_base_branch(self, repository: Repository, override: str | None = None) -> str:
        if override:
            if git_ops.resolve_ref(repository.path, override) is None:
                raise ValidationFailed(f"Base branch {override!r} does not exist in {repository.name}")
            return override
        for candidate in BASE_BRANCH_CANDIDATES:
            if git_ops.resolve_ref(repository.path, candidate) is not None:
                return candidate
        tried = ", ".join(BASE_BRANCH_CANDIDATES)
        raise ValidationFailed(f"No base branch found in {repository.name} (tried {tried})")

    def create(
        self, repository: Repository, plan: BranchPlan, base_override: str | None = None
    ) -> Worktree:
        """Create a worktree for `plan` on a new branch off the base branch."""
        validate_branch_name(plan.branch)
        path = (self.worktrees_dir / plan.folder).absolute()
        if path.exists():
            raise ValidationFailed(f"Worktree directory already exists: {path}")
        base = self.resolve_base_branch(repository, base_override)

        logger.info("creating %s from %s at %s", plan.branch, base, path)
        git_ops.add_worktree(repository.path, path, plan.branch, base)
        worktree = Worktree(path=path, branch=plan.branch, repository=repository, created_at=dt.datetime.now())

        try:
            git_ops.commit_empty(path, plan.commit_title, plan.commit_body)
        except git_ops.GitError as exc:
            self.warn(f"Could not create the initial commit: {exc}")

        self._install(path)
        self._log_note(repository, f"Created worktree {plan.branch}")
        return worktree

    def _install(self, path: Path) -> None:
        if not self.install:
            return
        try:
            manager = hooks.install_dependencies(path)
        except (ExternalCallFailed, ToolMissing) as exc:
            self.warn(f"Dependency install failed: {exc}")
            return
        if manager:
            logger.info("installed dependencies with %s", manager)

    def _log_note(self, repository: Repository, message: str) -> None:
        if self.notes_dir is None:
            return
        try:
            hooks.log_to_notes(self.notes_dir, repository.name, message)
        except (OSError, ExternalCallFailed) as exc:
            self.warn(f"Could not update notes: {exc}")

    def registry(self, repository: Repository) -> list[RegistryEntry]:
        """Linked worktree entries, without the main checkout or bare entries."""
        entries = git_ops.parse_worktrees(repository.path)
        return [
            entry
            for idx, entry in enumerate(entries)
            if idx > 0 and not entry.bare and not _same_path(entry.path, repository.path)
        ]

    def find_entry(self, repository_root: Path, path: Path) -> RegistryEntry | None:
        try:
            entries = git_ops.parse_worktrees(repository_root)
        except git_ops.GitError:
            return None
        return next((entry for entry in entries if _same_path(entry.path, path)), None)

    def reconcile(self, repository: Repository, scan_root: Path | None = None) -> Reconciliation:
        """Sort worktrees into consistent, stale (registry only) and orphaned (directory only)."""
        result = Reconciliation()
        registered: set[Path] = set()
        for entry in self.registry(repository):
            registered.add(entry.path.resolve())
            if entry.path.is_dir():
                result.consistent.append(entry)
            else:
                result.stale.append(entry)

        if scan_root is None or not scan_root.is_dir():
            return result
        for child in sorted(scan_root.iterdir()):
            if not child.is_dir() or child.resolve() in registered:
                continue
            if is_linked_worktree(child, repository):
                result.orphaned.append(child)
        return result

    def list_worktrees(self, repository: Repository) -> list[Worktree]:
        """Worktrees whose directory and registry entry both exist."""
        return [
            Worktree(
                path=entry.path,
                branch=entry.branch,
                repository=repository,
                created_at=_created_at(entry.path),
            )
            for entry in self.reconcile(repository).consistent
        ]

    def delete(
        self,
        path: Path,
        repository: Repository | None = None,
        delete_branch: bool = False,
        force: bool = False,
    ) -> DeletionResult:
        """Remove a worktree through git, falling back to removing the directory."""
        path = path.expanduser().absolute()
        owner = repository.path if repository else owning_repository_root(path)
        if (path / ".git").is_dir() or (owner is not None and _same_path(owner, path)):
            raise ValidationFailed(f"Refusing to delete the main checkout: {path}")
        entry = self.find_entry(owner, path) if owner else None
        if entry is None:
            if not path.exists():
                raise ValidationFailed(f"Worktree not found: {path}")
            linked = is_linked_worktree(path, repository) if repository else owner is not None
            if not linked:
                raise ValidationFailed(f"Not a linked worktree: {path}")
        branch = entry.branch if entry else git_ops.current_branch(path)

        def _native() -> DeletionResult:
            if owner is None or entry is None:
                raise ExternalCallFailed(f"{path} is not a registered worktree")
            git_ops.remove_worktree(owner, path, force=force)
            return DeletionResult(path=path, used_fallback=False, method="git")

        def _directory(reason: str) -> DeletionResult:
            logger.info("removing %s directly: %s", path, reason)
            if owner is not None:
                git_ops.try_run(["worktree", "prune"], cwd=owner)
            if path.exists():
                try:
                    shutil.rmtree(path)
                except OSError as exc:
                    raise ExternalCallFailed(f"Could not remove {path}: {exc}") from exc
            if owner is not None:
                # the entry for the removed directory is stale now
                git_ops.try_run(["worktree", "prune"], cwd=owner)
            return DeletionResult(path=path, used_fallback=True, method="directory", reason=reason)

        result = attempt_then_recover(_native, _directory, recoverable=(ExternalCallFailed,)).unwrap()
        result = dataclasses.replace(result, branch=branch)
        if delete_branch and branch and owner is not None:
            result = self._delete_branch(owner, result, branch, force)
        return result

    def _delete_branch(self, owner: Path, result: DeletionResult, branch: str, force: bool) -> DeletionResult:
        if branch in self.protected_branches():
            return dataclasses.replace(result, branch_error=f"{branch} is protected")
        try:
            git_ops.delete_branch(owner, branch, force=force)
        except git_ops.GitError as exc:
            return dataclasses.replace(result, branch_error=str(exc))
        return dataclasses.replace(result, branch_deleted=True)

    def fetch(self, repository: Repository) -> None:
        for remote in self.remotes:
            try:
                git_ops.fetch(repository.path, remote)
            except git_ops.GitError as exc:
                self.warn(f"Could not fetch {remote}: {exc}")

    def remote_branches(self, repository: Repository) -> list[str]:
        return git_ops.remote_branches(repository.path, self.remotes)

    def checkout(self, repository: Repository, branch: str) -> Worktree:
        """Add a worktree tracking an existing remote branch."""
        refs = self.remote_branches(repository)
        if branch in refs:
            remote_ref = branch
            local = branch.partition("/")[2]
        else:
            local = branch
            remote_ref = next((f"{r}/{branch}" for r in self.remotes if f"{r}/{branch}" in refs), "")
        if not remote_ref:
            raise ValidationFailed(f"Branch {branch!r} not found among remote branches")
        validate_branch_name(local)

        path = (self.worktrees_dir / folder_for_branch(local)).absolute()
        if path.exists():
            entry = self.find_entry(repository.path, path)
            if entry is None:
                raise ValidationFailed(f"{path} exists but is not a registered worktree")
            logger.info("worktree for %s already exists at %s", local, path)
            return Worktree(path=path, branch=entry.branch, repository=repository, created_at=_created_at(path))

        if git_ops.branch_exists(repository.path, local):
            git_ops.add_worktree(repository.path, path, local, create_branch=False)
        else:
            git_ops.add_worktree(repository.path, path, local, remote_ref)
        self._install(path)
        return Worktree(path=path, branch=local, repository=repository, created_at=dt.datetime.now())

    def rename(self, repository: Repository, path: Path, new_branch: str) -> Worktree:
        """Rename a worktree's branch and move its directory to match."""
        validate_branch_name(new_branch)
        path = path.expanduser().absolute()
        entry = self.find_entry(repository.path, path)
        if entry is None or not path.is_dir():
            raise ValidationFailed(f"Not a registered worktree: {path}")
        if entry.branch is None:
            raise ValidationFailed(f"Worktree {path} has no branch to rename")
        if git_ops.branch_exists(repository.path, new_branch):
            raise ValidationFailed(f"Branch {new_branch!r} already exists")
        new_path = path.parent / folder_for_branch(new_branch)
        if new_path.exists() and not _same_path(new_path, path):
            raise ValidationFailed(f"Target directory already exists: {new_path}")

        git_ops.rename_branch(repository.path, entry.branch, new_branch)
        if not _same_path(new_path, path):
            git_ops.move_worktree(repository.path, path, new_path)
        return Worktree(path=new_path, branch=new_branch, repository=repository, created_at=_created_at(new_path))
