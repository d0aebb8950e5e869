"""Git subprocess operations."""

from __future__ import annotations

import logging
import shutil
import subprocess
from collections.abc import Sequence
from pathlib import Path

from .errors import ExternalCallFailed, ToolMissing
from .models import RegistryEntry

logger = logging.getLogger(__name__)


class GitError(ExternalCallFailed):
    """Git command failed."""

    def __init__(self, cmd: Sequence[str], stderr: str) -> None:
        self.cmd = list(cmd)
        self.stderr = stderr
        super().__init__(f"git {' '.join(self.cmd)}: {stderr}")


def require_git() -> None:
    if shutil.which("git") is None:
        raise ToolMissing("git")


def run(args: Sequence[str], cwd: Path | None = None) -> str:
    """Run a git command and return stdout."""
    cmd = ["git", *args]
    if cwd is not None:
        cmd = ["git", "-C", str(cwd), *args]
    logger.debug("running %s", " ".join(cmd))
    try:
        result = subprocess.run(cmd, check=False, capture_output=True, text=True)
    except FileNotFoundError as exc:
        raise ToolMissing("git") from exc
    if result.returncode != 0:
        raise GitError(args, result.stderr.strip() or result.stdout.strip())
    return result.stdout.strip()


def try_run(args: Sequence[str], cwd: Path | None = None) -> str | None:
    """Run a git command, returning None on failure."""
    try:
        return run(args, cwd=cwd)
    except GitError:
        return None


def common_dir(path: Path) -> Path | None:
    """Return the shared `.git` directory for any checkout of a repository."""
    out = try_run(["rev-parse", "--git-common-dir"], cwd=path)
    if not out:
        return None
    common = Path(out)
    if not common.is_absolute():
        common = path / common
    return common.resolve()


def current_branch(path: Path) -> str | None:
    return try_run(["branch", "--show-current"], cwd=path) or None


def remote_url(path: Path, remote: str = "origin") -> str | None:
    return try_run(["config", "--get", f"remote.{remote}.url"], cwd=path) or None


def resolve_ref(repo_root: Path, ref: str) -> str | None:
    """Return `ref` if it names a commit in the repository."""
    if try_run(["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"], cwd=repo_root) is None:
        return None
    return ref


def branch_exists(repo_root: Path, branch: str) -> bool:
    return try_run(["show-ref", "--verify", "--quiet", f"refs/heads/{branch}"], cwd=repo_root) is not None


def _entry_from(fields: dict[str, str]) -> RegistryEntry:
    branch = fields.get("branch")
    if branch is not None:
        branch = branch.removeprefix("refs/heads/")
    return RegistryEntry(
        path=Path(fields["worktree"]),
        head=fields.get("HEAD", ""),
        branch=branch or None,
        bare="bare" in fields,
        locked="locked" in fields,
        prunable="prunable" in fields,
    )


def parse_worktrees(repo_root: Path) -> list[RegistryEntry]:
    """Parse the output of git worktree list --porcelain."""
    output = run(["worktree", "list", "--porcelain"], cwd=repo_root)
    entries: list[RegistryEntry] = []
    current: dict[str, str] = {}
    for line in output.splitlines():
        if not line.strip():
            if "worktree" in current:
                entries.append(_entry_from(current))
            current = {}
            continue
        key, _, value = line.partition(" ")
        current[key] = value
    if "worktree" in current:
        entries.append(_entry_from(current))
    return entries


def add_worktree(
    repo_root: Path,
    path: Path,
    branch: str,
    start_point: str | None = None,
    create_branch: bool = True,
) -> None:
    """Create a worktree, optionally creating `branch` from `start_point`."""
    path.parent.mkdir(parents=True, exist_ok=True)
    if create_branch:
        args = ["worktree", "add", "-b", branch, str(path)]
        if start_point:
            args.append(start_point)
    else:
        args = ["worktree", "add", str(path), branch]
    run(args, cwd=repo_root)


def remove_worktree(repo_root: Path, path: Path, force: bool = False) -> None:
    args = ["worktree", "remove", str(path)]
    if force:
        args.insert(2, "--force")
    run(args, cwd=repo_root)


def move_worktree(repo_root: Path, old_path: Path, new_path: Path) -> None:
    new_path.parent.mkdir(parents=True, exist_ok=True)
    run(["worktree", "move", str(old_path), str(new_path)], cwd=repo_root)


def prune_worktrees(repo_root: Path) -> None:
    """Prune stale worktree references."""
    run(["worktree", "prune"], cwd=repo_root)


def rename_branch(repo_root: Path, old: str, new: str) -> None:
    run(["branch", "-m", old, new], cwd=repo_root)


def delete_branch(repo_root: Path, branch: str, force: bool = False) -> None:
    run(["branch", "-D" if force else "-d", branch], cwd=repo_root)


def is_ancestor(repo_root: Path, branch: str, target: str) -> bool:
    return try_run(["merge-base", "--is-ancestor", branch, target], cwd=repo_root) is not None


def commit_empty(worktree_path: Path, title: str, body: str | None = None) -> None:
    args = ["commit", "--allow-empty", "--no-verify", "-m", title]
    if body:
        args += ["-m", body]
    run(args, cwd=worktree_path)


def fetch(repo_root: Path, remote: str = "origin") -> None:
    run(["fetch", remote], cwd=repo_root)


def remote_branches(repo_root: Path, remotes: Sequence[str] = ("origin",)) -> list[str]:
    """List `<remote>/<branch>` refs for the given remotes, without HEAD."""
    out = run(["branch", "-r", "--format=%(refname:short)"], cwd=repo_root)
    branches: list[str] = []
    for line in out.splitlines():
        ref = line.strip()
        remote, _, name = ref.partition("/")
        if not name or name == "HEAD" or remote not in remotes:
            continue
        branches.append(ref)
    return branches
