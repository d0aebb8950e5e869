from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

GIT_AVAILABLE = shutil.which("git") is not None

requires_git = pytest.mark.skipif(not GIT_AVAILABLE, reason="git missing")


def run(cmd: list[str], cwd: Path | None = None) -> str:
    result = subprocess.run(
        cmd, cwd=str(cwd) if cwd else None, check=True, capture_output=True, text=True
    )
    return result.stdout.strip()


def git(path: Path, *args: str) -> str:
    return run(["git", "-C", str(path), *args])


def init_repo(root: Path, branch: str = "main") -> Path:
    root.mkdir(parents=True, exist_ok=True)
    run(["git", "init", "-q"], cwd=root)
    git(root, "symbolic-ref", "HEAD", f"refs/heads/{branch}")
    git(root, "config", "user.email", "test@example.com")
    git(root, "config", "user.name", "Test")
    git(root, "config", "commit.gpgsign", "false")
    (root / "README.md").write_text("hello")
    git(root, "add", ".")
    git(root, "commit", "-q", "-m", "init")
    return root


def commit_file(path: Path, name: str, content: str = "change") -> None:
    (path / name).write_text(content)
    git(path, "add", name)
    git(path, "commit", "-q", "-m", f"add {name}")


def branches(repo: Path) -> list[str]:
    out = git(repo, "branch", "--format=%(refname:short)")
    return sorted(line.strip() for line in out.splitlines() if line.strip())


def registered_paths(repo: Path) -> list[Path]:
    out = git(repo, "worktree", "list", "--porcelain")
    return [
        Path(line.split(" ", 1)[1]).resolve()
        for line in out.splitlines()
        if line.startswith("worktree ")
    ]
