from __future__ import annotations

from pathlib import Path

import pytest

from helpers import GIT_AVAILABLE, init_repo
from wtm.locator import open_repository
from wtm.models import Repository
from wtm.orchestrator import WorktreeOrchestrator


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    for name in (
        "WORKTREES_DIR",
        "WORKTREE_WORKTREES_DIR",
        "PROGRAMMING_DIR",
        "WORKTREE_PROGRAMMING_DIR",
        "JIRA_PATTERN",
        "ORG_JIRA_TICKET_LINK",
        "WTM_CONFIG",
    ):
        monkeypatch.delenv(name, raising=False)
    return home


@pytest.fixture
def repo(tmp_path: Path) -> Repository:
    if not GIT_AVAILABLE:
        pytest.skip("git missing")
    return open_repository(init_repo(tmp_path / "projects" / "repo"))


@pytest.fixture
def warnings_seen() -> list[str]:
    return []


@pytest.fixture
def orchestrator(tmp_path: Path, warnings_seen: list[str]) -> WorktreeOrchestrator:
    return WorktreeOrchestrator(
        tmp_path / "worktrees",
        install=False,
        on_warning=warnings_seen.append,
    )
