from __future__ import annotations

import os
from pathlib import Path

import pytest

from helpers import requires_git
from wtm.cache import SessionCache
from wtm.errors import ValidationFailed
from wtm.locator import find_repositories, open_repository, pick_repository, recall
from wtm.models import Repository


def _fake_repo(path: Path, as_file: bool = False) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    if as_file:
        (path / ".git").write_text("gitdir: /somewhere/.git/worktrees/x\n")
    else:
        (path / ".git").mkdir()
    return path


class PickFirst:
    name = "first"

    def __init__(self) -> None:
        self.default: str | None = None

    def choose(self, options, prompt, default=None):  # type: ignore[no-untyped-def]
        self.default = default
        return options[-1].key


def test_finds_repositories_sorted(tmp_path: Path) -> None:
    root = tmp_path / "code"
    _fake_repo(root / "zeta")
    _fake_repo(root / "alpha")
    _fake_repo(root / "group" / "linked", as_file=True)
    (root / "empty").mkdir()
    found = find_repositories(root, max_depth=3, with_details=False)
    assert [repo.path for repo in found] == [
        (root / "alpha").resolve(),
        (root / "group" / "linked").resolve(),
        (root / "zeta").resolve(),
    ]
    assert found[0].name == "alpha"


def test_does_not_descend_into_repositories(tmp_path: Path) -> None:
    root = tmp_path / "code"
    outer = _fake_repo(root / "outer")
    _fake_repo(outer / "vendor" / "inner")
    _fake_repo(outer / ".git" / "modules" / "sub")
    found = find_repositories(root, max_depth=5, with_details=False)
    assert [repo.path for repo in found] == [outer.resolve()]


def test_depth_bound(tmp_path: Path) -> None:
    root = tmp_path / "code"
    _fake_repo(root / "a")
    _fake_repo(root / "b" / "c")
    _fake_repo(root / "d" / "e" / "f")
    names = [repo.name for repo in find_repositories(root, max_depth=2, with_details=False)]
    assert names == ["a", "c"]
    names = [repo.name for repo in find_repositories(root, max_depth=1, with_details=False)]
    assert names == ["a"]


def test_root_is_repository(tmp_path: Path) -> None:
    root = _fake_repo(tmp_path / "solo")
    found = find_repositories(root, with_details=False)
    assert [repo.path for repo in found] == [root.resolve()]


def test_no_duplicates_through_symlinks(tmp_path: Path) -> None:
    root = tmp_path / "code"
    real = _fake_repo(root / "real")
    (root / "alias").symlink_to(real, target_is_directory=True)
    found = find_repositories(root, with_details=False)
    paths = [repo.path for repo in found]
    assert len(paths) == len(set(paths))
    assert real.resolve() in paths


def test_bad_root(tmp_path: Path) -> None:
    with pytest.raises(ValidationFailed):
        find_repositories(tmp_path / "missing")
    file_root = tmp_path / "file.txt"
    file_root.write_text("x")
    with pytest.raises(ValidationFailed):
        find_repositories(file_root)


@pytest.mark.skipif(os.name != "posix" or os.geteuid() == 0, reason="needs a non-root posix user")
def test_unreadable_directories_are_skipped(tmp_path: Path) -> None:
    root = tmp_path / "code"
    _fake_repo(root / "ok")
    locked = root / "locked"
    _fake_repo(locked / "hidden")
    locked.chmod(0)
    try:
        names = [repo.name for repo in find_repositories(root, with_details=False)]
    finally:
        locked.chmod(0o755)
    assert names == ["ok"]


def test_open_repository_requires_git_entry(tmp_path: Path) -> None:
    plain = tmp_path / "plain"
    plain.mkdir()
    with pytest.raises(ValidationFailed):
        open_repository(plain)
    repo = open_repository(_fake_repo(tmp_path / "proj"), with_details=False)
    assert repo.is_valid()


def test_pick_repository_uses_and_updates_session(tmp_path: Path) -> None:
    repos = [
        Repository(path=tmp_path / "a", name="a"),
        Repository(path=tmp_path / "b", name="b"),
    ]
    session = SessionCache(tmp_path / "last", last_project=tmp_path / "a")
    selector = PickFirst()
    chosen = pick_repository(repos, session, selector=selector)
    assert selector.default == str(tmp_path / "a")
    assert chosen.name == "b"
    assert session.last_project == tmp_path / "b"
    assert not (tmp_path / "last").exists()


def test_recall(tmp_path: Path) -> None:
    repo_path = _fake_repo(tmp_path / "proj")
    session = SessionCache(tmp_path / "last", last_project=repo_path)
    recalled = recall(session)
    assert recalled is not None and recalled.path == repo_path
    assert recall(SessionCache(tmp_path / "last", last_project=tmp_path / "gone")) is None
    assert recall(SessionCache(tmp_path / "last")) is None


@requires_git
def test_details_from_git(repo: Repository) -> None:
    found = find_repositories(repo.path.parent)
    assert len(found) == 1
    assert found[0].branch == "main"
    assert found[0].remote_url is None
    assert found[0].last_modified is not None
