"""Last selected project, remembered between runs."""

from __future__ import annotations

from pathlib import Path


def default_cache_path() -> Path:
    return Path.home() / ".cache" / "wtm" / "last_project"


class SessionCache:
    """Last selected project, kept in a single plain-text file.

    Nothing is written until the owner calls `save()`.
    """

    def __init__(self, path: Path, last_project: Path | None = None) -> None:
        self.path = path
        self.last_project = last_project

    @classmethod
    def load(cls, path: Path | None = None) -> SessionCache:
        path = path or default_cache_path()
        try:
            text = path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return cls(path)
        return cls(path, Path(text) if text else None)

    def remember(self, project: Path) -> None:
        self.last_project = project.absolute()

    def save(self) -> None:
        if self.last_project is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(f"{self.last_project}\n", encoding="utf-8")
