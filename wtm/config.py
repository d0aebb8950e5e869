"""User configuration loading and validation."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, cast

import yaml

from .errors import ConfigInvalid

logger = logging.getLogger(__name__)

DEFAULT_TICKET_PATTERN = r"^[A-Z]+-[0-9]+$"
MAX_DEPTH_RANGE = range(1, 11)
SELECTORS = ("auto", "fzf", "list", "numbered")

DEFAULTS: dict[str, dict[str, object]] = {
    "directories": {
        "worktrees": "~/Programming/worktrees",
        "programming": "~/Programming",
        "notes": "~/Programming/notes.md",
    },
    "git": {
        "default_branch": "main",
        "remotes": ["origin"],
        "max_depth": 3,
    },
    "jira": {
        "pattern": DEFAULT_TICKET_PATTERN,
        "ticket_link": "",
    },
    "ui": {
        "selector": "auto",
    },
    "notes": {
        "enabled": False,
    },
}


@dataclass
class Config:
    worktrees_dir: Path
    programming_dir: Path
    notes_dir: Path
    default_branch: str = "main"
    remotes: list[str] = field(default_factory=lambda: ["origin"])
    max_depth: int = 3
    ticket_pattern: str = DEFAULT_TICKET_PATTERN
    ticket_link: str = ""
    selector: str = "auto"
    notes_enabled: bool = False

    @property
    def ticket_regex(self) -> re.Pattern[str]:
        return re.compile(self.ticket_pattern)


def config_path(env: Mapping[str, str] | None = None) -> Path:
    env = os.environ if env is None else env
    base = env.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base).expanduser() / "wtm" / "config.yaml"


def _expect_section(raw: dict[str, object], name: str) -> dict[str, object]:
    value = raw.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigInvalid(f"Invalid {name} section in config: expected a mapping")
    return cast(dict[str, object], value)


def _expect_str(section: dict[str, object], key: str, default: object, where: str) -> str:
    value = section.get(key, default)
    if not isinstance(value, str):
        raise ConfigInvalid(f"{where}.{key} must be a string")
    return value


def _read_file(path: Path) -> dict[str, object]:
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigInvalid(f"Invalid YAML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigInvalid(f"Cannot read {path}: {exc}") from exc
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigInvalid(f"Invalid config format in {path}: expected a mapping")
    return raw


def write_defaults(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(DEFAULTS, sort_keys=False), encoding="utf-8")


def parse_config(raw: dict[str, object], env: Mapping[str, str] | None = None) -> Config:
    """Build a validated Config from parsed YAML plus environment overrides."""
    env = os.environ if env is None else env
    dirs = _expect_section(raw, "directories")
    git = _expect_section(raw, "git")
    jira = _expect_section(raw, "jira")
    ui = _expect_section(raw, "ui")
    notes = _expect_section(raw, "notes")

    worktrees = _expect_str(dirs, "worktrees", DEFAULTS["directories"]["worktrees"], "directories")
    programming = _expect_str(
        dirs, "programming", DEFAULTS["directories"]["programming"], "directories"
    )
    notes_dir = _expect_str(dirs, "notes", DEFAULTS["directories"]["notes"], "directories")
    worktrees = env.get("WORKTREE_WORKTREES_DIR") or env.get("WORKTREES_DIR") or worktrees
    programming = env.get("WORKTREE_PROGRAMMING_DIR") or env.get("PROGRAMMING_DIR") or programming

    default_branch = _expect_str(git, "default_branch", "main", "git").strip()
    if not default_branch:
        raise ConfigInvalid("git.default_branch must not be empty")

    remotes: Any = git.get("remotes", ["origin"])
    if not isinstance(remotes, list) or not all(isinstance(r, str) and r for r in remotes):
        raise ConfigInvalid("git.remotes must be a list of remote names")

    max_depth = git.get("max_depth", 3)
    if isinstance(max_depth, bool) or not isinstance(max_depth, int) or max_depth not in MAX_DEPTH_RANGE:
        raise ConfigInvalid(f"git.max_depth must be an integer between 1 and 10, got {max_depth!r}")

    pattern = env.get("JIRA_PATTERN") or _expect_str(jira, "pattern", DEFAULT_TICKET_PATTERN, "jira")
    try:
        re.compile(pattern)
    except re.error as exc:
        raise ConfigInvalid(f"Invalid ticket pattern {pattern!r}: {exc}") from exc
    ticket_link = env.get("ORG_JIRA_TICKET_LINK") or _expect_str(jira, "ticket_link", "", "jira")

    selector = _expect_str(ui, "selector", "auto", "ui")
    if selector not in SELECTORS:
        raise ConfigInvalid(f"ui.selector must be one of {', '.join(SELECTORS)}")

    notes_enabled = notes.get("enabled", False)
    if not isinstance(notes_enabled, bool):
        raise ConfigInvalid("notes.enabled must be true or false")

    return Config(
        worktrees_dir=Path(worktrees).expanduser(),
        programming_dir=Path(programming).expanduser(),
        notes_dir=Path(notes_dir).expanduser(),
        default_branch=default_branch,
        remotes=list(remotes),
        max_depth=max_depth,
        ticket_pattern=pattern,
        ticket_link=ticket_link,
        selector=selector,
        notes_enabled=notes_enabled,
    )


def load_config(path: Path | None = None, env: Mapping[str, str] | None = None) -> Config:
    """Load the config file, writing defaults when it does not exist yet."""
    path = path or config_path(env)
    if path.is_file():
        raw = _read_file(path)
    else:
        raw = {}
        try:
            write_defaults(path)
            logger.info("wrote default config to %s", path)
        except OSError as exc:
            logger.warning("could not write default config to %s: %s", path, exc)
    return parse_config(raw, env)
