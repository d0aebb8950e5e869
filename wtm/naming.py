"""Branch, folder and commit-title derivation."""

from __future__ import annotations

import logging
import re
from typing import Protocol

from .config import DEFAULT_TICKET_PATTERN
from .errors import ExternalCallFailed, ToolMissing, UserCancelled, ValidationFailed
from .fallback import Attempt, attempt_then_recover
from .jira import TicketClient
from .models import BranchPlan, CommitType

logger = logging.getLogger(__name__)

COMMIT_TYPES: tuple[CommitType, ...] = (
    CommitType("feat", "✨", "A new feature"),
    CommitType("fix", "🐛", "A bug fix"),
    CommitType("docs", "📚", "Documentation only changes"),
    CommitType("style", "💎", "Formatting, whitespace, missing semicolons"),
    CommitType("refactor", "🔨", "A change that neither fixes a bug nor adds a feature"),
    CommitType("test", "🧪", "Adding or correcting tests"),
    CommitType("chore", "🔧", "Build process or auxiliary tool changes"),
    CommitType("revert", "⏪", "Reverts a previous commit"),
    CommitType("build", "📦", "Changes to the build system or dependencies"),
    CommitType("ci", "👷", "Changes to CI configuration"),
    CommitType("perf", "🚀", "A change that improves performance"),
)
_TYPES_BY_NAME = {commit_type.name: commit_type for commit_type in COMMIT_TYPES}
DEFAULT_COMMIT_TYPE = "feat"

FORBIDDEN_BRANCH_CHARS = frozenset("~^:?*[]")


class Prompter(Protocol):
    def confirm(self, text: str) -> bool: ...

    def text(self, text: str) -> str: ...


def emoji_for(commit_type: str) -> str:
    found = _TYPES_BY_NAME.get(commit_type) or _TYPES_BY_NAME[DEFAULT_COMMIT_TYPE]
    return found.emoji


def slugify(text: str) -> str:
    """Lowercase and join alphanumeric runs with single hyphens."""
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")


def sanitize_summary(text: str) -> str:
    lowered = re.sub(r"[^a-z0-9 ]", "", re.sub(r"\s+", " ", text.lower()))
    return re.sub(r" +", " ", lowered).strip()


def sanitize_folder(text: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]+", "-", text).strip("-.")


def is_valid_branch_name(name: str) -> bool:
    if not name:
        return False
    return not any(ch.isspace() or ch in FORBIDDEN_BRANCH_CHARS for ch in name)


def validate_branch_name(name: str) -> None:
    if not is_valid_branch_name(name):
        raise ValidationFailed(f"Invalid branch name: {name!r}")


def folder_for_branch(branch: str) -> str:
    """Directory leaf for an existing branch: drop the type prefix, flatten the rest."""
    _, sep, rest = branch.partition("/")
    name = rest if sep and rest else branch
    return name.replace("/", "_")


class NamingEngine:
    def __init__(
        self,
        ticket_pattern: str = DEFAULT_TICKET_PATTERN,
        ticket_link: str = "",
        client: TicketClient | None = None,
        prompter: Prompter | None = None,
    ) -> None:
        self.ticket_regex = re.compile(ticket_pattern)
        self.ticket_link = ticket_link
        self.client = client
        self.prompter = prompter

    def is_ticket(self, value: str) -> bool:
        return bool(self.ticket_regex.match(value.strip()))

    def plan(self, user_input: str, commit_type: str = DEFAULT_COMMIT_TYPE) -> BranchPlan:
        """Build a BranchPlan from a ticket key or free text."""
        value = user_input.strip()
        if not value:
            raise ValidationFailed("A ticket key or description is required")
        if self.is_ticket(value):
            summary = self.summary_attempt(value).unwrap()
            return self.plan_for_ticket(value, summary, commit_type)
        return self.plan_for_text(value, commit_type)

    def summary_attempt(self, key: str) -> Attempt[str]:
        """Fetch a ticket summary, falling back to asking the user for one."""

        def _fetch() -> str:
            if self.client is None:
                raise ExternalCallFailed("no ticket client configured")
            return self.client.fetch_summary(key)

        return attempt_then_recover(
            _fetch,
            lambda reason: self._manual_summary(key, reason),
            recoverable=(ExternalCallFailed, ToolMissing),
        )

    def _manual_summary(self, key: str, reason: str) -> str:
        logger.info("could not fetch summary for %s: %s", key, reason)
        if self.prompter is None:
            raise ExternalCallFailed(f"could not fetch summary for {key}: {reason}")
        if not self.prompter.confirm(f"Could not fetch {key} ({reason}). Enter a description manually?"):
            raise UserCancelled(f"Aborted: no description for {key}.")
        return self.prompter.text(f"Description for {key}").strip()

    def plan_for_ticket(self, key: str, summary: str, commit_type: str = DEFAULT_COMMIT_TYPE) -> BranchPlan:
        slug = slugify(summary)
        if not slug:
            raise ValidationFailed(f"Summary {summary!r} has no usable characters for a branch name")
        branch = f"{commit_type}/{key.lower()}_{slug}"
        validate_branch_name(branch)
        ticket = key.upper()
        title = f"{commit_type}: {emoji_for(commit_type)} {ticket} {sanitize_summary(summary)}".rstrip()
        body = f"Jira: {self.ticket_link}{ticket}" if self.ticket_link else None
        return BranchPlan(
            branch=branch,
            folder=f"{ticket}_{slug}",
            commit_title=title,
            commit_body=body,
            ticket=ticket,
        )

    def plan_for_text(self, text: str, commit_type: str = DEFAULT_COMMIT_TYPE) -> BranchPlan:
        slug = slugify(text)
        if not slug:
            raise ValidationFailed(f"Description {text!r} has no usable characters for a branch name")
        branch = f"{commit_type}/{slug}"
        validate_branch_name(branch)
        return BranchPlan(
            branch=branch,
            folder=sanitize_folder(text) or slug,
            commit_title=f"{commit_type}: {emoji_for(commit_type)} {text}",
        )
