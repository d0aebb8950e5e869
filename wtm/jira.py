"""Ticket summaries from Jira through the Atlassian CLI."""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
from typing import Protocol

from .errors import ExternalCallFailed, ToolMissing

logger = logging.getLogger(__name__)


class TicketClient(Protocol):
    def fetch_summary(self, key: str) -> str:
        """Return the one-line summary of ticket `key`."""
        ...


class AcliTicketClient:
    """Runs `acli jira workitem view KEY --json --fields summary`."""

    def __init__(self, binary: str = "acli") -> None:
        self.binary = binary

    def fetch_summary(self, key: str) -> str:
        if shutil.which(self.binary) is None:
            raise ToolMissing(self.binary)
        cmd = [self.binary, "jira", "workitem", "view", key, "--json", "--fields", "summary"]
        logger.debug("running %s", " ".join(cmd))
        result = subprocess.run(cmd, check=False, capture_output=True, text=True)
        if result.returncode != 0:
            stderr = result.stderr.strip() or result.stdout.strip() or "unknown error"
            raise ExternalCallFailed(f"failed to fetch {key}: {stderr}")
        return parse_summary(key, result.stdout)


def parse_summary(key: str, payload: str) -> str:
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ExternalCallFailed(f"invalid response for {key}: {exc}") from exc
    fields = data.get("fields") if isinstance(data, dict) else None
    summary = fields.get("summary") if isinstance(fields, dict) else None
    if not isinstance(summary, str) or not summary.strip():
        raise ExternalCallFailed(f"no summary found for {key}")
    return summary.strip()
