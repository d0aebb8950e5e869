"""Error types raised across wtm."""

from __future__ import annotations


class WtmError(Exception):
    """Base class for every reportable failure."""


class ConfigInvalid(WtmError):
    """Configuration file or override is unusable."""


class ToolMissing(WtmError):
    """A required external binary is not on PATH."""

    def __init__(self, tool: str) -> None:
        self.tool = tool
        super().__init__(f"{tool} is required but was not found on PATH")


class ValidationFailed(WtmError):
    """Input was rejected before anything was changed."""


class ExternalCallFailed(WtmError):
    """A subprocess or external service call failed."""


class UserCancelled(Exception):
    """The user quit a prompt. Not a failure."""

    def __init__(self, message: str = "Cancelled.") -> None:
        super().__init__(message)
