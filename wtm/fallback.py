"""Two-step attempt-then-recover helper used by every fallback chain."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

from .errors import WtmError

T = TypeVar("T")

logger = logging.getLogger(__name__)


class Outcome(Enum):
    SUCCEEDED = "succeeded"
    FELL_BACK = "fell_back"
    FAILED = "failed"


@dataclass(frozen=True)
class Attempt(Generic[T]):
    """Tagged result recording which path of a fallback chain ran."""

    outcome: Outcome
    value: T | None = None
    reason: str | None = None
    error: WtmError | None = None

    @property
    def fell_back(self) -> bool:
        return self.outcome is Outcome.FELL_BACK

    def unwrap(self) -> T:
        """Return the value, re-raising the recovery error on failure."""
        if self.outcome is Outcome.FAILED:
            raise self.error or WtmError(self.reason or "fallback failed")
        return self.value  # type: ignore[return-value]


def attempt_then_recover(
    primary: Callable[[], T],
    recover: Callable[[str], T],
    recoverable: tuple[type[WtmError], ...] = (WtmError,),
) -> Attempt[T]:
    """Run `primary`; on a recoverable error run `recover` with the reason.

    Exceptions outside `recoverable` (including `UserCancelled`) propagate
    untouched from either step.
    """
    try:
        return Attempt(Outcome.SUCCEEDED, value=primary())
    except recoverable as exc:
        reason = str(exc)
    logger.debug("primary path failed, recovering: %s", reason)
    try:
        value = recover(reason)
    except recoverable as exc:
        return Attempt(Outcome.FAILED, reason=reason, error=exc)
    return Attempt(Outcome.FELL_BACK, value=value, reason=reason)
