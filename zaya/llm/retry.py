"""Failure classification and the retry policy for completion calls."""

from __future__ import annotations

import enum
import re

MAX_ATTEMPTS = 5
BACKOFF_STEP_SECONDS = 3

UNAVAILABLE_MARKER = "Service Unavailable"
RETRY_AFTER_MARKER = "Please try again in"

_NUMBER_RE = re.compile(r"\d+")


class FailureKind(enum.Enum):
    UNAVAILABLE = "unavailable"
    RATE_LIMITED = "rate_limited"
    OTHER = "other"


class RetryAction(enum.Enum):
    BACKOFF = "backoff"  # sleep attempt * step, same endpoint
    FAILOVER = "failover"  # trim history, wait out the limit on the fallback endpoint
    ABORT = "abort"


RETRY_POLICY: dict[FailureKind, RetryAction] = {
    FailureKind.UNAVAILABLE: RetryAction.BACKOFF,
    FailureKind.RATE_LIMITED: RetryAction.FAILOVER,
    FailureKind.OTHER: RetryAction.ABORT,
}


def classify_failure(text: str) -> FailureKind:
    """Map failure text from a completion client to a FailureKind."""
    if UNAVAILABLE_MARKER in text:
        return FailureKind.UNAVAILABLE
    if RETRY_AFTER_MARKER in text:
        return FailureKind.RATE_LIMITED
    return FailureKind.OTHER


def parse_wait_seconds(text: str) -> int:
    """Return the first integer after the retry-after marker.

    Raises ValueError if the marker or a number after it is missing.
    """
    idx = text.find(RETRY_AFTER_MARKER)
    if idx < 0:
        raise ValueError(f"no retry hint in {text!r}")
    match = _NUMBER_RE.search(text, idx + len(RETRY_AFTER_MARKER))
    if match is None:
        raise ValueError(f"no wait time after retry hint in {text!r}")
    return int(match.group())


def backoff_seconds(attempt: int) -> int:
    """Linear backoff for transient unavailability."""
    return attempt * BACKOFF_STEP_SECONDS
