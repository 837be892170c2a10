"""Process-wide selection between the primary and fallback model endpoints."""

from __future__ import annotations

import asyncio
import enum
import logging

logger = logging.getLogger(__name__)


class Endpoint(enum.Enum):
    PRIMARY = "primary"
    FALLBACK = "fallback"


FRIENDLY_NAMES: dict[Endpoint, str] = {
    Endpoint.PRIMARY: "primary",
    Endpoint.FALLBACK: "auxiliary",
}


def friendly(endpoint: Endpoint) -> str:
    """Return the user-facing name of an endpoint."""
    return FRIENDLY_NAMES[endpoint]


class EndpointSelector:
    """Tracks which endpoint requests go to.

    A rate limit on the shared account affects every session, so the choice
    is global rather than per session. ``fail_over()`` routes traffic to the
    fallback endpoint and schedules the switch back on the running loop.
    Reads and writes are not coordinated with callers: a scheduled switch
    back racing a new failover resolves last-write-wins.
    """

    def __init__(self) -> None:
        self._active = Endpoint.PRIMARY
        self._restore_handle: asyncio.TimerHandle | None = None

    @property
    def active(self) -> Endpoint:
        return self._active

    def is_fallback(self) -> bool:
        return self._active is Endpoint.FALLBACK

    def fail_over(self, delay: float) -> None:
        """Switch to the fallback endpoint for *delay* seconds."""
        logger.info("Switching to fallback model for %ss", delay)
        self._active = Endpoint.FALLBACK
        if self._restore_handle is not None:
            self._restore_handle.cancel()
        loop = asyncio.get_running_loop()
        self._restore_handle = loop.call_later(delay, self._restore)

    def _restore(self) -> None:
        logger.info("Switching to primary model")
        self._active = Endpoint.PRIMARY
        self._restore_handle = None

    def close(self) -> None:
        """Cancel a pending switch back, if any."""
        if self._restore_handle is not None:
            self._restore_handle.cancel()
            self._restore_handle = None
