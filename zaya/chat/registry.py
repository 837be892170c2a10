"""Session registry with sliding idle expiration."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from zaya.chat.buffer import ConversationBuffer

logger = logging.getLogger(__name__)

_SWEEP_INTERVAL_SECONDS = 60


@dataclass
class _Entry:
    buffer: ConversationBuffer
    last_access: float


class SessionRegistry:
    """Maps session IDs to conversation buffers.

    Every read or write of an entry resets its idle timer. Entries left
    untouched for longer than *idle_ttl_seconds* are dropped, lazily on
    access and periodically by the sweeper task.

    All mutations happen synchronously on the event loop thread, so
    concurrent tasks can share one registry. Requests for the same session
    are serialized by the buffer's own lock, not here.
    """

    def __init__(
        self,
        max_cost: int,
        idle_ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_cost = max_cost
        self.idle_ttl_seconds = idle_ttl_seconds
        self._clock = clock
        self._entries: dict[int, _Entry] = {}
        self._sweeper: asyncio.Task | None = None

    def __len__(self) -> int:
        return len(self._entries)

    def _touch(self, session_id: int) -> _Entry | None:
        entry = self._entries.get(session_id)
        if entry is None:
            return None
        now = self._clock()
        if now - entry.last_access > self.idle_ttl_seconds:
            del self._entries[session_id]
            logger.info("Session %s expired", session_id)
            return None
        entry.last_access = now
        return entry

    def has(self, session_id: int) -> bool:
        return self._touch(session_id) is not None

    def get(self, session_id: int) -> ConversationBuffer | None:
        entry = self._touch(session_id)
        return entry.buffer if entry else None

    def create(self, session_id: int, system_prompt: str, max_count: int) -> ConversationBuffer:
        """Store a fresh buffer for *session_id*, replacing any existing one."""
        buffer = ConversationBuffer(system_prompt, max_cost=self.max_cost, max_count=max_count)
        self._entries[session_id] = _Entry(buffer=buffer, last_access=self._clock())
        return buffer

    def snapshot_all(self) -> list[tuple[int, ConversationBuffer]]:
        """Return all live entries without refreshing their timers."""
        now = self._clock()
        return [
            (session_id, entry.buffer)
            for session_id, entry in self._entries.items()
            if now - entry.last_access <= self.idle_ttl_seconds
        ]

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        now = self._clock()
        expired = [
            session_id
            for session_id, entry in self._entries.items()
            if now - entry.last_access > self.idle_ttl_seconds
        ]
        for session_id in expired:
            del self._entries[session_id]
        if expired:
            logger.info("Purged %d expired session(s)", len(expired))
        return len(expired)

    # -- Background sweeping ---------------------------------------------------

    async def sweep_loop(self, interval: float = _SWEEP_INTERVAL_SECONDS) -> None:
        """Purge expired entries forever, every *interval* seconds."""
        while True:
            await asyncio.sleep(interval)
            self.purge_expired()

    def start_sweeper(self, interval: float = _SWEEP_INTERVAL_SECONDS) -> asyncio.Task:
        """Spawn the sweep loop as a background task (idempotent)."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.ensure_future(self.sweep_loop(interval))
            logger.debug("Session sweeper started (interval=%ss)", interval)
        return self._sweeper

    def stop_sweeper(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            self._sweeper = None
