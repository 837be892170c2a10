"""Per-session conversation buffer with a context budget and history limit.

Message cost is the UTF-8 byte length of the text capped per role. It is a
cheap stand-in for a token count, not a tokenizer result, and eviction timing
depends on it staying that way.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

SYSTEM_MESSAGE_CAP = 4000
USER_MESSAGE_CAP = 4000


def message_cost(text: str, cap: int) -> int:
    """Return the accounted length of *text*, capped at *cap*."""
    return min(len(text.encode("utf-8")), cap)


@dataclass(frozen=True)
class Message:
    """A single conversation turn."""

    role: str  # "system", "user" or "assistant"
    text: str
    cost: int


@dataclass(frozen=True)
class DialogMessage:
    """One message of a session, as exported for persistence."""

    session_id: int
    role: str
    text: str


@dataclass(frozen=True)
class BufferState:
    """Saved contents of a buffer, see ``ConversationBuffer.checkpoint``."""

    messages: tuple[Message, ...]
    cur_cost: int
    last_update: float


class ConversationBuffer:
    """Ordered history of one session, always led by its system prompt.

    Args:
        system_prompt: Persona prompt kept as message 0, never evicted.
        max_cost: Context budget; 0 disables the cost limit.
        max_count: Max retained non-system messages; 0 disables the limit.
    """

    def __init__(self, system_prompt: str, max_cost: int = 0, max_count: int = 0) -> None:
        self.max_cost = max_cost
        self.max_count = max_count
        self.lock = asyncio.Lock()
        self._messages: list[Message] = []
        self.cur_cost = 0
        self.last_update = time.monotonic()
        self._append("system", system_prompt, SYSTEM_MESSAGE_CAP)

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def system_prompt(self) -> str:
        return self._messages[0].text

    @property
    def last(self) -> Message:
        return self._messages[-1]

    @property
    def history_count(self) -> int:
        """Number of non-system messages."""
        return len(self._messages) - 1

    def __len__(self) -> int:
        return len(self._messages)

    # -- Mutation --------------------------------------------------------------

    def _append(self, role: str, text: str, cap: int) -> Message:
        message = Message(role=role, text=text, cost=message_cost(text, cap))
        self._messages.append(message)
        self.cur_cost += message.cost
        self.last_update = time.monotonic()

        if (self.max_cost > 0 and self.cur_cost >= self.max_cost) or (
            self.max_count > 0 and self.history_count > self.max_count
        ):
            self.clean_history()
        return message

    def add_user(self, text: str) -> Message:
        return self._append("user", text, USER_MESSAGE_CAP)

    def add_assistant(self, text: str, cap: int) -> Message:
        return self._append("assistant", text, cap)

    def remove_last(self) -> Message | None:
        """Undo the most recent append. The system message is never removed."""
        if len(self._messages) <= 1:
            return None
        message = self._messages.pop()
        self.cur_cost -= message.cost
        return message

    def clean_history(self) -> None:
        """Evict the oldest turns until both limits hold.

        Removal always stops on an even count so the remaining history is
        still made of whole user/assistant pairs.
        """
        count = self.history_count
        if count == 0:
            return

        removed = 0
        while removed < count and (
            (self.max_cost > 0 and self.cur_cost >= self.max_cost)
            or (self.max_count > 0 and count - removed > self.max_count)
        ):
            removed += 1
            self.cur_cost -= self._messages[removed].cost
        while (removed == 0 or removed % 2 != 0) and removed < count:
            removed += 1
            self.cur_cost -= self._messages[removed].cost

        del self._messages[1 : removed + 1]

        logger.info(
            "Cleaned history: removed=%d left=%d cost=%d",
            removed,
            len(self._messages),
            self.cur_cost,
        )

    def restart(self) -> None:
        """Drop everything but the system message."""
        del self._messages[1:]
        self.cur_cost = self._messages[0].cost

    def checkpoint(self) -> BufferState:
        return BufferState(tuple(self._messages), self.cur_cost, self.last_update)

    def restore(self, state: BufferState) -> None:
        """Put the buffer back exactly as it was at *state*, evictions included."""
        self._messages = list(state.messages)
        self.cur_cost = state.cur_cost
        self.last_update = state.last_update

    # -- Queries ---------------------------------------------------------------

    def is_expired(self, max_idle_seconds: float) -> bool:
        """True when the buffer has not been appended to for *max_idle_seconds*."""
        return time.monotonic() - self.last_update > max_idle_seconds

    def to_api_messages(self) -> list[dict[str, Any]]:
        """Format messages as role/content dicts."""
        return [{"role": m.role, "content": m.text} for m in self._messages]
