"""Completion orchestrator: one request/response cycle per session turn.

The orchestrator appends the user's text to the session buffer, submits the
whole buffer to the active endpoint and recovers from throttling:

- *unavailable* failures are retried on the same endpoint with linear
  backoff;
- *rate-limited* failures trim the history and either wait out the limit
  (already on the fallback endpoint) or fail over to the fallback endpoint
  until the limit expires;
- anything else aborts.

Whenever a turn fails the buffer is restored from a checkpoint taken before
the user message was added. Evictions and trims made during the turn are
undone too, so failed turns leave no trace in the history.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from zaya.chat.buffer import ConversationBuffer, DialogMessage
from zaya.chat.registry import SessionRegistry
from zaya.llm.client import (
    Completion,
    CompletionClient,
    CompletionError,
    GenerationOptions,
    build_clients,
)
from zaya.llm.models import EndpointSelector
from zaya.llm.retry import (
    MAX_ATTEMPTS,
    RETRY_POLICY,
    RetryAction,
    backoff_seconds,
    classify_failure,
    parse_wait_seconds,
)

if TYPE_CHECKING:
    from zaya.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class Reply:
    """A model reply and the numbers callers use for usage accounting.

    Attributes:
        text: Raw reply text (not escaped).
        at_end: False when the model stopped on the length limit, meaning
            the reply can be continued.
        context_length: Buffer cost after the reply was appended.
        reply_length: Accounted length of the reply itself.
    """

    text: str
    at_end: bool
    context_length: int
    reply_length: int


class Orchestrator:
    """Drives session buffers through completion calls.

    Args:
        primary: Client for the primary model.
        fallback: Client used while the primary is rate limited.
        options: Generation options sent with every request.
        registry: Holds one buffer per session.
        max_reply_length: Cost cap applied to assistant messages.
        memory_duration_seconds: Idle time after which a session's history
            is forgotten on the next message (unless the caller forces it).
        selector: Endpoint selection state (one per process).
        max_attempts: Completion attempts per turn.
        sleep: Coroutine used for backoff waits.
    """

    def __init__(
        self,
        primary: CompletionClient,
        fallback: CompletionClient,
        *,
        options: GenerationOptions,
        registry: SessionRegistry,
        max_reply_length: int,
        memory_duration_seconds: float,
        selector: EndpointSelector | None = None,
        max_attempts: int = MAX_ATTEMPTS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.primary = primary
        self.fallback = fallback
        self.options = options
        self.registry = registry
        self.max_reply_length = max_reply_length
        self.memory_duration_seconds = memory_duration_seconds
        self.selector = selector or EndpointSelector()
        self.max_attempts = max_attempts
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings) -> Orchestrator:
        """Build an orchestrator, its clients and registry from settings."""
        primary, fallback = build_clients(settings)
        options = GenerationOptions(
            max_tokens=settings.max_reply_tokens,
            temperature=settings.temperature,
            top_k=settings.top_k,
            repetition_penalty=settings.repetition_penalty,
            stop=settings.get_stop_sequences(),
        )
        registry = SessionRegistry(
            max_cost=settings.max_context_cost,
            idle_ttl_seconds=settings.session_ttl_seconds,
        )
        logger.info(
            "Orchestrator: max_cost=%d max_reply=%d temperature=%s top_k=%d rep_pen=%s stop=%s",
            settings.max_context_cost,
            settings.max_reply_tokens,
            options.temperature,
            options.top_k,
            options.repetition_penalty,
            options.stop,
        )
        return cls(
            primary,
            fallback,
            options=options,
            registry=registry,
            max_reply_length=settings.max_reply_tokens,
            memory_duration_seconds=settings.memory_duration_seconds,
        )

    # -- Sessions --------------------------------------------------------------

    def is_fallback_active(self) -> bool:
        return self.selector.is_fallback()

    def has_session(self, session_id: int) -> bool:
        return self.registry.has(session_id)

    def start_session(self, session_id: int, prompt: str, max_count: int) -> None:
        """Start (or restart) a session with a fresh buffer."""
        self.registry.create(session_id, prompt, max_count)
        logger.info("Chat started: %s", session_id)

    # -- Replies ---------------------------------------------------------------

    async def get_reply(
        self, session_id: int, user_text: str, force_keep_history: bool = False
    ) -> Reply | None:
        """Generate the model's reply to *user_text*.

        Returns None if the session is not started or the turn failed.
        Concurrent calls for the same session run one at a time.
        """
        begin = time.monotonic()

        buffer = self.registry.get(session_id)
        if buffer is None:
            logger.warning("Chat is not started: %s", session_id)
            return None

        async with buffer.lock:
            state = buffer.checkpoint()
            if not force_keep_history and buffer.is_expired(self.memory_duration_seconds):
                logger.info("Chat %s idle too long, restarting history", session_id)
                buffer.restart()

            buffer.add_user(user_text)

            completion = await self._generate(session_id, buffer)
            if completion is None:
                buffer.restore(state)
                return None

            if not completion.choices:
                logger.warning("No content returned from model for chat %s", session_id)
                buffer.restore(state)
                return None

            if len(completion.choices) > 1:
                logger.warning(
                    "Model returned %d choices instead of one", len(completion.choices)
                )

            choice = completion.choices[0]
            if not choice.text:
                logger.warning("Model reply content is empty for chat %s", session_id)
                buffer.restore(state)
                return None

            reply_message = buffer.add_assistant(choice.text, self.max_reply_length)
            reply = Reply(
                text=choice.text,
                at_end=choice.stop_reason != "length",
                context_length=buffer.cur_cost,
                reply_length=reply_message.cost,
            )

        logger.info(
            "AI message: chat=%s size=%d at_end=%s dur=%.2fms",
            session_id,
            reply.reply_length,
            reply.at_end,
            (time.monotonic() - begin) * 1000,
        )
        return reply

    async def _generate(self, session_id: int, buffer: ConversationBuffer) -> Completion | None:
        """Submit the buffer, retrying according to RETRY_POLICY."""
        for attempt in range(1, self.max_attempts + 1):
            # Eviction can drop the pending user message itself.
            if buffer.last.role != "user":
                logger.warning("Nothing to submit for chat %s: message too long", session_id)
                return None

            on_fallback = self.selector.is_fallback()
            client = self.fallback if on_fallback else self.primary
            try:
                return await client.submit(buffer.messages, self.options)
            except CompletionError as exc:
                error_text = str(exc)

            action = RETRY_POLICY[classify_failure(error_text)]
            has_next = attempt < self.max_attempts

            if action is RetryAction.ABORT:
                logger.warning("Completion failed for chat %s: %s", session_id, error_text)
                return None

            if action is RetryAction.BACKOFF:
                if has_next:
                    delay = backoff_seconds(attempt)
                    logger.info("Model unavailable, sleeping %ds (attempt %d)", delay, attempt)
                    await self._sleep(delay)
                continue

            try:
                wait = parse_wait_seconds(error_text) + 1
            except ValueError:
                logger.warning("Bad rate limit hint for chat %s: %s", session_id, error_text)
                return None

            # Keep the pending user message even when it is the only one.
            if buffer.history_count > 1:
                buffer.clean_history()

            if on_fallback:
                if has_next:
                    logger.info("Fallback model rate limited, sleeping %ds", wait)
                    await self._sleep(wait)
            else:
                self.selector.fail_over(wait)

        logger.warning(
            "Giving up on chat %s after %d attempts", session_id, self.max_attempts
        )
        return None

    # -- Persistence -----------------------------------------------------------

    def export_messages(self) -> list[DialogMessage]:
        """Dump every live session, system prompt first, in order."""
        return [
            DialogMessage(session_id=session_id, role=m.role, text=m.text)
            for session_id, buffer in self.registry.snapshot_all()
            for m in buffer.messages
        ]

    def import_messages(
        self, messages: Iterable[DialogMessage], max_history: dict[int, int]
    ) -> int:
        """Rebuild session buffers from a dump. Returns the number of sessions.

        The first message of each session must be its system prompt; sessions
        that do not start with one are skipped.
        """
        buffers: dict[int, ConversationBuffer | None] = {}
        for msg in messages:
            if msg.session_id not in buffers:
                if msg.role != "system":
                    logger.warning("Skipping chat %s: no system prompt in dump", msg.session_id)
                    buffers[msg.session_id] = None
                    continue
                buffers[msg.session_id] = self.registry.create(
                    msg.session_id, msg.text, max_history.get(msg.session_id, 0)
                )
                continue

            buffer = buffers[msg.session_id]
            if buffer is None:
                continue
            if msg.role == "user":
                buffer.add_user(msg.text)
            else:
                buffer.add_assistant(msg.text, self.max_reply_length)

        restored = sum(1 for b in buffers.values() if b is not None)
        logger.info("Restored %d chat(s)", restored)
        return restored

    async def close(self) -> None:
        """Cancel scheduled work and close the clients."""
        self.selector.close()
        self.registry.stop_sweeper()
        await self.primary.close()
        await self.fallback.close()
