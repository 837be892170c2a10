"""Async completion clients for OpenAI-compatible and Anthropic endpoints.

Each client submits a conversation plus generation options and returns the
model's choices. SDK exceptions are converted into ``CompletionError`` whose
text is what the orchestrator classifies: unavailability is reported with
the ``Service Unavailable`` marker and rate limits carry a
``Please try again in Ns`` hint whenever the provider gives a wait time.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

import anthropic
import httpx
import openai

from zaya.llm.retry import RETRY_AFTER_MARKER, UNAVAILABLE_MARKER

if TYPE_CHECKING:
    from zaya.chat.buffer import Message
    from zaya.config import Settings

logger = logging.getLogger(__name__)

MISTRAL_BASE_URL = "https://api.mistral.ai/v1"

# Provider stop reasons meaning the reply was cut at max_tokens.
_LENGTH_STOP_REASONS = {"length", "max_tokens"}


@dataclass
class GenerationOptions:
    """Sampling options sent with every request."""

    max_tokens: int = 512
    temperature: float = 0.8
    top_k: int = 40
    repetition_penalty: float = 1.1
    stop: list[str] = field(default_factory=list)


@dataclass
class Choice:
    text: str
    stop_reason: str


@dataclass
class Completion:
    choices: list[Choice]


class CompletionError(Exception):
    """A failed completion call. ``str(exc)`` is the classified failure text."""


class CompletionClient(Protocol):
    model: str

    async def submit(
        self, messages: Sequence[Message], options: GenerationOptions
    ) -> Completion: ...

    async def close(self) -> None: ...


def normalize_stop_reason(reason: str | None) -> str:
    """Map provider stop reasons onto ``"length"`` / ``"stop"``."""
    if reason in _LENGTH_STOP_REASONS:
        return "length"
    return reason or "stop"


def failure_text(status_code: int | None, message: str, retry_after: str | None = None) -> str:
    """Build the failure text for an HTTP-level error.

    *status_code* is None for connection failures and timeouts.
    """
    if status_code is None or status_code >= 500:
        return f"{UNAVAILABLE_MARKER}: {message}"
    if status_code == 429 and RETRY_AFTER_MARKER not in message and retry_after:
        if retry_after.strip().isdigit():
            return f"{message} ({RETRY_AFTER_MARKER} {retry_after.strip()}s)"
    return message


class OpenAICompletionClient:
    """Chat completions through the ``openai`` SDK.

    Works with any OpenAI-compatible server (Mistral, vLLM, llama.cpp).
    ``top_k`` and ``repetition_penalty`` are not part of the OpenAI schema
    and are sent through ``extra_body``.
    """

    def __init__(
        self,
        model: str,
        *,
        api_key: str = "",
        base_url: str | None = None,
        timeout: float = 120.0,
    ) -> None:
        self.model = model
        self._api_key = api_key
        self._base_url = base_url or None
        self._timeout = timeout
        self._client: openai.AsyncOpenAI | None = None

    def _get_client(self) -> openai.AsyncOpenAI:
        """Lazily initialize the SDK client."""
        if self._client is None:
            self._client = openai.AsyncOpenAI(
                api_key=self._api_key,
                base_url=self._base_url,
                http_client=httpx.AsyncClient(timeout=self._timeout),
            )
        return self._client

    async def submit(
        self, messages: Sequence[Message], options: GenerationOptions
    ) -> Completion:
        client = self._get_client()
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": m.role, "content": m.text} for m in messages],
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
            "extra_body": {
                "top_k": options.top_k,
                "repetition_penalty": options.repetition_penalty,
            },
        }
        if options.stop:
            kwargs["stop"] = options.stop

        try:
            response = await client.chat.completions.create(**kwargs)
        except openai.APIStatusError as exc:
            raise CompletionError(
                failure_text(exc.status_code, exc.message, exc.response.headers.get("retry-after"))
            ) from exc
        except openai.APIConnectionError as exc:
            raise CompletionError(failure_text(None, str(exc))) from exc

        return Completion(
            choices=[
                Choice(
                    text=c.message.content or "",
                    stop_reason=normalize_stop_reason(c.finish_reason),
                )
                for c in response.choices
            ]
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


class AnthropicCompletionClient:
    """Messages API through the ``anthropic`` SDK.

    The system message is sent in the ``system`` field; Anthropic has no
    repetition penalty so that option is ignored. A response always maps to
    a single choice.
    """

    def __init__(
        self,
        model: str,
        *,
        api_key: str = "",
        base_url: str | None = None,
        timeout: float = 120.0,
    ) -> None:
        self.model = model
        self._api_key = api_key
        self._base_url = base_url or None
        self._timeout = timeout
        self._client: anthropic.AsyncAnthropic | None = None

    def _get_client(self) -> anthropic.AsyncAnthropic:
        """Lazily initialize the SDK client."""
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(
                api_key=self._api_key,
                base_url=self._base_url,
                timeout=self._timeout,
            )
        return self._client

    async def submit(
        self, messages: Sequence[Message], options: GenerationOptions
    ) -> Completion:
        client = self._get_client()
        system = [m.text for m in messages if m.role == "system"]
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": options.max_tokens,
            "messages": [
                {"role": m.role, "content": m.text} for m in messages if m.role != "system"
            ],
            "temperature": options.temperature,
            "top_k": options.top_k,
        }
        if system:
            kwargs["system"] = "\n\n".join(system)
        if options.stop:
            kwargs["stop_sequences"] = options.stop

        try:
            response = await client.messages.create(**kwargs)
        except anthropic.APIStatusError as exc:
            raise CompletionError(
                failure_text(exc.status_code, exc.message, exc.response.headers.get("retry-after"))
            ) from exc
        except anthropic.APIConnectionError as exc:
            raise CompletionError(failure_text(None, str(exc))) from exc

        if not response.content:
            return Completion(choices=[])
        text = "".join(b.text for b in response.content if b.type == "text")
        return Completion(
            choices=[Choice(text=text, stop_reason=normalize_stop_reason(response.stop_reason))]
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


def build_clients(settings: Settings) -> tuple[CompletionClient, CompletionClient]:
    """Create the primary and fallback clients for the configured provider."""
    provider = settings.completion_provider
    alt_model = settings.completion_alt_model or settings.completion_model
    common: dict[str, Any] = {
        "api_key": settings.completion_api_key,
        "timeout": settings.request_timeout_seconds,
    }

    if provider == "anthropic":
        common["base_url"] = settings.completion_base_url or None
        primary: CompletionClient = AnthropicCompletionClient(settings.completion_model, **common)
        fallback: CompletionClient = AnthropicCompletionClient(alt_model, **common)
    else:
        base_url = settings.completion_base_url
        if provider == "mistral" and not base_url:
            base_url = MISTRAL_BASE_URL
        common["base_url"] = base_url or None
        primary = OpenAICompletionClient(settings.completion_model, **common)
        fallback = OpenAICompletionClient(alt_model, **common)

    logger.info(
        "Completion clients: provider=%s base_url=%s api_key_set=%s model=%s alt_model=%s",
        provider,
        common["base_url"],
        bool(settings.completion_api_key),
        settings.completion_model,
        alt_model,
    )
    return primary, fallback
