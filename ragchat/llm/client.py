"""Async Claude API generator with streaming."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import anthropic

from ragchat.errors import BackendUnavailable, StreamInterrupted
from ragchat.llm.models import friendly, resolve_model
from ragchat.llm.prompt import build_system_prompt, to_api_messages

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from ragchat.chat.models import Message
    from ragchat.config import Settings
    from ragchat.retrieval.models import RetrievalResult

logger = logging.getLogger(__name__)


class AnthropicGenerator:
    """Generation backend backed by ``anthropic.AsyncAnthropic``.

    SDK errors surface as ``BackendUnavailable``. A stream that fails after
    text has already been yielded raises ``StreamInterrupted`` instead, so
    callers can tell a dead connection from a truncated answer.
    """

    def __init__(
        self,
        api_key: str = "",
        model: str = "sonnet",
        max_tokens: int = 1024,
        *,
        client: anthropic.AsyncAnthropic | None = None,
    ) -> None:
        self._api_key = api_key
        self.model = resolve_model(model)
        self.max_tokens = max_tokens
        self._client = client

    def _get_client(self) -> anthropic.AsyncAnthropic:
        """Lazily initialize the Anthropic client."""
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(api_key=self._api_key or None)
        return self._client

    def _request_kwargs(
        self,
        messages: Sequence[Message],
        context: Sequence[RetrievalResult] | None,
    ) -> dict[str, Any]:
        api_messages = to_api_messages(messages)
        if not api_messages:
            msg = "Cannot generate a reply without a user message"
            raise ValueError(msg)
        return {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": build_system_prompt(messages, context),
            "messages": api_messages,
        }

    async def generate(
        self,
        messages: Sequence[Message],
        context: Sequence[RetrievalResult] | None = None,
    ) -> str:
        kwargs = self._request_kwargs(messages, context)
        logger.debug(
            "Claude request: model=%s, turns=%d, context=%d",
            friendly(self.model),
            len(kwargs["messages"]),
            len(context or []),
        )
        try:
            response = await self._get_client().messages.create(**kwargs)
        except anthropic.APIError as exc:
            msg = f"Claude request failed: {exc}"
            raise BackendUnavailable(msg) from exc
        return "".join(block.text for block in response.content if block.type == "text")

    async def stream(
        self,
        messages: Sequence[Message],
        context: Sequence[RetrievalResult] | None = None,
    ) -> AsyncIterator[str]:
        kwargs = self._request_kwargs(messages, context)
        delivered = False
        try:
            async with self._get_client().messages.stream(**kwargs) as stream:
                async for text in stream.text_stream:
                    delivered = True
                    yield text
        except anthropic.APIError as exc:
            if delivered:
                msg = f"Claude stream interrupted: {exc}"
                raise StreamInterrupted(msg) from exc
            msg = f"Claude stream failed: {exc}"
            raise BackendUnavailable(msg) from exc


def create_generator(settings: Settings):
    """Build the generator selected by ``GENERATION_BACKEND``."""
    backend = settings.generation_backend.lower()
    if backend == "anthropic":
        generator = AnthropicGenerator(
            api_key=settings.anthropic_api_key,
            model=settings.chat_model,
            max_tokens=settings.max_tokens,
        )
        logger.info("Generation: Claude (%s)", friendly(generator.model))
        return generator

    from ragchat.llm.echo import EchoGenerator

    if backend != "echo":
        logger.warning("Unknown GENERATION_BACKEND %r, using echo generator", backend)
    logger.info("Generation: echo (offline)")
    return EchoGenerator()
