"""Offline generator that echoes the question and the retrieved context.

Used for local development without an API key and as a test double.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from ragchat.llm.prompt import latest_user_message

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from ragchat.chat.models import Message
    from ragchat.retrieval.models import RetrievalResult


class EchoGenerator:
    """Deterministic stand-in for a real model."""

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay

    async def generate(
        self,
        messages: Sequence[Message],
        context: Sequence[RetrievalResult] | None = None,
    ) -> str:
        question = latest_user_message(messages)
        reply = f'I received your message: "{question}". '
        if context:
            reply += "Based on the retrieved information: " + " ".join(r.content for r in context)
        else:
            reply += "I don't have any specific information about that."
        return reply

    async def stream(
        self,
        messages: Sequence[Message],
        context: Sequence[RetrievalResult] | None = None,
    ) -> AsyncIterator[str]:
        reply = await self.generate(messages, context)
        words = reply.split(" ")
        for i, word in enumerate(words):
            if self.delay:
                await asyncio.sleep(self.delay)
            yield word if i == len(words) - 1 else word + " "
