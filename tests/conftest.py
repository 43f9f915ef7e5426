"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from ragchat.chat.orchestrator import RagOrchestrator
from ragchat.chat.store import ConversationStore
from ragchat.retrieval.embeddings import HashEmbeddingProvider
from ragchat.retrieval.store import InMemoryVectorStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from ragchat.chat.models import Message
    from ragchat.retrieval.models import RetrievalResult


class StubGenerator:
    """Scripted generator that records what it was asked.

    ``chunks`` are streamed in order; if ``error`` is set it is raised after
    the last chunk (or from ``generate``). ``first_delay`` sleeps before the
    first chunk and ``gaps`` maps a chunk index to a sleep before it.
    """

    def __init__(
        self,
        reply: str = "AI is...",
        chunks: list[str] | None = None,
        error: Exception | None = None,
        first_delay: float = 0.0,
        gaps: dict[int, float] | None = None,
    ) -> None:
        self.reply = reply
        self.chunks = chunks if chunks is not None else [reply]
        self.error = error
        self.first_delay = first_delay
        self.gaps = gaps or {}
        self.calls: list[tuple[list[Message], list[RetrievalResult]]] = []
        self.closed = False

    async def generate(
        self,
        messages: Sequence[Message],
        context: Sequence[RetrievalResult] | None = None,
    ) -> str:
        self.calls.append((list(messages), list(context or [])))
        if self.error:
            raise self.error
        return self.reply

    async def stream(
        self,
        messages: Sequence[Message],
        context: Sequence[RetrievalResult] | None = None,
    ) -> AsyncIterator[str]:
        self.calls.append((list(messages), list(context or [])))
        try:
            if self.first_delay:
                await asyncio.sleep(self.first_delay)
            for i, chunk in enumerate(self.chunks):
                if self.gaps.get(i):
                    await asyncio.sleep(self.gaps[i])
                yield chunk
            if self.error:
                raise self.error
        finally:
            self.closed = True


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def conversations() -> ConversationStore:
    return ConversationStore()


@pytest.fixture
def embedder() -> HashEmbeddingProvider:
    return HashEmbeddingProvider(dimension=64)


@pytest.fixture
def vectors(embedder: HashEmbeddingProvider) -> InMemoryVectorStore:
    return InMemoryVectorStore(embedder)


@pytest.fixture
def generator() -> StubGenerator:
    return StubGenerator()


@pytest.fixture
def orchestrator(
    conversations: ConversationStore,
    vectors: InMemoryVectorStore,
    generator: StubGenerator,
) -> RagOrchestrator:
    return RagOrchestrator(conversations, vectors, generator)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
