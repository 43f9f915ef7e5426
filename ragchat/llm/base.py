"""Text generation capability consumed by the orchestrator."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from ragchat.chat.models import Message
    from ragchat.retrieval.models import RetrievalResult


@runtime_checkable
class Generator(Protocol):
    """Produces an assistant reply from conversation history plus retrieved context."""

    async def generate(
        self,
        messages: Sequence[Message],
        context: Sequence[RetrievalResult] | None = None,
    ) -> str:
        """Return the full reply text."""
        ...

    def stream(
        self,
        messages: Sequence[Message],
        context: Sequence[RetrievalResult] | None = None,
    ) -> AsyncIterator[str]:
        """Yield the reply incrementally. The iterator is finite and not restartable."""
        ...
