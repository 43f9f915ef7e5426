"""Bridge a generator's chunk stream to outward stream events.

Every chunk goes out immediately as ``{id, content, done: false}``. The
accumulated text is written to the assistant placeholder message at most
once per ``persist_interval`` while streaming, then unconditionally at the
end. A stream that errors or is cancelled keeps its partial text, tagged
with ``INTERRUPTED_MARKER`` so readers can tell it was cut short.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

from pydantic import BaseModel

from ragchat.chat.models import Role
from ragchat.chat.orchestrator import ChatTurn
from ragchat.errors import GenerationTimeout, NotFound

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from ragchat.chat.orchestrator import RagOrchestrator
    from ragchat.chat.store import ConversationStore

logger = logging.getLogger(__name__)

INTERRUPTED_MARKER = "[Streaming interrupted]"

# Defaults (seconds)
STREAM_PERSIST_INTERVAL = 0.5
CONNECT_TIMEOUT = 10.0
CHUNK_TIMEOUT = 5.0


_END = object()


async def _next_chunk(chunks: AsyncIterator[str]) -> str | object:
    return await anext(chunks, _END)


class StreamEvent(BaseModel):
    """One outward event. ``content`` is the delta since the previous event."""

    id: str
    content: str
    done: bool
    error: str | None = None

    def to_sse(self) -> str:
        """Render as a Server-Sent Events ``data:`` frame."""
        return f"data: {self.model_dump_json(exclude_none=True)}\n\n"


class _PartialWriter:
    """Accumulates chunks and writes them to the placeholder message."""

    def __init__(
        self,
        conversations: ConversationStore,
        conversation_id: str,
        message_id: str,
        interval: float,
        clock: Callable[[], float],
    ) -> None:
        self._conversations = conversations
        self._conversation_id = conversation_id
        self._message_id = message_id
        self._interval = interval
        self._clock = clock
        self._last_persist = clock()
        self.text = ""
        self.writes = 0

    def append(self, chunk: str) -> None:
        self.text += chunk

    def maybe_persist(self) -> None:
        if self._clock() - self._last_persist >= self._interval:
            self.persist()

    def persist(self, *, interrupted: bool = False) -> None:
        content = self.text + INTERRUPTED_MARKER if interrupted else self.text
        try:
            self._conversations.update_message_content(
                self._conversation_id, self._message_id, content
            )
            self.writes += 1
        except NotFound:
            logger.warning(
                "Conversation %s gone, dropping %d chars of reply",
                self._conversation_id,
                len(content),
            )
        self._last_persist = self._clock()


class StreamingAdapter:
    """Runs a streaming chat turn and produces ``StreamEvent``s.

    Only the wait for the first chunk is bounded hard by ``connect_timeout``.
    Later waits longer than ``chunk_timeout`` are logged and skipped: the
    pending read stays in flight, so no chunk is lost or repeated.
    """

    def __init__(
        self,
        orchestrator: RagOrchestrator,
        *,
        persist_interval: float = STREAM_PERSIST_INTERVAL,
        connect_timeout: float = CONNECT_TIMEOUT,
        chunk_timeout: float = CHUNK_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._orchestrator = orchestrator
        self.persist_interval = persist_interval
        self.connect_timeout = connect_timeout
        self.chunk_timeout = chunk_timeout
        self._clock = clock

    async def stream_turn(
        self,
        conversation_id: str,
        user_text: str,
        *,
        turn: ChatTurn | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Record the user's message, then stream the assistant's reply.

        ``NotFound`` propagates before any event is produced. After that,
        failures end the stream with a terminal event carrying ``error``.
        Closing the iterator early (client disconnect) stops generation and
        keeps the partial reply.
        """
        turn = turn or ChatTurn(conversation_id)
        conversations = self._orchestrator.conversations
        ctx = await self._orchestrator.add_message_and_retrieve_context(
            conversation_id, user_text, turn=turn
        )
        placeholder = conversations.add_message(conversation_id, Role.ASSISTANT, "")
        message_id = placeholder.id
        writer = _PartialWriter(
            conversations, conversation_id, message_id, self.persist_interval, self._clock
        )
        chunks = self._orchestrator.stream_from_context(ctx)
        pending: asyncio.Task | None = None
        ended = False

        async def cancel_pending() -> None:
            nonlocal pending
            if pending is not None and not pending.done():
                pending.cancel()
                await asyncio.wait({pending})
            pending = None

        try:
            received_any = False
            while True:
                if pending is None:
                    pending = asyncio.create_task(_next_chunk(chunks))
                timeout = self.chunk_timeout if received_any else self.connect_timeout
                done, _ = await asyncio.wait({pending}, timeout=timeout)
                if not done:
                    if not received_any:
                        msg = f"No response from generator within {timeout:.1f}s"
                        raise GenerationTimeout(msg)
                    logger.warning(
                        "No chunk within %.1fs for message %s, still waiting",
                        timeout,
                        message_id,
                    )
                    continue

                task, pending = pending, None
                chunk = task.result()
                if chunk is _END:
                    break
                received_any = True
                if not chunk:
                    continue

                writer.append(chunk)
                yield StreamEvent(id=message_id, content=chunk, done=False)
                writer.maybe_persist()

            writer.persist()
            ended = True
            logger.info(
                "Streamed reply %s: %d chars, %d write(s)",
                message_id,
                len(writer.text),
                writer.writes,
            )
            yield StreamEvent(id=message_id, content="", done=True)

        except Exception as exc:
            turn.fail(exc)
            await cancel_pending()
            ended = True
            logger.exception("Stream failed for message %s", message_id)
            writer.persist(interrupted=True)
            yield StreamEvent(id=message_id, content="", done=True, error=str(exc))

        finally:
            await cancel_pending()
            await chunks.aclose()
            if not ended:
                turn.interrupt()
                logger.info("Stream for message %s cancelled by consumer", message_id)
                writer.persist(interrupted=True)
