"""Retrieve-then-generate chat turns.

``RagOrchestrator`` ties the conversation store, the vector store and the
generator together. It is constructed explicitly with its collaborators;
there are no module-level stores.

A turn moves through ``TurnState``::

    idle → user_message_recorded → context_retrieved → generating
         → completed | failed | interrupted

Retrieval problems never fail a turn (they mean "no context"). Missing
conversations always do. Generation errors propagate to the caller.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from ragchat.chat.models import Role, make_id
from ragchat.errors import BackendUnavailable, NotFound, RagChatError, StreamInterrupted
from ragchat.retrieval.splitter import split_text

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from ragchat.chat.models import Conversation, Message
    from ragchat.chat.store import ConversationStore
    from ragchat.llm.base import Generator
    from ragchat.retrieval.models import RetrievalResult, SearchOptions
    from ragchat.retrieval.store import VectorStore

logger = logging.getLogger(__name__)


class TurnState(StrEnum):
    IDLE = "idle"
    USER_MESSAGE_RECORDED = "user_message_recorded"
    CONTEXT_RETRIEVED = "context_retrieved"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"
    INTERRUPTED = "interrupted"


TERMINAL_STATES = frozenset({TurnState.COMPLETED, TurnState.FAILED, TurnState.INTERRUPTED})


@dataclass
class ChatTurn:
    """Progress of a single chat turn. Terminal states are final."""

    conversation_id: str
    state: TurnState = TurnState.IDLE
    history: list[TurnState] = field(default_factory=lambda: [TurnState.IDLE])
    error: BaseException | None = None

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def advance(self, state: TurnState) -> None:
        if self.finished or state == self.state:
            return
        logger.debug("Turn %s: %s → %s", self.conversation_id, self.state, state)
        self.state = state
        self.history.append(state)

    def fail(self, exc: BaseException) -> None:
        if self.finished:
            return
        self.error = exc
        self.advance(TurnState.FAILED)

    def interrupt(self) -> None:
        self.advance(TurnState.INTERRUPTED)


@dataclass
class TurnContext:
    """Everything the generator consumes for one turn."""

    messages: list[Message]
    retrieval_results: list[RetrievalResult]
    turn: ChatTurn


class RagOrchestrator:
    """Chat turn API exposed to the HTTP layer."""

    def __init__(
        self,
        conversations: ConversationStore,
        vectors: VectorStore,
        generator: Generator,
        *,
        search_options: SearchOptions | None = None,
        chunk_size: int = 1000,
        chunk_overlap: int = 200,
    ) -> None:
        self.conversations = conversations
        self.vectors = vectors
        self.generator = generator
        self.search_options = search_options
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    # -- Conversations -------------------------------------------------------

    def create_conversation(self, title: str) -> Conversation:
        return self.conversations.create(title)

    def get_conversation(self, conversation_id: str) -> Conversation:
        """Fetch a conversation.

        Raises:
            NotFound: if the conversation does not exist.
        """
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            msg = f"Conversation with ID {conversation_id} not found"
            raise NotFound(msg)
        return conversation

    def list_conversations(self, limit: int | None = None) -> list[Conversation]:
        return self.conversations.list(limit)

    def delete_conversation(self, conversation_id: str) -> bool:
        return self.conversations.delete(conversation_id)

    def add_message(self, conversation_id: str, role: Role | str, content: str) -> Message:
        """Append a message without generating a reply."""
        return self.conversations.add_message(conversation_id, role, content)

    def get_messages(self, conversation_id: str) -> list[Message]:
        return self.conversations.get_messages(conversation_id)

    # -- Documents -----------------------------------------------------------

    async def add_document(self, content: str, metadata: dict[str, Any] | None = None) -> str:
        return await self.vectors.add(content, metadata)

    async def ingest_document(
        self,
        content: str,
        metadata: dict[str, Any] | None = None,
        *,
        chunk_size: int | None = None,
        chunk_overlap: int | None = None,
    ) -> list[str]:
        """Split a document into chunks and add each one to the vector store.

        Every chunk carries the caller's metadata plus ``source_id`` (shared
        by all chunks of this document) and ``chunk_index``. Chunk sizes default
        to the orchestrator's ``chunk_size`` and ``chunk_overlap``.
        """
        metadata = dict(metadata or {})
        # Chunks get their own ids; a caller-supplied id names the document.
        source_id = str(metadata.pop("id", "") or "") or make_id()
        chunks = split_text(
            content,
            chunk_size=self.chunk_size if chunk_size is None else chunk_size,
            chunk_overlap=self.chunk_overlap if chunk_overlap is None else chunk_overlap,
        )

        ids: list[str] = []
        for index, chunk in enumerate(chunks):
            chunk_meta = {**metadata, "source_id": source_id, "chunk_index": index}
            ids.append(await self.vectors.add(chunk, chunk_meta))

        logger.info("Ingested document %s into %d chunk(s)", source_id, len(ids))
        return ids

    async def search_documents(
        self, query: str, options: SearchOptions | None = None
    ) -> list[RetrievalResult]:
        return await self._retrieve(query, options)

    # -- Chat turns ----------------------------------------------------------

    async def _retrieve(
        self, query: str, options: SearchOptions | None = None
    ) -> list[RetrievalResult]:
        try:
            return await self.vectors.search(query, options or self.search_options)
        except Exception:
            logger.exception("Retrieval failed, continuing without context")
            return []

    async def add_message_and_retrieve_context(
        self,
        conversation_id: str,
        user_text: str,
        *,
        turn: ChatTurn | None = None,
    ) -> TurnContext:
        """Record the user's message and gather context for generation.

        Returns the full ordered history (including the new message) and the
        retrieval results, i.e. exactly what the generator will consume.

        Raises:
            NotFound: if the conversation does not exist or disappears
                before its history can be loaded.
        """
        turn = turn or ChatTurn(conversation_id)
        try:
            self.conversations.add_message(conversation_id, Role.USER, user_text)
            turn.advance(TurnState.USER_MESSAGE_RECORDED)

            conversation = self.conversations.get(conversation_id)
            if conversation is None:
                msg = f"Conversation with ID {conversation_id} not found"
                raise NotFound(msg)
        except NotFound as exc:
            turn.fail(exc)
            raise

        results = await self._retrieve(user_text)
        turn.advance(TurnState.CONTEXT_RETRIEVED)
        logger.info(
            "Conversation %s: %d message(s), %d context document(s)",
            conversation_id,
            len(conversation.messages),
            len(results),
        )
        return TurnContext(messages=conversation.messages, retrieval_results=results, turn=turn)

    async def generate_chat_response(
        self,
        conversation_id: str,
        user_text: str,
        *,
        turn: ChatTurn | None = None,
    ) -> Message:
        """Run a full blocking turn and return the stored assistant message.

        Raises:
            NotFound: if the conversation does not exist.
            BackendUnavailable: if generation fails. No assistant message is
                stored in that case.
        """
        ctx = await self.add_message_and_retrieve_context(conversation_id, user_text, turn=turn)
        ctx.turn.advance(TurnState.GENERATING)
        try:
            text = await self.generator.generate(ctx.messages, ctx.retrieval_results)
            message = self.conversations.add_message(conversation_id, Role.ASSISTANT, text)
        except RagChatError as exc:
            ctx.turn.fail(exc)
            raise
        except Exception as exc:
            msg = f"Generation failed: {exc}"
            error = BackendUnavailable(msg)
            ctx.turn.fail(error)
            raise error from exc

        ctx.turn.advance(TurnState.COMPLETED)
        return message

    async def stream_chat_response(
        self,
        conversation_id: str,
        user_text: str,
        *,
        turn: ChatTurn | None = None,
    ) -> AsyncIterator[str]:
        """Run a turn and yield reply chunks as the generator produces them.

        Chunks are not persisted here; ``StreamingAdapter`` handles that.
        """
        ctx = await self.add_message_and_retrieve_context(conversation_id, user_text, turn=turn)
        async with contextlib.aclosing(self.stream_from_context(ctx)) as chunks:
            async for chunk in chunks:
                yield chunk

    async def stream_from_context(self, ctx: TurnContext) -> AsyncIterator[str]:
        """Yield the generator's chunks for an already prepared turn.

        Closing this iterator (or cancelling the task reading it) closes the
        backend stream and marks the turn interrupted.
        """
        turn = ctx.turn
        stream = self.generator.stream(ctx.messages, ctx.retrieval_results)
        delivered = False
        try:
            async for chunk in stream:
                turn.advance(TurnState.GENERATING)
                delivered = True
                yield chunk
        except (GeneratorExit, asyncio.CancelledError):
            turn.interrupt()
            raise
        except RagChatError as exc:
            turn.fail(exc)
            raise
        except Exception as exc:
            if delivered:
                msg = f"Generation stream interrupted: {exc}"
                error = StreamInterrupted(msg)
            else:
                msg = f"Generation stream failed: {exc}"
                error = BackendUnavailable(msg)
            turn.fail(error)
            raise error from exc
        else:
            turn.advance(TurnState.COMPLETED)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
