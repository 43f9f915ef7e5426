"""In-memory conversation store.

Each conversation is an aggregate: messages only exist inside their
conversation, and every mutation goes through this store. Mutations build
a new ``Conversation`` and swap it into the map in one step, and readers
get deep copies, so nobody ever observes a half-applied change.

All methods are synchronous. They never await, so under asyncio each call
is atomic with respect to other tasks.
"""

from __future__ import annotations

import logging

from ragchat.chat.models import Conversation, Message, Role, utc_now
from ragchat.errors import NotFound

logger = logging.getLogger(__name__)


def _not_found(conversation_id: str) -> NotFound:
    return NotFound(f"Conversation with ID {conversation_id} not found")


class ConversationStore:
    """Process-local map of conversation id to conversation aggregate.

    ``list()`` returns conversations in creation order.
    """

    def __init__(self) -> None:
        self._conversations: dict[str, Conversation] = {}

    def __len__(self) -> int:
        return len(self._conversations)

    def _require(self, conversation_id: str) -> Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise _not_found(conversation_id)
        return conversation

    # -- Conversations -------------------------------------------------------

    def create(self, title: str) -> Conversation:
        """Create an empty conversation."""
        now = utc_now()
        conversation = Conversation(title=title, created_at=now, updated_at=now)
        self._conversations[conversation.id] = conversation
        logger.info("Created conversation %s (%r)", conversation.id, title[:80])
        return conversation.model_copy(deep=True)

    def get(self, conversation_id: str) -> Conversation | None:
        """Fetch a conversation by ID, or None if not found."""
        conversation = self._conversations.get(conversation_id)
        return conversation.model_copy(deep=True) if conversation else None

    def list(self, limit: int | None = None) -> list[Conversation]:
        """Return conversations in creation order, optionally truncated."""
        conversations = list(self._conversations.values())
        if limit is not None:
            conversations = conversations[: max(limit, 0)]
        return [c.model_copy(deep=True) for c in conversations]

    def update(
        self,
        conversation_id: str,
        *,
        title: str | None = None,
        messages: list[Message] | None = None,
    ) -> Conversation:
        """Merge the given fields into a conversation and bump ``updated_at``.

        Raises:
            NotFound: if the conversation does not exist.
        """
        current = self._require(conversation_id)
        changes: dict = {"updated_at": utc_now()}
        if title is not None:
            changes["title"] = title
        if messages is not None:
            changes["messages"] = [m.model_copy(deep=True) for m in messages]
        updated = current.model_copy(update=changes)
        self._conversations[conversation_id] = updated
        return updated.model_copy(deep=True)

    def delete(self, conversation_id: str) -> bool:
        """Delete a conversation. Unknown ids are a no-op; returns whether it existed."""
        existed = self._conversations.pop(conversation_id, None) is not None
        if existed:
            logger.info("Deleted conversation %s", conversation_id)
        return existed

    # -- Messages ------------------------------------------------------------

    def add_message(self, conversation_id: str, role: Role | str, content: str) -> Message:
        """Append a message to a conversation.

        Raises:
            NotFound: if the conversation does not exist.
        """
        current = self._require(conversation_id)
        message = Message(role=Role(role), content=content)
        self._conversations[conversation_id] = current.model_copy(
            update={"messages": [*current.messages, message], "updated_at": utc_now()}
        )
        return message.model_copy()

    def get_messages(self, conversation_id: str) -> list[Message]:
        """Return a conversation's messages in append order.

        Raises:
            NotFound: if the conversation does not exist.
        """
        return [m.model_copy() for m in self._require(conversation_id).messages]

    def update_message_content(
        self, conversation_id: str, message_id: str, content: str
    ) -> Message:
        """Replace the content of one assistant message (streaming placeholder updates).

        Raises:
            NotFound: if the conversation or the message does not exist.
            ValueError: if the message is not an assistant message.
        """
        current = self._require(conversation_id)
        messages = list(current.messages)
        for i, message in enumerate(messages):
            if message.id == message_id:
                if message.role != Role.ASSISTANT:
                    msg = f"Message {message_id} is a {message.role} message and cannot be edited"
                    raise ValueError(msg)
                messages[i] = message.model_copy(update={"content": content})
                break
        else:
            msg = f"Message with ID {message_id} not found in conversation {conversation_id}"
            raise NotFound(msg)

        self._conversations[conversation_id] = current.model_copy(
            update={"messages": messages, "updated_at": utc_now()}
        )
        return messages[i].model_copy()
