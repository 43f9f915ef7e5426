"""Prompt assembly: retrieved context and conversation history.

Retrieved context and any ``system`` messages go into the system prompt,
which the model sees ahead of the dialogue. Only ``user`` and ``assistant``
turns are sent as messages, so context is never mistaken for something
the user said.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from ragchat.chat.models import Role

if TYPE_CHECKING:
    from collections.abc import Sequence

    from ragchat.chat.models import Message
    from ragchat.retrieval.models import RetrievalResult

BASE_INSTRUCTIONS = (
    "You are a helpful assistant. Answer the user's latest question. "
    "When retrieved context is provided, base your answer on it and say so "
    "if it does not contain the answer."
)


def format_context(context: Sequence[RetrievalResult]) -> str:
    """Number retrieved documents for injection into the system prompt."""
    if not context:
        return ""

    lines = ["# Retrieved Context\n"]
    for i, result in enumerate(context, start=1):
        lines.append(f"[{i}] (relevance {result.score:.2f}) {result.content}")
    return "\n\n".join(lines)


def build_system_prompt(
    messages: Sequence[Message],
    context: Sequence[RetrievalResult] | None = None,
) -> str:
    """Base instructions, then retrieved context, then system messages from history."""
    sections = [BASE_INSTRUCTIONS]

    context_text = format_context(context or [])
    if context_text:
        sections.append(context_text)

    instructions = [m.content for m in messages if m.role == Role.SYSTEM and m.content]
    if instructions:
        sections.append("# Conversation Instructions\n\n" + "\n\n".join(instructions))

    return "\n\n---\n\n".join(sections)


def to_api_messages(messages: Sequence[Message]) -> list[dict[str, str]]:
    """Dialogue turns in Claude API format.

    System messages and empty assistant placeholders are dropped. The API
    requires alternating roles starting with ``user``, so consecutive turns
    from the same role are merged and leading assistant turns are skipped.
    """
    turns: list[dict[str, str]] = []
    for message in messages:
        if message.role == Role.SYSTEM or not message.content:
            continue
        if not turns and message.role != Role.USER:
            continue
        if turns and turns[-1]["role"] == message.role.value:
            turns[-1]["content"] += "\n\n" + message.content
        else:
            turns.append(message.to_api())
    return turns


def latest_user_message(messages: Sequence[Message]) -> str:
    """Content of the most recent user message, or empty string."""
    for message in reversed(messages):
        if message.role == Role.USER:
            return message.content
    return ""
