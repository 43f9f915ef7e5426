"""Data models for conversations and their messages."""

import uuid
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field


def utc_now() -> str:
    """Current time as an ISO 8601 UTC string."""
    return datetime.now(UTC).isoformat()


def make_id() -> str:
    """Generate a new conversation/message ID."""
    return uuid.uuid4().hex


class Role(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class Message(BaseModel):
    """A single conversation message."""

    id: str = Field(default_factory=make_id)
    role: Role
    content: str
    created_at: str = Field(default_factory=utc_now)

    def to_api(self) -> dict[str, str]:
        """Plain ``{role, content}`` dict for the generation backend."""
        return {"role": self.role.value, "content": self.content}


class Conversation(BaseModel):
    """Conversation aggregate: the record plus all of its messages, in order."""

    id: str = Field(default_factory=make_id)
    title: str
    messages: list[Message] = Field(default_factory=list)
    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)
