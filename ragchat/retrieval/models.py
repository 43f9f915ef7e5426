"""Data models for the vector store and retrieval results."""

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field


@dataclass
class VectorDocument:
    """A stored document (or document chunk) owned by the vector store."""

    id: str
    content: str
    metadata: dict[str, Any] | None = None


class RetrievalResult(BaseModel):
    """A document copied out of the vector store with its similarity score."""

    id: str
    content: str
    metadata: dict[str, Any] | None = None
    score: float = 0.0


class SearchOptions(BaseModel):
    """Options for ``VectorStore.search``."""

    limit: int = Field(default=5, ge=1)
    threshold: float = Field(default=0.7, ge=0.0, le=1.0)
