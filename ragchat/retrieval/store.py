"""In-memory vector store with cosine-similarity search.

Search never raises: an embedding failure while answering a query is
logged and the query answers with no results, so retrieval problems
cannot abort a chat turn.
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from ragchat.errors import NotFound
from ragchat.retrieval.models import RetrievalResult, SearchOptions, VectorDocument
from ragchat.retrieval.similarity import cosine_similarity

if TYPE_CHECKING:
    from ragchat.retrieval.embeddings import EmbeddingProvider

logger = logging.getLogger(__name__)


@runtime_checkable
class VectorStore(Protocol):
    """Vector search capability consumed by the orchestrator."""

    async def add(self, content: str, metadata: dict[str, Any] | None = None) -> str:
        """Store a document and return its id."""
        ...

    async def search(
        self, query: str, options: SearchOptions | None = None
    ) -> list[RetrievalResult]:
        """Return documents scoring above the threshold, best first."""
        ...


class InMemoryVectorStore:
    """Process-local vector store.

    Documents are kept in insertion order; equal scores keep that order in
    search results. Document embeddings are cached on first use unless
    ``cache_embeddings`` is False.
    """

    def __init__(self, embedder: EmbeddingProvider, *, cache_embeddings: bool = True) -> None:
        self._embedder = embedder
        self._cache_embeddings = cache_embeddings
        self._documents: dict[str, VectorDocument] = {}
        self._embeddings: dict[str, list[float]] = {}

    def __len__(self) -> int:
        return len(self._documents)

    # -- Write ---------------------------------------------------------------

    async def add(self, content: str, metadata: dict[str, Any] | None = None) -> str:
        """Store a document. Uses ``metadata["id"]`` as the id when present."""
        if metadata and metadata.get("id"):
            doc_id = str(metadata["id"])
        else:
            doc_id = uuid.uuid4().hex
        self._documents[doc_id] = VectorDocument(
            id=doc_id,
            content=content,
            metadata=dict(metadata) if metadata is not None else None,
        )
        self._embeddings.pop(doc_id, None)
        logger.debug("Added document %s (%d chars)", doc_id, len(content))
        return doc_id

    def delete(self, doc_id: str) -> bool:
        """Remove a document. Unknown ids are a no-op; returns whether it existed."""
        self._embeddings.pop(doc_id, None)
        return self._documents.pop(doc_id, None) is not None

    # -- Read ----------------------------------------------------------------

    def get(self, doc_id: str) -> VectorDocument:
        """Return a stored document.

        Raises:
            NotFound: if no document has this id.
        """
        doc = self._documents.get(doc_id)
        if doc is None:
            msg = f"Document with ID {doc_id} not found"
            raise NotFound(msg)
        return VectorDocument(
            id=doc.id,
            content=doc.content,
            metadata=dict(doc.metadata) if doc.metadata is not None else None,
        )

    async def _document_embedding(self, doc: VectorDocument) -> list[float]:
        cached = self._embeddings.get(doc.id)
        if cached is not None:
            return cached
        embedding = await self._embedder.embed(doc.content)
        # The id may have been re-added or deleted while the embedding was awaited.
        if self._cache_embeddings and self._documents.get(doc.id) is doc:
            self._embeddings[doc.id] = embedding
        return embedding

    async def search(
        self, query: str, options: SearchOptions | None = None
    ) -> list[RetrievalResult]:
        """Rank stored documents by cosine similarity to ``query``.

        Keeps documents with ``score > threshold``, sorted by descending
        score, truncated to ``limit``.
        """
        options = options or SearchOptions()
        if not self._documents:
            return []

        try:
            query_embedding = await self._embedder.embed(query)
            results: list[RetrievalResult] = []
            # Snapshot: the dict may change while embeddings are awaited.
            for doc in list(self._documents.values()):
                doc_embedding = await self._document_embedding(doc)
                score = cosine_similarity(query_embedding, doc_embedding)
                if score > options.threshold:
                    results.append(
                        RetrievalResult(
                            id=doc.id,
                            content=doc.content,
                            metadata=dict(doc.metadata) if doc.metadata is not None else None,
                            score=score,
                        )
                    )
        except Exception:
            logger.exception("Vector search failed for query %r", query[:80])
            return []

        # sort() is stable, so ties keep insertion order.
        results.sort(key=lambda r: r.score, reverse=True)
        return results[: options.limit]
