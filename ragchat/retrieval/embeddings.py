"""Embedding providers that turn text into fixed-dimension vectors.

Two interchangeable strategies:

- ``OllamaEmbeddingProvider`` calls Ollama's ``/api/embeddings`` endpoint.
  Any backend failure is logged and answered with the fallback provider's
  vector, so retrieval never crashes the caller.
- ``HashEmbeddingProvider`` is deterministic and offline. Vectors are seeded
  from a hash of the text; they carry no semantic meaning and exist for
  tests and as the fallback path only.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import httpx

if TYPE_CHECKING:
    from ragchat.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_DIMENSION = 384


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Anything that can produce an embedding for a piece of text."""

    @property
    def dimension(self) -> int:
        """Length of every vector this provider returns."""
        ...

    async def embed(self, text: str) -> list[float]:
        """Return the embedding for ``text``."""
        ...

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Return one embedding per text, in order."""
        ...


def hash_seed(text: str) -> int:
    """32-bit signed rolling hash (``h = h*31 + unit``) over UTF-16 code units."""
    data = text.encode("utf-16-le")
    h = 0
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = (h * 31 + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


def _normalize(vector: list[float]) -> list[float]:
    magnitude = math.sqrt(sum(v * v for v in vector))
    if magnitude == 0:
        return vector
    return [v / magnitude for v in vector]


class HashEmbeddingProvider:
    """Deterministic pseudo-random embeddings seeded by a hash of the text."""

    def __init__(self, dimension: int = DEFAULT_DIMENSION) -> None:
        self._dimension = dimension

    @property
    def dimension(self) -> int:
        return self._dimension

    def embed_sync(self, text: str) -> list[float]:
        seed = hash_seed(text)
        values: list[float] = []
        for _ in range(self._dimension):
            x = math.sin(seed) * 10000
            seed += 1
            values.append((x - math.floor(x)) * 2 - 1)
        return _normalize(values)

    async def embed(self, text: str) -> list[float]:
        return self.embed_sync(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [self.embed_sync(t) for t in texts]


class OllamaEmbeddingProvider:
    """Embeddings from an Ollama server, with a local fallback on failure."""

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "llama3",
        dimension: int = DEFAULT_DIMENSION,
        *,
        timeout: float = 10.0,
        fallback: EmbeddingProvider | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = base_url.rstrip("/") + "/api/embeddings"
        self._model = model
        self._dimension = dimension
        self._timeout = timeout
        self._fallback = fallback or HashEmbeddingProvider(dimension)
        self._client = client

    @property
    def dimension(self) -> int:
        return self._dimension

    async def _request(self, text: str) -> list[float]:
        payload = {"model": self._model, "prompt": text}
        if self._client is not None:
            resp = await self._client.post(self._url, json=payload)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self._url, json=payload)

        resp.raise_for_status()
        data = resp.json()
        embedding = data.get("embedding") if isinstance(data, dict) else None
        if not isinstance(embedding, list) or len(embedding) != self._dimension:
            got = len(embedding) if isinstance(embedding, list) else type(embedding).__name__
            msg = f"Unexpected embedding from Ollama (expected {self._dimension}, got {got})"
            raise ValueError(msg)
        return [float(v) for v in embedding]

    async def embed(self, text: str) -> list[float]:
        try:
            return await self._request(text)
        except (httpx.HTTPError, httpx.InvalidURL, ValueError, TypeError):
            logger.exception("Ollama embedding failed, using fallback embedding")
            return await self._fallback.embed(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed(t) for t in texts]


def create_embedding_provider(settings: Settings) -> EmbeddingProvider:
    """Build the provider selected by ``EMBEDDING_BACKEND``."""
    backend = settings.embedding_backend.lower()
    if backend == "ollama":
        logger.info(
            "Embeddings: Ollama (%s, model=%s, dim=%d)",
            settings.ollama_api_url,
            settings.embedding_model,
            settings.embedding_dimension,
        )
        return OllamaEmbeddingProvider(
            base_url=settings.ollama_api_url,
            model=settings.embedding_model,
            dimension=settings.embedding_dimension,
            timeout=settings.embedding_timeout,
        )
    if backend != "hash":
        logger.warning("Unknown EMBEDDING_BACKEND %r, using hash embeddings", backend)
    logger.info("Embeddings: deterministic hash (dim=%d)", settings.embedding_dimension)
    return HashEmbeddingProvider(settings.embedding_dimension)
