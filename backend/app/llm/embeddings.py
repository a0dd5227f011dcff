"""Embedding clients and the batching adapter used by ingestion and chat.

Security: Reads API key from settings only, never hardcoded.
Provides a deterministic hashing fallback when no key is present for testing.
"""

import hashlib
import logging
import math
import re
from typing import Protocol

from openai import APITimeoutError, AsyncOpenAI, OpenAIError

from backend.app.config import Settings
from backend.app.errors import EmbeddingServiceError

logger = logging.getLogger(__name__)

_TOKEN = re.compile(r"[a-z0-9]+")


class EmbeddingClient(Protocol):
    """Protocol for text-embedding providers."""

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch of texts, one vector per input, in input order."""
        ...


class HashingEmbeddingClient:
    """Deterministic offline embeddings (no API key required).

    Each token is hashed into a signed bucket of a fixed-size vector, which is
    then L2-normalized. Texts sharing vocabulary get a positive cosine
    similarity, which is enough for local development and tests.
    """

    def __init__(self, dimensions: int = 1536) -> None:
        self.dimensions = dimensions

    async def embed(self, texts: list[str]) -> list[list[float]]:
        return [self._embed_one(text) for text in texts]

    def _embed_one(self, text: str) -> list[float]:
        vector = [0.0] * self.dimensions
        for token in _TOKEN.findall(text.lower()):
            digest = hashlib.sha256(token.encode("utf-8")).digest()
            bucket = int.from_bytes(digest[:4], "big") % self.dimensions
            sign = 1.0 if digest[4] % 2 == 0 else -1.0
            vector[bucket] += sign

        norm = math.sqrt(sum(v * v for v in vector))
        if norm == 0:
            return vector
        return [v / norm for v in vector]


class OpenAIEmbeddingClient:
    """OpenAI-backed embedding client."""

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        timeout: float = 30.0,
    ) -> None:
        self.client = AsyncOpenAI(api_key=api_key, timeout=timeout)
        self.model = model

    async def embed(self, texts: list[str]) -> list[list[float]]:
        response = await self.client.embeddings.create(model=self.model, input=texts)
        ordered = sorted(response.data, key=lambda item: item.index)
        return [list(item.embedding) for item in ordered]


class EmbeddingAdapter:
    """Batches embedding requests and normalizes provider failures.

    Batches are sent sequentially in input order, so the output preserves the
    order of the input. Any provider failure fails the whole call: no partial
    batch is ever returned.
    """

    def __init__(self, client: EmbeddingClient, batch_size: int = 20) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self._client = client
        self._batch_size = batch_size

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed texts in fixed-size batches.

        Raises:
            EmbeddingServiceError: If any batch fails or returns a wrong count
        """
        vectors: list[list[float]] = []

        for start in range(0, len(texts), self._batch_size):
            batch = texts[start : start + self._batch_size]
            try:
                batch_vectors = await self._client.embed(batch)
            except APITimeoutError as e:
                logger.error(f"Embedding request timed out (batch offset {start})")
                raise EmbeddingServiceError("Embedding service timed out") from e
            except (OpenAIError, OSError, TimeoutError) as e:
                logger.error(f"Embedding request failed (batch offset {start}): {e}")
                raise EmbeddingServiceError() from e

            if len(batch_vectors) != len(batch):
                raise EmbeddingServiceError(
                    f"Embedding service returned {len(batch_vectors)} vectors for {len(batch)} inputs"
                )
            vectors.extend(batch_vectors)

        return vectors

    async def embed_query(self, text: str) -> list[float]:
        """Embed a single search query."""
        return (await self.embed([text]))[0]


def get_embedding_client(settings: Settings) -> EmbeddingClient:
    """Factory function to get appropriate embedding client based on config.

    Returns:
        OpenAIEmbeddingClient if API key is configured, HashingEmbeddingClient otherwise
    """
    api_key = settings.openai_api_key

    if api_key and api_key.get_secret_value():
        logger.info("Using OpenAI client for embeddings")
        return OpenAIEmbeddingClient(
            api_key=api_key.get_secret_value(),
            model=settings.embedding_model,
            timeout=settings.llm_timeout_seconds,
        )

    logger.warning("No OpenAI API key configured, using deterministic hashing embeddings")
    return HashingEmbeddingClient(dimensions=settings.embedding_dim)
