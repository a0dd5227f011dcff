"""Tests for the embedding adapter and offline embedding client.

All tests are deterministic and do not make real network calls.
"""

from unittest.mock import MagicMock

import httpx
import pytest
from openai import APIConnectionError, APITimeoutError

from backend.app.config import Settings
from backend.app.docs.scoring import cosine_similarity
from backend.app.errors import EmbeddingServiceError
from backend.app.llm.embeddings import (
    EmbeddingAdapter,
    HashingEmbeddingClient,
    OpenAIEmbeddingClient,
    get_embedding_client,
)


class RecordingClient:
    """Embeds text as [batch_number, position] and records batch sizes."""

    def __init__(self) -> None:
        self.batches: list[list[str]] = []

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.batches.append(list(texts))
        return [[float(len(self.batches)), float(i)] for i, _ in enumerate(texts)]


class FailingClient:
    def __init__(self, error: Exception, fail_on_batch: int = 1) -> None:
        self.error = error
        self.fail_on_batch = fail_on_batch
        self.calls = 0

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls += 1
        if self.calls == self.fail_on_batch:
            raise self.error
        return [[1.0, 0.0] for _ in texts]


def _request() -> httpx.Request:
    return httpx.Request("POST", "https://api.openai.com/v1/embeddings")


@pytest.mark.asyncio
async def test_adapter_batches_in_input_order() -> None:
    client = RecordingClient()
    adapter = EmbeddingAdapter(client, batch_size=20)
    texts = [f"chunk {i}" for i in range(45)]

    vectors = await adapter.embed(texts)

    assert [len(b) for b in client.batches] == [20, 20, 5]
    assert [b for batch in client.batches for b in batch] == texts
    assert len(vectors) == 45
    assert vectors[0] == [1.0, 0.0]
    assert vectors[20] == [2.0, 0.0]
    assert vectors[44] == [3.0, 4.0]


@pytest.mark.asyncio
async def test_adapter_empty_input_makes_no_calls() -> None:
    client = RecordingClient()

    assert await EmbeddingAdapter(client).embed([]) == []
    assert client.batches == []


@pytest.mark.asyncio
async def test_adapter_failure_in_later_batch_returns_nothing() -> None:
    client = FailingClient(APIConnectionError(request=_request()), fail_on_batch=2)
    adapter = EmbeddingAdapter(client, batch_size=2)

    with pytest.raises(EmbeddingServiceError) as exc_info:
        await adapter.embed(["a", "b", "c", "d"])

    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_adapter_timeout_maps_to_embedding_error() -> None:
    adapter = EmbeddingAdapter(FailingClient(APITimeoutError(request=_request())))

    with pytest.raises(EmbeddingServiceError, match="timed out"):
        await adapter.embed(["a"])


@pytest.mark.asyncio
async def test_adapter_rejects_wrong_vector_count() -> None:
    class ShortClient:
        async def embed(self, texts: list[str]) -> list[list[float]]:
            return [[1.0]]

    with pytest.raises(EmbeddingServiceError):
        await EmbeddingAdapter(ShortClient()).embed(["a", "b"])


def test_adapter_rejects_non_positive_batch_size() -> None:
    with pytest.raises(ValueError):
        EmbeddingAdapter(RecordingClient(), batch_size=0)


@pytest.mark.asyncio
async def test_hashing_client_is_deterministic_and_normalized() -> None:
    client = HashingEmbeddingClient(dimensions=64)

    first, again = await client.embed(["cell membrane transport", "cell membrane transport"])

    assert first == again
    assert len(first) == 64
    assert sum(v * v for v in first) == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_hashing_client_shared_vocabulary_is_closer() -> None:
    client = HashingEmbeddingClient(dimensions=256)

    query, related, unrelated = await client.embed(
        ["krebs cycle energy", "the krebs cycle releases energy", "medieval poetry meter"]
    )

    assert cosine_similarity(query, related) > cosine_similarity(query, unrelated)


@pytest.mark.asyncio
async def test_openai_client_orders_by_index() -> None:
    client = OpenAIEmbeddingClient(api_key="test-key")
    response = MagicMock()
    response.data = [
        MagicMock(index=1, embedding=[0.0, 1.0]),
        MagicMock(index=0, embedding=[1.0, 0.0]),
    ]

    async def create(**kwargs: object) -> MagicMock:
        return response

    client.client.embeddings.create = create  # type: ignore[method-assign]

    assert await client.embed(["first", "second"]) == [[1.0, 0.0], [0.0, 1.0]]


def test_factory_without_key_uses_hashing_client() -> None:
    settings = Settings(_env_file=None, openai_api_key=None, embedding_dim=32)  # type: ignore[call-arg]

    client = get_embedding_client(settings)

    assert isinstance(client, HashingEmbeddingClient)
    assert client.dimensions == 32
