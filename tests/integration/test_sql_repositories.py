"""Integration tests for the SQL repositories on SQLite."""

import asyncio
from datetime import date
from types import SimpleNamespace

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from backend.app.db.repositories import HybridSearchUnavailable
from backend.app.db.sql_repositories import SqlRepositoryProvider, SqlUsageRepository
from backend.app.docs.retriever import HybridRetriever
from backend.app.models.chat import ChatMessage
from backend.app.models.docs import NewChunk, SearchFilters, Source
from tests.helpers import USER_A, USER_B

TODAY = date(2026, 3, 1)


@pytest.fixture
def sql_provider(sqlite_engine: AsyncEngine) -> SqlRepositoryProvider:
    return SqlRepositoryProvider(sqlite_engine)


async def _seed(provider: SqlRepositoryProvider, owner, module_name: str = "Biology"):  # type: ignore[no-untyped-def]
    async with provider.scope() as repos:
        document = await repos.documents.create_document(
            user_id=owner,
            filename="cells.md",
            file_path=f"{owner}/cells.md",
            module_name=module_name,
        )
        await repos.documents.add_chunks(
            [
                NewChunk(
                    document_id=document.id,
                    content=content,
                    embedding=embedding,
                    chunk_index=index,
                    module_name=module_name,
                    document_filename="cells.md",
                )
                for index, (content, embedding) in enumerate(
                    [("membranes", [1.0, 0.0, 0.0]), ("ribosomes", [0.0, 1.0, 0.0])]
                )
            ]
        )
        await repos.documents.update_document(document.id, status="ready", chunk_count=2)
        return document


@pytest.mark.asyncio
async def test_document_lifecycle(sql_provider: SqlRepositoryProvider) -> None:
    document = await _seed(sql_provider, USER_A)

    async with sql_provider.scope() as repos:
        stored = await repos.documents.get_document(document.id, USER_A)
        assert stored is not None
        assert stored.status == "ready"
        assert stored.chunk_count == 2

        assert await repos.documents.get_document(document.id, USER_B) is None
        assert [d.id for d in await repos.documents.list_documents(USER_A, "Biology")] == [document.id]
        assert await repos.documents.list_documents(USER_A, "Chemistry") == []

        assert not await repos.documents.delete_document(document.id, USER_B)
        assert await repos.documents.delete_document(document.id, USER_A)
        assert await repos.documents.get_document(document.id, USER_A) is None
        assert await repos.chunks.vector_search(
            query_embedding=[1.0, 0.0, 0.0],
            match_count=5,
            similarity_threshold=0.0,
            filters=SearchFilters(user_id=USER_A),
        ) == []


@pytest.mark.asyncio
async def test_sqlite_has_no_hybrid_path(sql_provider: SqlRepositoryProvider) -> None:
    await _seed(sql_provider, USER_A)

    async with sql_provider.scope() as repos:
        with pytest.raises(HybridSearchUnavailable):
            await repos.chunks.hybrid_search(
                query_embedding=[1.0, 0.0, 0.0],
                query_text="membranes",
                match_count=5,
                similarity_threshold=0.0,
                filters=SearchFilters(user_id=USER_A),
            )


@pytest.mark.asyncio
async def test_retriever_falls_back_to_scan_search(sql_provider: SqlRepositoryProvider) -> None:
    await _seed(sql_provider, USER_A)
    await _seed(sql_provider, USER_B)

    async with sql_provider.scope() as repos:
        result = await HybridRetriever(repos.chunks).retrieve(
            [1.0, 0.0, 0.0], "membranes", SearchFilters(user_id=USER_A)
        )

    assert result.path == "vector"
    assert [c.content for c in result.chunks] == ["membranes"]
    assert result.chunks[0].similarity == pytest.approx(1.0)
    assert result.chunks[0].document_filename == "cells.md"


@pytest.mark.asyncio
async def test_usage_increments_accumulate(sql_provider: SqlRepositoryProvider) -> None:
    async with sql_provider.scope() as repos:
        first = await repos.usage.increment_usage(USER_A, TODAY, tokens=100, cost=0.001)
        second = await repos.usage.increment_usage(USER_A, TODAY, tokens=50, cost=0.0005)
        await repos.usage.increment_usage(USER_B, TODAY, tokens=10, cost=0.002)

        assert first.query_count == 1
        assert second.query_count == 2
        assert second.tokens_used == 150
        assert second.cost_usd == pytest.approx(0.0015)
        assert await repos.usage.total_cost(TODAY) == pytest.approx(0.0035)
        assert await repos.usage.get_usage(USER_A, date(2026, 3, 2)) is None


@pytest.mark.asyncio
async def test_conversation_upsert_and_delete(sql_provider: SqlRepositoryProvider) -> None:
    messages = [
        ChatMessage(role="user", content="What is a ribosome?"),
        ChatMessage(
            role="assistant",
            content="A ribosome synthesizes proteins [Source 1].",
            sources=[Source(chunk_index=1, content="ribosomes", document_name="cells.md", similarity=0.9)],
            low_confidence=False,
        ),
    ]

    async with sql_provider.scope() as repos:
        created = await repos.conversations.save_conversation(
            USER_A, "Biology", title="What is a ribosome?", messages=messages[:1]
        )
        updated = await repos.conversations.save_conversation(
            USER_A, "Biology", title="What is a ribosome?", messages=messages
        )
        loaded = await repos.conversations.get_conversation(USER_A, "Biology")

        assert updated.id == created.id
        assert loaded is not None
        assert loaded.messages == messages
        assert await repos.conversations.get_conversation(USER_B, "Biology") is None

        await repos.conversations.delete_conversation(USER_A, "Biology")
        assert await repos.conversations.get_conversation(USER_A, "Biology") is None


@pytest.mark.asyncio
async def test_usage_increments_from_separate_sessions_accumulate(
    sql_provider: SqlRepositoryProvider,
) -> None:
    async with sql_provider.scope() as first, sql_provider.scope() as second:
        await first.usage.increment_usage(USER_A, TODAY, tokens=10, cost=0.001)
        await second.usage.increment_usage(USER_A, TODAY, tokens=20, cost=0.002)
        await first.usage.increment_usage(USER_A, TODAY, tokens=30, cost=0.003)

    async with sql_provider.scope() as repos:
        record = await repos.usage.get_usage(USER_A, TODAY)

    assert record is not None
    assert record.query_count == 3
    assert record.tokens_used == 60


class StaleFirstUpdateSession:
    """Session whose first UPDATE runs before another writer's row exists."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self.calls = 0

    async def execute(self, statement, *args, **kwargs):  # type: ignore[no-untyped-def]
        self.calls += 1
        if self.calls == 1:
            return SimpleNamespace(rowcount=0)
        return await self._session.execute(statement, *args, **kwargs)

    def __getattr__(self, name: str):  # type: ignore[no-untyped-def]
        return getattr(self._session, name)


@pytest.mark.asyncio
async def test_usage_insert_conflict_retries_as_update(sqlite_engine: AsyncEngine) -> None:
    """Another writer creates the day's row between our UPDATE and INSERT."""
    async with AsyncSession(sqlite_engine, expire_on_commit=False) as other:
        await SqlUsageRepository(other).increment_usage(USER_A, TODAY, tokens=5, cost=0.001)

    async with AsyncSession(sqlite_engine, expire_on_commit=False) as session:
        stale = StaleFirstUpdateSession(session)
        record = await SqlUsageRepository(stale).increment_usage(  # type: ignore[arg-type]
            USER_A, TODAY, tokens=7, cost=0.002
        )

    # stale UPDATE, conflicting INSERT rolled back, retried UPDATE, read back
    assert stale.calls == 3
    assert record.query_count == 2
    assert record.tokens_used == 12
    assert record.cost_usd == pytest.approx(0.003)


@pytest.mark.postgres
@pytest.mark.asyncio
async def test_concurrent_usage_increments_lose_no_counts(postgres_engine: AsyncEngine) -> None:
    provider = SqlRepositoryProvider(postgres_engine)

    async def increment() -> None:
        async with provider.scope() as repos:
            await repos.usage.increment_usage(USER_A, TODAY, tokens=1, cost=0.0001)

    await asyncio.gather(*(increment() for _ in range(10)))

    async with provider.scope() as repos:
        record = await repos.usage.get_usage(USER_A, TODAY)

    assert record is not None
    assert record.query_count == 10
    assert record.tokens_used == 10
