"""Shared pytest fixtures for all test suites."""

import os
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from backend.app.api.auth import StaticTokenAuthenticator
from backend.app.api.dependencies import StudyServices
from backend.app.config import Settings
from backend.app.db.inmemory import InMemoryRepositoryProvider
from backend.app.db.models import Base
from backend.app.llm.client import DeterministicStubClient
from backend.app.llm.embeddings import EmbeddingAdapter, HashingEmbeddingClient
from backend.app.storage import InMemoryStorage
from tests.helpers import TEST_EMBEDDING_DIM, TOKEN_A, TOKEN_B, USER_A, USER_B


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        database_url=None,
        openai_api_key=None,
        supabase_url=None,
        embedding_dim=TEST_EMBEDDING_DIM,
        dev_auth_tokens={TOKEN_A: str(USER_A), TOKEN_B: str(USER_B)},
    )


@pytest.fixture
def embeddings() -> EmbeddingAdapter:
    return EmbeddingAdapter(HashingEmbeddingClient(dimensions=TEST_EMBEDDING_DIM), batch_size=20)


@pytest.fixture
def provider() -> InMemoryRepositoryProvider:
    return InMemoryRepositoryProvider()


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def services(
    settings: Settings,
    embeddings: EmbeddingAdapter,
    provider: InMemoryRepositoryProvider,
    storage: InMemoryStorage,
) -> StudyServices:
    """In-memory service container for route and pipeline tests."""
    return StudyServices(
        settings=settings,
        storage=storage,
        authenticator=StaticTokenAuthenticator(settings.dev_auth_tokens),
        embeddings=embeddings,
        llm=DeterministicStubClient(),
        provider=provider,
    )


@pytest_asyncio.fixture
async def sqlite_engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine with all tables created.

    StaticPool keeps a single connection so every session sees the same
    in-memory database.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def postgres_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create async engine for PostgreSQL integration tests.

    Requires TEST_POSTGRES_URL to point at a PostgreSQL database where the
    pgvector extension can be created. Tests using this fixture should be
    marked with @pytest.mark.postgres.
    """
    database_url = os.getenv("TEST_POSTGRES_URL")
    if not database_url:
        pytest.skip("TEST_POSTGRES_URL not set - skipping postgres test")

    if not database_url.startswith(("postgresql://", "postgresql+asyncpg://")):
        pytest.skip(f"TEST_POSTGRES_URL is not PostgreSQL: {database_url}")

    if database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)

    engine = create_async_engine(
        database_url,
        poolclass=NullPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def postgres_session(postgres_engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSession(postgres_engine, expire_on_commit=False) as session:
        yield session
        await session.rollback()
