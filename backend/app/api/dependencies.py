"""Application service container and FastAPI dependencies."""

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Annotated

from fastapi import Depends, Request

from backend.app.api.auth import Authenticator, get_authenticator
from backend.app.chat.orchestrator import StudyAssistant
from backend.app.config import Settings
from backend.app.db.engine import create_async_engine_from_settings
from backend.app.db.inmemory import InMemoryRepositoryProvider
from backend.app.db.repositories import Repositories, RepositoryProvider
from backend.app.db.sql_repositories import SqlRepositoryProvider
from backend.app.docs.ingest import IngestionPipeline
from backend.app.llm.client import GenerationClient, get_llm_client
from backend.app.llm.embeddings import EmbeddingAdapter, get_embedding_client
from backend.app.storage import ObjectStorage, get_storage
from backend.app.tasks import TaskSupervisor

logger = logging.getLogger(__name__)


@dataclass
class StudyServices:
    """Long-lived collaborators shared by all requests."""

    settings: Settings
    storage: ObjectStorage
    authenticator: Authenticator
    embeddings: EmbeddingAdapter
    llm: GenerationClient
    provider: RepositoryProvider
    tasks: TaskSupervisor = field(default_factory=TaskSupervisor)

    @property
    def pipeline(self) -> IngestionPipeline:
        return IngestionPipeline(
            storage=self.storage, embeddings=self.embeddings, settings=self.settings
        )

    @property
    def assistant(self) -> StudyAssistant:
        return StudyAssistant(llm=self.llm, embeddings=self.embeddings, settings=self.settings)

    async def aclose(self) -> None:
        await self.tasks.drain(timeout=30)
        await self.provider.dispose()
        for resource in (self.storage, self.authenticator):
            aclose = getattr(resource, "aclose", None)
            if aclose is not None:
                await aclose()


def build_services(settings: Settings) -> StudyServices:
    """Wire collaborators from settings."""
    provider: RepositoryProvider
    if settings.database_url:
        provider = SqlRepositoryProvider(create_async_engine_from_settings(settings))
    else:
        logger.warning("DATABASE_URL not set, using in-memory repositories")
        provider = InMemoryRepositoryProvider()

    return StudyServices(
        settings=settings,
        storage=get_storage(settings),
        authenticator=get_authenticator(settings),
        embeddings=EmbeddingAdapter(
            get_embedding_client(settings), batch_size=settings.embedding_batch_size
        ),
        llm=get_llm_client(settings),
        provider=provider,
    )


def get_services(request: Request) -> StudyServices:
    return request.app.state.services


async def get_repositories(
    services: Annotated[StudyServices, Depends(get_services)],
) -> AsyncIterator[Repositories]:
    """Yield a repository scope for the duration of the request."""
    async with services.provider.scope() as repos:
        yield repos
