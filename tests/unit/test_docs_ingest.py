"""Unit tests for the two-phase ingestion pipeline."""

import pytest

from backend.app.config import Settings
from backend.app.db.context import RequestContext
from backend.app.db.inmemory import InMemoryRepositoryProvider
from backend.app.docs.ingest import IngestionPipeline, display_filename
from backend.app.errors import (
    EmbeddingServiceError,
    FileTooLarge,
    Forbidden,
    InsufficientContent,
    SourceNotFound,
    UnsupportedMediaType,
)
from backend.app.llm.embeddings import EmbeddingAdapter
from backend.app.storage import InMemoryStorage
from tests.helpers import USER_A, USER_B, lecture_text


class FailingEmbeddings:
    async def embed(self, texts: list[str]) -> list[list[float]]:
        raise EmbeddingServiceError()


@pytest.fixture
def pipeline(
    storage: InMemoryStorage, embeddings: EmbeddingAdapter, settings: Settings
) -> IngestionPipeline:
    return IngestionPipeline(storage=storage, embeddings=embeddings, settings=settings)


CTX = RequestContext(user_id=USER_A)


@pytest.mark.asyncio
async def test_start_creates_processing_document(
    pipeline: IngestionPipeline, storage: InMemoryStorage, provider: InMemoryRepositoryProvider
) -> None:
    path = f"{USER_A}/1700000000_cells.md"
    await storage.upload(path, lecture_text("cells").encode(), "text/markdown")

    prepared = await pipeline.start(
        ctx=CTX,
        storage_path=path,
        filename="cells.md",
        module_name="Biology",
        documents=provider.repositories.documents,
    )

    assert prepared.document.status == "processing"
    assert prepared.document.filename == "cells.md"
    assert prepared.document.file_path == path
    assert prepared.document.uploaded_by == USER_A
    assert prepared.text.startswith("cells section0")


@pytest.mark.asyncio
async def test_process_marks_ready_with_chunks_and_summary(
    pipeline: IngestionPipeline, provider: InMemoryRepositoryProvider
) -> None:
    documents = provider.repositories.documents
    document = await documents.create_document(
        user_id=USER_A, filename="cells.md", file_path=f"{USER_A}/cells.md", module_name="Biology"
    )

    status = await pipeline.process(document, lecture_text("cells"), documents)

    stored = await documents.get_document(document.id, USER_A)
    assert status == "ready"
    assert stored is not None
    assert stored.status == "ready"
    assert stored.chunk_count == len(provider.store.chunks) == 5
    assert stored.summary
    indices = [s.chunk.chunk_index for s in provider.store.chunks]
    assert indices == list(range(5))
    assert {s.chunk.module_name for s in provider.store.chunks} == {"Biology"}
    assert {s.chunk.document_filename for s in provider.store.chunks} == {"cells.md"}


@pytest.mark.asyncio
async def test_embedding_failure_marks_error_without_chunks(
    storage: InMemoryStorage, settings: Settings, provider: InMemoryRepositoryProvider
) -> None:
    pipeline = IngestionPipeline(
        storage=storage, embeddings=EmbeddingAdapter(FailingEmbeddings()), settings=settings
    )
    documents = provider.repositories.documents
    document = await documents.create_document(
        user_id=USER_A, filename="cells.md", file_path=f"{USER_A}/cells.md", module_name="Biology"
    )

    status = await pipeline.process(document, lecture_text("cells"), documents)

    stored = await documents.get_document(document.id, USER_A)
    assert status == "error"
    assert stored is not None
    assert stored.status == "error"
    assert provider.store.chunks == []


@pytest.mark.asyncio
async def test_text_yielding_no_chunks_marks_error(
    pipeline: IngestionPipeline, provider: InMemoryRepositoryProvider
) -> None:
    documents = provider.repositories.documents
    document = await documents.create_document(
        user_id=USER_A, filename="tiny.txt", file_path=f"{USER_A}/tiny.txt", module_name="General"
    )

    assert await pipeline.process(document, "a few words only", documents) == "error"


@pytest.mark.asyncio
async def test_missing_file_is_source_not_found(
    pipeline: IngestionPipeline, provider: InMemoryRepositoryProvider
) -> None:
    with pytest.raises(SourceNotFound):
        await pipeline.start(
            ctx=CTX,
            storage_path=f"{USER_A}/missing.pdf",
            filename="missing.pdf",
            module_name="General",
            documents=provider.repositories.documents,
        )

    assert provider.store.documents == {}


@pytest.mark.asyncio
async def test_foreign_path_is_forbidden(
    pipeline: IngestionPipeline, storage: InMemoryStorage, provider: InMemoryRepositoryProvider
) -> None:
    path = f"{USER_B}/notes.md"
    await storage.upload(path, lecture_text("secret").encode(), "text/markdown")

    with pytest.raises(Forbidden):
        await pipeline.start(
            ctx=CTX,
            storage_path=path,
            filename="notes.md",
            module_name="General",
            documents=provider.repositories.documents,
        )


@pytest.mark.asyncio
async def test_mislabeled_binary_is_unsupported(
    pipeline: IngestionPipeline, storage: InMemoryStorage, provider: InMemoryRepositoryProvider
) -> None:
    path = f"{USER_A}/photo.txt"
    await storage.upload(path, b"\x89PNG\r\n\x1a\n\x00\x00", "text/plain")

    with pytest.raises(UnsupportedMediaType):
        await pipeline.start(
            ctx=CTX,
            storage_path=path,
            filename="photo.txt",
            module_name="General",
            documents=provider.repositories.documents,
            declared_mime="text/plain",
        )


@pytest.mark.asyncio
async def test_too_little_text_is_insufficient_content(
    pipeline: IngestionPipeline, storage: InMemoryStorage, provider: InMemoryRepositoryProvider
) -> None:
    path = f"{USER_A}/short.txt"
    await storage.upload(path, b"Too short.", "text/plain")

    with pytest.raises(InsufficientContent):
        await pipeline.start(
            ctx=CTX,
            storage_path=path,
            filename="short.txt",
            module_name="General",
            documents=provider.repositories.documents,
        )

    assert provider.store.documents == {}


@pytest.mark.asyncio
async def test_process_detached_uses_its_own_scope(
    pipeline: IngestionPipeline, provider: InMemoryRepositoryProvider
) -> None:
    documents = provider.repositories.documents
    document = await documents.create_document(
        user_id=USER_A, filename="cells.md", file_path=f"{USER_A}/cells.md", module_name="Biology"
    )

    assert await pipeline.process_detached(provider, document, lecture_text("cells")) == "ready"


def test_display_filename() -> None:
    assert display_filename("C:\\Users\\me\\week1.pdf", "u/x.pdf") == "week1.pdf"
    assert display_filename("", "u/1700000000_week1.pdf") == "1700000000_week1.pdf"


@pytest.mark.asyncio
async def test_oversized_file_is_rejected_before_extraction(
    storage: InMemoryStorage,
    embeddings: EmbeddingAdapter,
    settings: Settings,
    provider: InMemoryRepositoryProvider,
) -> None:
    pipeline = IngestionPipeline(
        storage=storage,
        embeddings=embeddings,
        settings=settings.model_copy(update={"max_upload_bytes": 1024 * 1024}),
    )
    path = f"{USER_A}/huge.txt"
    await storage.upload(path, b"word " * (1024 * 1024 // 5 + 1), "text/plain")

    with pytest.raises(FileTooLarge) as exc_info:
        await pipeline.start(
            ctx=CTX,
            storage_path=path,
            filename="huge.txt",
            module_name="General",
            documents=provider.repositories.documents,
        )

    assert exc_info.value.status_code == 413
    assert exc_info.value.message == "File too large (max 1 MB)"
    assert provider.store.documents == {}


def test_default_upload_cap_is_20_mb() -> None:
    assert Settings(_env_file=None).max_upload_bytes == 20 * 1024 * 1024  # type: ignore[call-arg]
