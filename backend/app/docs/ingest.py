"""Document ingestion - validate, extract, then chunk and embed in the background.

Ingestion is split in two phases:

* ``start`` runs inside the upload request: it resolves the stored file,
  detects its real type, extracts text and creates the Document row in
  ``processing`` state. Errors here are raised to the caller.
* ``process`` runs detached after the response has been sent: chunk, embed,
  persist, then flip the status to ``ready``. Errors here never propagate;
  they end in ``status="error"`` and are logged.

Partial chunk rows are deleted when the detached phase fails.
"""

import asyncio
import logging
import posixpath
from dataclasses import dataclass

from backend.app.config import Settings
from backend.app.db.context import RequestContext
from backend.app.db.repositories import DocumentRepository, RepositoryProvider
from backend.app.docs.chunker import chunk_text
from backend.app.docs.extract import (
    detect_content_type,
    ensure_sufficient_content,
    extract_text,
    summarize_text,
)
from backend.app.errors import FileTooLarge, InsufficientContent
from backend.app.llm.embeddings import EmbeddingAdapter
from backend.app.models.docs import DocumentStatus, NewChunk, StudyDocument
from backend.app.storage import ObjectStorage, validate_user_path
from backend.app.utils.logging import log_event
from backend.app.utils.metrics import metrics

logger = logging.getLogger(__name__)

_DECLARED_KINDS = {
    "application/pdf": "pdf",
    "text/plain": "text",
    "text/markdown": "text",
    "text/x-markdown": "text",
}


@dataclass(frozen=True)
class PreparedIngestion:
    """Result of the synchronous ingestion phase."""

    document: StudyDocument
    text: str


def display_filename(filename: str, storage_path: str) -> str:
    """Display name: the caller's filename without directories, else the path tail."""
    name = posixpath.basename(filename.replace("\\", "/")).strip() if filename else ""
    if not name:
        name = posixpath.basename(storage_path)
    return name[:255]


class IngestionPipeline:
    """Orchestrates fetch, type detection, extraction, chunking and embedding."""

    def __init__(
        self,
        *,
        storage: ObjectStorage,
        embeddings: EmbeddingAdapter,
        settings: Settings,
    ) -> None:
        self._storage = storage
        self._embeddings = embeddings
        self._settings = settings

    async def start(
        self,
        *,
        ctx: RequestContext,
        storage_path: str,
        filename: str,
        module_name: str,
        documents: DocumentRepository,
        declared_mime: str | None = None,
    ) -> PreparedIngestion:
        """Run the synchronous phase and create the Document row.

        Raises:
            ValidationError / Forbidden: Bad or foreign storage path
            SourceNotFound: File missing from storage
            FileTooLarge: File above max_upload_bytes
            UnsupportedMediaType: Bytes are neither PDF nor UTF-8 text
            InsufficientContent: Too little extracted text
        """
        validate_user_path(storage_path, ctx.user_id)

        data = await self._storage.download(storage_path)
        if len(data) > self._settings.max_upload_bytes:
            raise FileTooLarge(self._settings.max_upload_bytes)

        kind = detect_content_type(data)
        declared_kind = _DECLARED_KINDS.get((declared_mime or "").lower())
        if declared_mime and declared_kind != kind:
            logger.warning(
                f"Declared type {declared_mime!r} does not match detected {kind!r} for {storage_path}"
            )

        text = extract_text(data, kind)
        ensure_sufficient_content(text, self._settings.min_content_chars)

        document = await documents.create_document(
            user_id=ctx.user_id,
            filename=display_filename(filename, storage_path),
            file_path=storage_path,
            module_name=module_name,
        )

        log_event(
            logger,
            f"Document {document.id} accepted for ingestion",
            document_id=str(document.id),
            user_id=str(ctx.user_id),
            kind=kind,
            bytes=len(data),
            module=module_name,
        )
        return PreparedIngestion(document=document, text=text)

    async def process(
        self, document: StudyDocument, text: str, documents: DocumentRepository
    ) -> DocumentStatus:
        """Chunk, embed and persist; flip status to ready or error.

        Never raises (except on cancellation, after marking the document as
        failed).
        """
        try:
            chunks = chunk_text(
                text,
                max_words=self._settings.chunk_max_words,
                target_words=self._settings.chunk_target_words,
                overlap_words=self._settings.chunk_overlap_words,
                min_words=self._settings.chunk_min_words,
            )
            if not chunks:
                raise InsufficientContent("Document produced no chunks")

            vectors = await self._embeddings.embed(chunks)

            await documents.add_chunks(
                [
                    NewChunk(
                        document_id=document.id,
                        content=content,
                        embedding=vector,
                        chunk_index=index,
                        module_name=document.module_name,
                        document_filename=document.filename,
                    )
                    for index, (content, vector) in enumerate(zip(chunks, vectors, strict=True))
                ]
            )
            await documents.update_document(
                document.id,
                status="ready",
                chunk_count=len(chunks),
                summary=summarize_text(text),
            )
        except asyncio.CancelledError:
            await self._mark_failed(document, documents)
            raise
        except Exception as e:
            logger.error(f"Ingestion of document {document.id} failed: {e}", exc_info=True)
            await self._mark_failed(document, documents)
            return "error"

        metrics.record_ingestion("ready", chunks=len(chunks))
        log_event(
            logger,
            f"Document {document.filename!r} processed: {len(chunks)} chunks embedded",
            document_id=str(document.id),
            chunks=len(chunks),
        )
        return "ready"

    async def _mark_failed(self, document: StudyDocument, documents: DocumentRepository) -> None:
        metrics.record_ingestion("error")
        try:
            await documents.delete_chunks(document.id)
            await documents.update_document(document.id, status="error")
        except Exception as e:
            logger.error(f"Could not mark document {document.id} as failed: {e}", exc_info=True)

    async def process_detached(
        self, provider: RepositoryProvider, document: StudyDocument, text: str
    ) -> DocumentStatus:
        """Detached entry point: opens its own repository scope."""
        async with provider.scope() as repos:
            return await self.process(document, text, repos.documents)
