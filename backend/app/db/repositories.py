"""Repository protocol interfaces for data access."""

from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import date
from typing import Protocol
from uuid import UUID

from backend.app.models.chat import ChatMessage, Conversation
from backend.app.models.docs import ChunkMatch, DocumentStatus, NewChunk, SearchFilters, StudyDocument
from backend.app.models.usage import UsageRecord


class HybridSearchUnavailable(Exception):
    """The store cannot run the combined vector + full-text query."""

    pass


class DocumentRepository(Protocol):
    """Repository for documents and their chunk rows."""

    async def create_document(
        self,
        *,
        user_id: UUID,
        filename: str,
        file_path: str,
        module_name: str,
    ) -> StudyDocument:
        """Create a document in ``processing`` state."""
        ...

    async def get_document(self, document_id: UUID, user_id: UUID) -> StudyDocument | None:
        """Get a document owned by user_id, or None."""
        ...

    async def list_documents(
        self, user_id: UUID, module_name: str | None = None
    ) -> list[StudyDocument]:
        """List a user's documents, newest first."""
        ...

    async def update_document(
        self,
        document_id: UUID,
        *,
        status: DocumentStatus,
        chunk_count: int | None = None,
        summary: str | None = None,
    ) -> None:
        """Update ingestion status.

        Admin-scoped: called by the detached ingestion phase, which has no
        request context.
        """
        ...

    async def delete_document(self, document_id: UUID, user_id: UUID) -> bool:
        """Delete a user's document and its chunks. Returns False if absent."""
        ...

    async def add_chunks(self, chunks: list[NewChunk]) -> None:
        """Persist chunk rows."""
        ...

    async def delete_chunks(self, document_id: UUID) -> None:
        """Delete all chunk rows of a document."""
        ...


class ChunkSearch(Protocol):
    """Similarity search over chunk rows."""

    async def hybrid_search(
        self,
        *,
        query_embedding: list[float],
        query_text: str,
        match_count: int,
        similarity_threshold: float,
        filters: SearchFilters,
        vector_weight: float = 0.7,
        lexical_weight: float = 0.3,
    ) -> list[ChunkMatch]:
        """Combined vector + full-text search ordered by combined score.

        Raises:
            HybridSearchUnavailable: If the store cannot run the hybrid query
        """
        ...

    async def vector_search(
        self,
        *,
        query_embedding: list[float],
        match_count: int,
        similarity_threshold: float,
        filters: SearchFilters,
    ) -> list[ChunkMatch]:
        """Pure cosine-similarity search ordered by similarity."""
        ...


class ConversationRepository(Protocol):
    """Repository for per-(user, module) conversations."""

    async def get_conversation(self, user_id: UUID, module_name: str) -> Conversation | None:
        ...

    async def save_conversation(
        self,
        user_id: UUID,
        module_name: str,
        *,
        title: str,
        messages: list[ChatMessage],
    ) -> Conversation:
        """Create or replace the conversation for (user, module)."""
        ...

    async def delete_conversation(self, user_id: UUID, module_name: str) -> None:
        ...


class UsageRepository(Protocol):
    """Repository for daily usage counters."""

    async def get_usage(self, user_id: UUID, window_date: date) -> UsageRecord | None:
        ...

    async def total_cost(self, window_date: date) -> float:
        """Sum of cost across all users for the day."""
        ...

    async def increment_usage(
        self,
        user_id: UUID,
        window_date: date,
        *,
        tokens: int,
        cost: float,
    ) -> UsageRecord:
        """Atomically add one query plus tokens/cost to the day's row.

        Creates the row when absent. Concurrent increments must not be lost.
        """
        ...


@dataclass
class Repositories:
    """Repository bundle sharing one unit of work."""

    documents: DocumentRepository
    chunks: ChunkSearch
    conversations: ConversationRepository
    usage: UsageRepository


class RepositoryProvider(Protocol):
    """Opens repository scopes (one per request or background job)."""

    def scope(self) -> AbstractAsyncContextManager[Repositories]:
        ...

    async def dispose(self) -> None:
        ...
