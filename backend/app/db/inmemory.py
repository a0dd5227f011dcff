"""In-memory implementations of repository interfaces."""

import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timezone

from backend.app.db.repositories import HybridSearchUnavailable, Repositories
from backend.app.docs.scoring import cosine_similarity, fuse_scores, lexical_rank, query_terms
from backend.app.models.chat import ChatMessage, Conversation
from backend.app.models.docs import (
    ChunkMatch,
    DocumentStatus,
    NewChunk,
    SearchFilters,
    StudyDocument,
)
from backend.app.models.usage import UsageRecord


@dataclass
class _StoredChunk:
    id: uuid.UUID
    chunk: NewChunk


@dataclass
class InMemoryStore:
    """Shared state behind the in-memory repositories."""

    documents: dict[uuid.UUID, StudyDocument] = field(default_factory=dict)
    chunks: list[_StoredChunk] = field(default_factory=list)
    conversations: dict[tuple[uuid.UUID, str], Conversation] = field(default_factory=dict)
    usage: dict[tuple[uuid.UUID, date], UsageRecord] = field(default_factory=dict)


class InMemoryDocumentRepository:
    """In-memory implementation of DocumentRepository."""

    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    async def create_document(
        self,
        *,
        user_id: uuid.UUID,
        filename: str,
        file_path: str,
        module_name: str,
    ) -> StudyDocument:
        """Create a new document in processing state."""
        document = StudyDocument(
            id=uuid.uuid4(),
            uploaded_by=user_id,
            filename=filename,
            file_path=file_path,
            module_name=module_name,
            status="processing",
            uploaded_at=datetime.now(timezone.utc),
        )
        self._store.documents[document.id] = document
        return document

    async def get_document(
        self, document_id: uuid.UUID, user_id: uuid.UUID
    ) -> StudyDocument | None:
        document = self._store.documents.get(document_id)

        # Enforce ownership
        if document is None or document.uploaded_by != user_id:
            return None
        return document

    async def list_documents(
        self, user_id: uuid.UUID, module_name: str | None = None
    ) -> list[StudyDocument]:
        documents = [
            doc
            for doc in self._store.documents.values()
            if doc.uploaded_by == user_id and (module_name is None or doc.module_name == module_name)
        ]
        return sorted(documents, key=lambda d: d.uploaded_at, reverse=True)

    async def update_document(
        self,
        document_id: uuid.UUID,
        *,
        status: DocumentStatus,
        chunk_count: int | None = None,
        summary: str | None = None,
    ) -> None:
        document = self._store.documents.get(document_id)
        if document is None:
            return

        updates: dict[str, object] = {"status": status}
        if chunk_count is not None:
            updates["chunk_count"] = chunk_count
        if summary is not None:
            updates["summary"] = summary
        self._store.documents[document_id] = document.model_copy(update=updates)

    async def delete_document(self, document_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        if await self.get_document(document_id, user_id) is None:
            return False

        await self.delete_chunks(document_id)
        del self._store.documents[document_id]
        return True

    async def add_chunks(self, chunks: list[NewChunk]) -> None:
        self._store.chunks.extend(_StoredChunk(id=uuid.uuid4(), chunk=c) for c in chunks)

    async def delete_chunks(self, document_id: uuid.UUID) -> None:
        self._store.chunks = [s for s in self._store.chunks if s.chunk.document_id != document_id]


class InMemoryChunkSearch:
    """In-memory implementation of ChunkSearch.

    Scores every chunk in process. ``hybrid_available=False`` models a store
    without full-text search, which forces callers onto the vector path.
    """

    def __init__(self, store: InMemoryStore, *, hybrid_available: bool = True) -> None:
        self._store = store
        self.hybrid_available = hybrid_available

    def _candidates(self, filters: SearchFilters) -> list[_StoredChunk]:
        candidates = []
        for stored in self._store.chunks:
            chunk = stored.chunk
            if filters.document_id is not None and chunk.document_id != filters.document_id:
                continue
            if filters.module_name is not None and chunk.module_name != filters.module_name:
                continue
            if filters.user_id is not None:
                owner = self._store.documents.get(chunk.document_id)
                if owner is None or owner.uploaded_by != filters.user_id:
                    continue
            candidates.append(stored)
        return candidates

    @staticmethod
    def _to_match(
        stored: _StoredChunk,
        similarity: float,
        fts_rank: float = 0.0,
        combined_score: float | None = None,
    ) -> ChunkMatch:
        chunk = stored.chunk
        return ChunkMatch(
            id=stored.id,
            document_id=chunk.document_id,
            content=chunk.content,
            chunk_index=chunk.chunk_index,
            similarity=similarity,
            fts_rank=fts_rank,
            combined_score=combined_score,
            module_name=chunk.module_name,
            document_filename=chunk.document_filename,
        )

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
        if not self.hybrid_available:
            raise HybridSearchUnavailable("full-text search not available")

        terms = query_terms(query_text) if query_text.strip() else []
        matches = []
        for stored in self._candidates(filters):
            similarity = cosine_similarity(stored.chunk.embedding, query_embedding)
            if similarity < similarity_threshold:
                continue
            rank = lexical_rank(stored.chunk.content, terms)
            combined = fuse_scores(
                similarity, rank, vector_weight=vector_weight, lexical_weight=lexical_weight
            )
            matches.append(self._to_match(stored, similarity, rank, combined))

        matches.sort(key=lambda m: (-m.score, m.document_id.hex, m.chunk_index))
        return matches[:match_count]

    async def vector_search(
        self,
        *,
        query_embedding: list[float],
        match_count: int,
        similarity_threshold: float,
        filters: SearchFilters,
    ) -> list[ChunkMatch]:
        matches = []
        for stored in self._candidates(filters):
            similarity = cosine_similarity(stored.chunk.embedding, query_embedding)
            if similarity >= similarity_threshold:
                matches.append(self._to_match(stored, similarity))

        matches.sort(key=lambda m: (-m.similarity, m.document_id.hex, m.chunk_index))
        return matches[:match_count]


class InMemoryConversationRepository:
    """In-memory implementation of ConversationRepository."""

    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    async def get_conversation(
        self, user_id: uuid.UUID, module_name: str
    ) -> Conversation | None:
        return self._store.conversations.get((user_id, module_name))

    async def save_conversation(
        self,
        user_id: uuid.UUID,
        module_name: str,
        *,
        title: str,
        messages: list[ChatMessage],
    ) -> Conversation:
        existing = self._store.conversations.get((user_id, module_name))
        conversation = Conversation(
            id=existing.id if existing else uuid.uuid4(),
            user_id=user_id,
            module_name=module_name,
            title=title,
            messages=list(messages),
            updated_at=datetime.now(timezone.utc),
        )
        self._store.conversations[(user_id, module_name)] = conversation
        return conversation

    async def delete_conversation(self, user_id: uuid.UUID, module_name: str) -> None:
        self._store.conversations.pop((user_id, module_name), None)


class InMemoryUsageRepository:
    """In-memory implementation of UsageRepository.

    Increments never await between read and write, so they are atomic on a
    single event loop.
    """

    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    async def get_usage(self, user_id: uuid.UUID, window_date: date) -> UsageRecord | None:
        return self._store.usage.get((user_id, window_date))

    async def total_cost(self, window_date: date) -> float:
        return sum(r.cost_usd for (_, day), r in self._store.usage.items() if day == window_date)

    async def increment_usage(
        self,
        user_id: uuid.UUID,
        window_date: date,
        *,
        tokens: int,
        cost: float,
    ) -> UsageRecord:
        key = (user_id, window_date)
        record = self._store.usage.get(key) or UsageRecord(user_id=user_id, window_date=window_date)
        updated = record.model_copy(
            update={
                "query_count": record.query_count + 1,
                "tokens_used": record.tokens_used + tokens,
                "cost_usd": record.cost_usd + cost,
            }
        )
        self._store.usage[key] = updated
        return updated


class InMemoryRepositoryProvider:
    """RepositoryProvider over one shared in-memory store."""

    def __init__(self, store: InMemoryStore | None = None, *, hybrid_available: bool = True) -> None:
        self.store = store or InMemoryStore()
        self.repositories = Repositories(
            documents=InMemoryDocumentRepository(self.store),
            chunks=InMemoryChunkSearch(self.store, hybrid_available=hybrid_available),
            conversations=InMemoryConversationRepository(self.store),
            usage=InMemoryUsageRepository(self.store),
        )

    @asynccontextmanager
    async def scope(self) -> AsyncIterator[Repositories]:
        yield self.repositories

    async def dispose(self) -> None:
        return None
