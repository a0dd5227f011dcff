"""SQL implementations of repository interfaces."""

import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import ColumnElement, case, delete, func, literal, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from backend.app.db.models import ApiUsage, Document, DocumentChunk, StudyConversation
from backend.app.db.repositories import HybridSearchUnavailable, Repositories
from backend.app.docs.scoring import cosine_similarity
from backend.app.errors import InternalError, RetrievalError
from backend.app.models.chat import ChatMessage, Conversation
from backend.app.models.docs import (
    ChunkMatch,
    DocumentStatus,
    NewChunk,
    SearchFilters,
    StudyDocument,
)
from backend.app.models.usage import UsageRecord

logger = logging.getLogger(__name__)

USAGE_UPSERT_ATTEMPTS = 3


def _to_document(row: Document) -> StudyDocument:
    return StudyDocument(
        id=row.id,
        uploaded_by=row.uploaded_by,
        filename=row.filename,
        file_path=row.file_path,
        module_name=row.module_name,
        status=row.status,  # type: ignore[arg-type]
        chunk_count=row.chunk_count,
        summary=row.summary,
        uploaded_at=row.uploaded_at,
    )


class SqlDocumentRepository:
    """SQL implementation of DocumentRepository."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create_document(
        self,
        *,
        user_id: uuid.UUID,
        filename: str,
        file_path: str,
        module_name: str,
    ) -> StudyDocument:
        """Create a new document in processing state."""
        row = Document(
            id=uuid.uuid4(),
            uploaded_by=user_id,
            filename=filename,
            file_path=file_path,
            module_name=module_name,
            status="processing",
            chunk_count=0,
            uploaded_at=datetime.now(timezone.utc),
        )
        self._session.add(row)
        await self._session.commit()

        return _to_document(row)

    async def get_document(
        self, document_id: uuid.UUID, user_id: uuid.UUID
    ) -> StudyDocument | None:
        result = await self._session.execute(
            select(Document).where(Document.id == document_id, Document.uploaded_by == user_id)
        )
        row = result.scalar_one_or_none()
        return _to_document(row) if row else None

    async def list_documents(
        self, user_id: uuid.UUID, module_name: str | None = None
    ) -> list[StudyDocument]:
        query = select(Document).where(Document.uploaded_by == user_id)
        if module_name:
            query = query.where(Document.module_name == module_name)
        query = query.order_by(Document.uploaded_at.desc())

        result = await self._session.execute(query)
        return [_to_document(row) for row in result.scalars().all()]

    async def update_document(
        self,
        document_id: uuid.UUID,
        *,
        status: DocumentStatus,
        chunk_count: int | None = None,
        summary: str | None = None,
    ) -> None:
        values: dict[str, Any] = {"status": status}
        if chunk_count is not None:
            values["chunk_count"] = chunk_count
        if summary is not None:
            values["summary"] = summary

        await self._session.execute(
            update(Document).where(Document.id == document_id).values(**values)
        )
        await self._session.commit()

    async def delete_document(self, document_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        if await self.get_document(document_id, user_id) is None:
            return False

        # Explicit chunk delete: SQLite does not enforce ON DELETE CASCADE by default
        await self._session.execute(
            delete(DocumentChunk).where(DocumentChunk.document_id == document_id)
        )
        await self._session.execute(
            delete(Document).where(Document.id == document_id, Document.uploaded_by == user_id)
        )
        await self._session.commit()
        return True

    async def add_chunks(self, chunks: list[NewChunk]) -> None:
        self._session.add_all(
            DocumentChunk(
                id=uuid.uuid4(),
                document_id=chunk.document_id,
                content=chunk.content,
                embedding=chunk.embedding,
                chunk_index=chunk.chunk_index,
                module_name=chunk.module_name,
                document_filename=chunk.document_filename,
            )
            for chunk in chunks
        )
        await self._session.commit()

    async def delete_chunks(self, document_id: uuid.UUID) -> None:
        await self._session.execute(
            delete(DocumentChunk).where(DocumentChunk.document_id == document_id)
        )
        await self._session.commit()


class SqlChunkSearch:
    """SQL implementation of ChunkSearch.

    On PostgreSQL both searches run in the database (pgvector cosine distance,
    ``ts_rank_cd`` full-text rank). Other dialects have no hybrid path and run
    the vector search in process over the filtered rows.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @property
    def _is_postgres(self) -> bool:
        return self._session.get_bind().dialect.name == "postgresql"

    @staticmethod
    def _filter_clauses(filters: SearchFilters) -> list[ColumnElement[bool]]:
        clauses: list[ColumnElement[bool]] = []
        if filters.document_id is not None:
            clauses.append(DocumentChunk.document_id == filters.document_id)
        if filters.user_id is not None:
            clauses.append(Document.uploaded_by == filters.user_id)
        if filters.module_name is not None:
            clauses.append(DocumentChunk.module_name == filters.module_name)
        return clauses

    @staticmethod
    def _to_match(
        row: DocumentChunk,
        similarity: float,
        fts_rank: float = 0.0,
        combined_score: float | None = None,
    ) -> ChunkMatch:
        return ChunkMatch(
            id=row.id,
            document_id=row.document_id,
            content=row.content,
            chunk_index=row.chunk_index,
            similarity=float(similarity),
            fts_rank=float(fts_rank),
            combined_score=float(combined_score) if combined_score is not None else None,
            module_name=row.module_name,
            document_filename=row.document_filename,
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
        if not self._is_postgres:
            raise HybridSearchUnavailable("hybrid search requires PostgreSQL full-text search")

        similarity = (1 - DocumentChunk.embedding.cosine_distance(query_embedding)).label(
            "similarity"
        )

        if query_text.strip():
            tsquery = func.plainto_tsquery("english", query_text)
            tsvector = func.to_tsvector("english", DocumentChunk.content)
            rank: ColumnElement[float] = case(
                (tsvector.op("@@")(tsquery), func.ts_rank_cd(tsvector, tsquery)),
                else_=0.0,
            )
        else:
            rank = literal(0.0)

        combined = vector_weight * similarity + lexical_weight * func.least(rank * 10, 1.0)

        stmt = (
            select(DocumentChunk, similarity, rank.label("fts_rank"), combined.label("combined"))
            .join(Document, Document.id == DocumentChunk.document_id)
            .where(*self._filter_clauses(filters))
            .where(similarity >= similarity_threshold)
            .order_by(combined.desc())
            .limit(match_count)
        )

        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as e:
            await self._session.rollback()
            raise HybridSearchUnavailable(str(e)) from e

        return [
            self._to_match(row, sim, fts, comb) for row, sim, fts, comb in result.all()
        ]

    async def vector_search(
        self,
        *,
        query_embedding: list[float],
        match_count: int,
        similarity_threshold: float,
        filters: SearchFilters,
    ) -> list[ChunkMatch]:
        try:
            if self._is_postgres:
                return await self._pgvector_search(
                    query_embedding, match_count, similarity_threshold, filters
                )
            return await self._scan_search(
                query_embedding, match_count, similarity_threshold, filters
            )
        except SQLAlchemyError as e:
            await self._session.rollback()
            raise RetrievalError() from e

    async def _pgvector_search(
        self,
        query_embedding: list[float],
        match_count: int,
        similarity_threshold: float,
        filters: SearchFilters,
    ) -> list[ChunkMatch]:
        distance = DocumentChunk.embedding.cosine_distance(query_embedding)
        similarity = (1 - distance).label("similarity")
        stmt = (
            select(DocumentChunk, similarity)
            .join(Document, Document.id == DocumentChunk.document_id)
            .where(*self._filter_clauses(filters))
            .where(similarity >= similarity_threshold)
            .order_by(distance)
            .limit(match_count)
        )
        result = await self._session.execute(stmt)
        return [self._to_match(row, sim) for row, sim in result.all()]

    async def _scan_search(
        self,
        query_embedding: list[float],
        match_count: int,
        similarity_threshold: float,
        filters: SearchFilters,
    ) -> list[ChunkMatch]:
        stmt = (
            select(DocumentChunk)
            .join(Document, Document.id == DocumentChunk.document_id)
            .where(*self._filter_clauses(filters))
        )
        result = await self._session.execute(stmt)

        matches = []
        for row in result.scalars().all():
            similarity = cosine_similarity([float(v) for v in row.embedding], query_embedding)
            if similarity >= similarity_threshold:
                matches.append(self._to_match(row, similarity))

        matches.sort(key=lambda m: (-m.similarity, m.document_id.hex, m.chunk_index))
        return matches[:match_count]


def _to_conversation(row: StudyConversation) -> Conversation:
    return Conversation(
        id=row.id,
        user_id=row.user_id,
        module_name=row.module_name,
        title=row.title,
        messages=[ChatMessage.model_validate(m) for m in row.messages or []],
        updated_at=row.updated_at,
    )


class SqlConversationRepository:
    """SQL implementation of ConversationRepository."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _get_row(self, user_id: uuid.UUID, module_name: str) -> StudyConversation | None:
        result = await self._session.execute(
            select(StudyConversation).where(
                StudyConversation.user_id == user_id,
                StudyConversation.module_name == module_name,
            )
        )
        return result.scalar_one_or_none()

    async def get_conversation(
        self, user_id: uuid.UUID, module_name: str
    ) -> Conversation | None:
        row = await self._get_row(user_id, module_name)
        return _to_conversation(row) if row else None

    async def save_conversation(
        self,
        user_id: uuid.UUID,
        module_name: str,
        *,
        title: str,
        messages: list[ChatMessage],
    ) -> Conversation:
        payload = [m.model_dump(mode="json", exclude_none=True) for m in messages]
        now = datetime.now(timezone.utc)

        row = await self._get_row(user_id, module_name)
        if row is None:
            row = StudyConversation(
                id=uuid.uuid4(),
                user_id=user_id,
                module_name=module_name,
                title=title,
                messages=payload,
                updated_at=now,
                created_at=now,
            )
            self._session.add(row)
            try:
                await self._session.commit()
                return _to_conversation(row)
            except IntegrityError:
                # Another request created the row first; update it instead
                await self._session.rollback()
                row = await self._get_row(user_id, module_name)
                if row is None:
                    raise

        row.title = title
        row.messages = payload
        row.updated_at = now
        await self._session.commit()
        return _to_conversation(row)

    async def delete_conversation(self, user_id: uuid.UUID, module_name: str) -> None:
        await self._session.execute(
            delete(StudyConversation).where(
                StudyConversation.user_id == user_id,
                StudyConversation.module_name == module_name,
            )
        )
        await self._session.commit()


class SqlUsageRepository:
    """SQL implementation of UsageRepository.

    Increments are a single ``UPDATE ... SET query_count = query_count + 1``;
    a missing row is inserted, and an insert that loses the race on the
    (user_id, window_date) unique constraint retries the update.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_usage(self, user_id: uuid.UUID, window_date: date) -> UsageRecord | None:
        result = await self._session.execute(
            select(ApiUsage).where(ApiUsage.user_id == user_id, ApiUsage.window_date == window_date)
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return UsageRecord(
            user_id=row.user_id,
            window_date=row.window_date,
            query_count=row.query_count,
            tokens_used=row.tokens_used,
            cost_usd=float(row.cost_usd),
        )

    async def total_cost(self, window_date: date) -> float:
        result = await self._session.execute(
            select(func.coalesce(func.sum(ApiUsage.cost_usd), 0)).where(
                ApiUsage.window_date == window_date
            )
        )
        return float(result.scalar_one())

    async def increment_usage(
        self,
        user_id: uuid.UUID,
        window_date: date,
        *,
        tokens: int,
        cost: float,
    ) -> UsageRecord:
        for attempt in range(1, USAGE_UPSERT_ATTEMPTS + 1):
            result = await self._session.execute(
                update(ApiUsage)
                .where(ApiUsage.user_id == user_id, ApiUsage.window_date == window_date)
                .values(
                    query_count=ApiUsage.query_count + 1,
                    tokens_used=ApiUsage.tokens_used + tokens,
                    cost_usd=ApiUsage.cost_usd + cost,
                )
            )

            if result.rowcount == 0:  # type: ignore[attr-defined]
                self._session.add(
                    ApiUsage(
                        id=uuid.uuid4(),
                        user_id=user_id,
                        window_date=window_date,
                        query_count=1,
                        tokens_used=tokens,
                        cost_usd=cost,
                    )
                )

            try:
                await self._session.commit()
            except IntegrityError:
                await self._session.rollback()
                logger.info(f"Usage row insert conflict for user {user_id}, retrying (attempt {attempt})")
                continue

            record = await self.get_usage(user_id, window_date)
            if record is not None:
                return record

        raise InternalError("Failed to record usage")


class SqlRepositoryProvider:
    """RepositoryProvider opening one AsyncSession per scope."""

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine

    @asynccontextmanager
    async def scope(self) -> AsyncIterator[Repositories]:
        async with AsyncSession(self.engine, expire_on_commit=False) as session:
            yield Repositories(
                documents=SqlDocumentRepository(session),
                chunks=SqlChunkSearch(session),
                conversations=SqlConversationRepository(session),
                usage=SqlUsageRepository(session),
            )

    async def dispose(self) -> None:
        await self.engine.dispose()
