"""SQLAlchemy ORM models for documents, chunks, conversations and usage."""

import uuid
from datetime import date, datetime
from typing import Any

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    JSON,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from backend.app.config import get_settings

EMBEDDING_DIM = get_settings().embedding_dim

# pgvector on PostgreSQL; plain JSON arrays elsewhere (SQLite in tests)
EmbeddingType = Vector(EMBEDDING_DIM).with_variant(JSON(), "sqlite")
JsonType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Document(Base):
    """Document table - uploaded study material."""

    __tablename__ = "documents"
    __table_args__ = (Index("idx_documents_owner_module", "uploaded_by", "module_name"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    uploaded_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    filename: Mapped[str] = mapped_column(Text, nullable=False)
    file_path: Mapped[str] = mapped_column(Text, nullable=False)
    module_name: Mapped[str] = mapped_column(Text, nullable=False, default="General")
    status: Mapped[str] = mapped_column(Text, nullable=False, default="processing")
    chunk_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    # Relationships
    chunks: Mapped[list["DocumentChunk"]] = relationship(
        "DocumentChunk",
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class DocumentChunk(Base):
    """Document chunk table - embedded passages for retrieval.

    module_name and document_filename are denormalized from the owning
    document at write time so the retrieval path needs no join for them.
    """

    __tablename__ = "document_chunks"
    __table_args__ = (
        Index("idx_document_chunks_document", "document_id", "chunk_index"),
        Index("idx_document_chunks_module", "module_name"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    document_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    embedding: Mapped[list[float]] = mapped_column(EmbeddingType, nullable=False)
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    module_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    document_filename: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Relationships
    document: Mapped["Document"] = relationship("Document", back_populates="chunks")


class StudyConversation(Base):
    """Conversation table - one thread per (user, module), messages as JSON."""

    __tablename__ = "study_conversations"
    __table_args__ = (
        UniqueConstraint("user_id", "module_name", name="uq_conversation_user_module"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    module_name: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False, default="New conversation")
    messages: Mapped[list[dict[str, Any]]] = mapped_column(JsonType, nullable=False, default=list)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class ApiUsage(Base):
    """API usage table - daily query/token/cost counters per user."""

    __tablename__ = "api_usage"
    __table_args__ = (
        UniqueConstraint("user_id", "window_date", name="uq_api_usage_user_day"),
        Index("idx_api_usage_day", "window_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    window_date: Mapped[date] = mapped_column(Date, nullable=False)
    query_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tokens_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cost_usd: Mapped[float] = mapped_column(Numeric(12, 6), nullable=False, default=0)
