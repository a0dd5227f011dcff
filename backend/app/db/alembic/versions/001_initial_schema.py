"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-18

Creates:
- documents, document_chunks (pgvector embeddings + full-text index)
- study_conversations
- api_usage
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from pgvector.sqlalchemy import Vector
from sqlalchemy.dialects import postgresql

from backend.app.config import get_settings

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create all tables."""
    is_postgres = op.get_bind().dialect.name == "postgresql"
    embedding_dim = get_settings().embedding_dim

    if is_postgres:
        op.execute("CREATE EXTENSION IF NOT EXISTS vector")
        embedding_type: sa.types.TypeEngine = Vector(embedding_dim)
        json_type: sa.types.TypeEngine = postgresql.JSONB()
    else:
        embedding_type = sa.JSON()
        json_type = sa.JSON()

    # documents table
    op.create_table(
        "documents",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("uploaded_by", sa.Uuid(), nullable=False),
        sa.Column("filename", sa.Text(), nullable=False),
        sa.Column("file_path", sa.Text(), nullable=False),
        sa.Column("module_name", sa.Text(), nullable=False, server_default="General"),
        sa.Column("status", sa.Text(), nullable=False, server_default="processing"),
        sa.Column("chunk_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("status IN ('processing', 'ready', 'error')", name="ck_documents_status"),
    )
    op.create_index("idx_documents_owner_module", "documents", ["uploaded_by", "module_name"])

    # document_chunks table
    op.create_table(
        "document_chunks",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("document_id", sa.Uuid(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("embedding", embedding_type, nullable=False),
        sa.Column("chunk_index", sa.Integer(), nullable=False),
        sa.Column("module_name", sa.Text(), nullable=True),
        sa.Column("document_filename", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"], ondelete="CASCADE"),
    )
    op.create_index("idx_document_chunks_document", "document_chunks", ["document_id", "chunk_index"])
    op.create_index("idx_document_chunks_module", "document_chunks", ["module_name"])

    if is_postgres:
        op.execute(
            "CREATE INDEX idx_document_chunks_embedding ON document_chunks "
            "USING ivfflat (embedding vector_cosine_ops) WITH (lists = 100)"
        )
        op.execute(
            "CREATE INDEX idx_document_chunks_fts ON document_chunks "
            "USING gin (to_tsvector('english', content))"
        )

    # study_conversations table
    op.create_table(
        "study_conversations",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("module_name", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False, server_default="New conversation"),
        sa.Column("messages", json_type, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("user_id", "module_name", name="uq_conversation_user_module"),
    )

    # api_usage table
    op.create_table(
        "api_usage",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("window_date", sa.Date(), nullable=False),
        sa.Column("query_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tokens_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cost_usd", sa.Numeric(12, 6), nullable=False, server_default="0"),
        sa.UniqueConstraint("user_id", "window_date", name="uq_api_usage_user_day"),
    )
    op.create_index("idx_api_usage_day", "api_usage", ["window_date"])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("api_usage")
    op.drop_table("study_conversations")
    op.drop_table("document_chunks")
    op.drop_table("documents")
