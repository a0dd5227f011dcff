"""Document domain models."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field

DocumentStatus = Literal["processing", "ready", "error"]


class StudyDocument(BaseModel):
    """Uploaded study material and its ingestion status."""

    id: UUID
    uploaded_by: UUID
    filename: str
    file_path: str
    module_name: str
    status: DocumentStatus = "processing"
    chunk_count: int = 0
    summary: str | None = None
    uploaded_at: datetime


class NewChunk(BaseModel):
    """Chunk row to persist.

    module_name and document_filename are denormalized copies of the owning
    document's fields, written together with the chunk.
    """

    document_id: UUID
    content: str
    embedding: list[float]
    chunk_index: int = Field(..., ge=0)
    module_name: str
    document_filename: str


class ChunkMatch(BaseModel):
    """Chunk returned by a similarity search."""

    id: UUID
    document_id: UUID
    content: str
    chunk_index: int
    similarity: float
    fts_rank: float = 0.0
    combined_score: float | None = None
    module_name: str | None = None
    document_filename: str | None = None

    @property
    def score(self) -> float:
        """Ranking score: combined score when available, else similarity."""
        return self.combined_score if self.combined_score is not None else self.similarity


class SearchFilters(BaseModel):
    """Metadata constraints applied to every chunk search."""

    user_id: UUID | None = None
    document_id: UUID | None = None
    module_name: str | None = None


class Source(BaseModel):
    """Chunk reference surfaced to the end user."""

    chunk_index: int
    content: str
    document_name: str
    similarity: float | None = None
    combined_score: float | None = None
