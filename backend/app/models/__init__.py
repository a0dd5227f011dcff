"""Models package - re-exports for convenience."""

from backend.app.models.chat import ChatAnswer, ChatMessage, Conversation, HistoryMessage
from backend.app.models.docs import (
    ChunkMatch,
    DocumentStatus,
    NewChunk,
    SearchFilters,
    Source,
    StudyDocument,
)
from backend.app.models.usage import UsageRecord, UsageStatus

__all__ = [
    "ChatAnswer",
    "ChatMessage",
    "ChunkMatch",
    "Conversation",
    "DocumentStatus",
    "HistoryMessage",
    "NewChunk",
    "SearchFilters",
    "Source",
    "StudyDocument",
    "UsageRecord",
    "UsageStatus",
]
