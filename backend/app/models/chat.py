"""Chat and conversation domain models."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field

from backend.app.models.docs import Source
from backend.app.models.usage import UsageStatus

Role = Literal["user", "assistant"]


class HistoryMessage(BaseModel):
    """Prior conversation turn supplied with a chat request."""

    role: Role
    content: str


class ChatMessage(BaseModel):
    """Persisted conversation message."""

    role: Role
    content: str
    sources: list[Source] | None = None
    low_confidence: bool | None = None


class Conversation(BaseModel):
    """One conversation thread per (user, module)."""

    id: UUID
    user_id: UUID
    module_name: str
    title: str = "New conversation"
    messages: list[ChatMessage] = Field(default_factory=list)
    updated_at: datetime


class ChatAnswer(BaseModel):
    """Result of one RAG turn."""

    answer: str
    sources: list[Source] = Field(default_factory=list)
    low_confidence: bool = False
    usage: UsageStatus | None = None
