"""Persisted conversation threads, one per (user, module)."""

import logging
from uuid import UUID

from backend.app.db.repositories import ConversationRepository
from backend.app.models.chat import ChatMessage, Conversation

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New conversation"
TITLE_CHARS = 60


def derive_title(messages: list[ChatMessage]) -> str:
    """Title from the first user message, truncated."""
    first = next((m.content.strip() for m in messages if m.role == "user" and m.content.strip()), "")
    if not first:
        return DEFAULT_TITLE
    first = " ".join(first.split())
    if len(first) > TITLE_CHARS:
        return first[:TITLE_CHARS].rstrip() + "..."
    return first


def trim_messages(messages: list[ChatMessage], max_messages: int) -> list[ChatMessage]:
    """Keep only the most recent messages."""
    if len(messages) <= max_messages:
        return list(messages)
    return list(messages[-max_messages:])


class ConversationStore:
    """Load, replace and clear a user's conversation for a module."""

    def __init__(self, conversations: ConversationRepository, *, max_messages: int = 100) -> None:
        self._conversations = conversations
        self._max_messages = max_messages

    async def load(self, user_id: UUID, module_name: str) -> Conversation | None:
        return await self._conversations.get_conversation(user_id, module_name)

    async def save(
        self, user_id: UUID, module_name: str, messages: list[ChatMessage]
    ) -> Conversation:
        kept = trim_messages(messages, self._max_messages)
        if len(kept) < len(messages):
            logger.info(
                f"Trimmed conversation for module {module_name!r} "
                f"from {len(messages)} to {len(kept)} messages"
            )
        return await self._conversations.save_conversation(
            user_id, module_name, title=derive_title(messages), messages=kept
        )

    async def clear(self, user_id: UUID, module_name: str) -> None:
        await self._conversations.delete_conversation(user_id, module_name)
