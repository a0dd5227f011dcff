"""Conversation endpoints - one saved thread per (user, module)."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from backend.app.api.auth import AuthUser, get_current_user
from backend.app.api.dependencies import StudyServices, get_repositories, get_services
from backend.app.chat.conversations import ConversationStore
from backend.app.db.repositories import Repositories
from backend.app.models.chat import ChatMessage, Conversation

router = APIRouter(prefix="/api/study/conversations", tags=["conversations"])

ModuleQuery = Annotated[str, Query(min_length=1, max_length=100)]


class SaveConversationRequest(BaseModel):
    """Request body for PUT /api/study/conversations."""

    module_name: str = Field(..., min_length=1, max_length=100)
    messages: list[ChatMessage]


def _store(services: StudyServices, repos: Repositories) -> ConversationStore:
    return ConversationStore(
        repos.conversations, max_messages=services.settings.conversation_max_messages
    )


@router.get("", response_model=Conversation | None)
async def get_conversation(
    module: ModuleQuery,
    user: Annotated[AuthUser, Depends(get_current_user)],
    services: Annotated[StudyServices, Depends(get_services)],
    repos: Annotated[Repositories, Depends(get_repositories)],
) -> Conversation | None:
    """Saved conversation for a module, or null when none exists."""
    return await _store(services, repos).load(user.user_id, module)


@router.put("", response_model=Conversation)
async def save_conversation(
    request: SaveConversationRequest,
    user: Annotated[AuthUser, Depends(get_current_user)],
    services: Annotated[StudyServices, Depends(get_services)],
    repos: Annotated[Repositories, Depends(get_repositories)],
) -> Conversation:
    """Replace the module's conversation with the given messages."""
    return await _store(services, repos).save(user.user_id, request.module_name, request.messages)


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
async def clear_conversation(
    module: ModuleQuery,
    user: Annotated[AuthUser, Depends(get_current_user)],
    services: Annotated[StudyServices, Depends(get_services)],
    repos: Annotated[Repositories, Depends(get_repositories)],
) -> None:
    await _store(services, repos).clear(user.user_id, module)
