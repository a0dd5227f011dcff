"""Chat endpoints - POST /api/study/chat and GET /api/study/usage."""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from backend.app.api.auth import AuthUser, get_current_user
from backend.app.api.dependencies import StudyServices, get_repositories, get_services
from backend.app.chat.orchestrator import make_usage_meter
from backend.app.db.repositories import Repositories
from backend.app.models.chat import ChatAnswer, HistoryMessage
from backend.app.models.usage import UsageStatus

router = APIRouter(prefix="/api/study", tags=["chat"])


class ChatRequest(BaseModel):
    """Request body for POST /api/study/chat."""

    question: str = Field(..., description="Question about the uploaded materials")
    document_id: uuid.UUID | None = Field(None, description="Restrict search to one document")
    module_name: str | None = Field(None, max_length=100, description="Restrict search to a module")
    chat_history: list[HistoryMessage] = Field(
        default_factory=list, max_length=20, description="Recent turns, oldest first"
    )


@router.post("/chat", response_model=ChatAnswer)
async def chat(
    request: ChatRequest,
    user: Annotated[AuthUser, Depends(get_current_user)],
    services: Annotated[StudyServices, Depends(get_services)],
    repos: Annotated[Repositories, Depends(get_repositories)],
) -> ChatAnswer:
    """Answer a question from the caller's documents.

    Returns 429 with the current usage when the daily allowance is spent.
    """
    return await services.assistant.answer(
        repos,
        user.user_id,
        request.question,
        module_name=request.module_name or None,
        document_id=request.document_id,
        history=request.chat_history,
    )


@router.get("/usage", response_model=UsageStatus)
async def get_usage(
    user: Annotated[AuthUser, Depends(get_current_user)],
    services: Annotated[StudyServices, Depends(get_services)],
    repos: Annotated[Repositories, Depends(get_repositories)],
) -> UsageStatus:
    meter = make_usage_meter(repos.usage, services.settings)
    return await meter.check_allowed(user.user_id)
