"""Conversational RAG orchestrator.

One chat turn runs: validate -> allowance check -> reformulate -> embed ->
retrieve -> (low confidence short-circuit | generate) -> record usage.

Usage is only recorded after a successful generation, so failed and
low-confidence turns never consume the daily allowance.
"""

import logging
import time
from uuid import UUID

from backend.app.chat.prompts import build_system_prompt, source_label
from backend.app.chat.reformulate import QueryReformulator
from backend.app.config import Settings
from backend.app.db.repositories import ChunkSearch, Repositories, UsageRepository
from backend.app.docs.retriever import HybridRetriever
from backend.app.errors import (
    EmbeddingServiceError,
    QuestionTooLong,
    RateLimitExceeded,
    RetrievalError,
    StudyError,
    ValidationError,
)
from backend.app.llm.client import GenerationClient
from backend.app.llm.embeddings import EmbeddingAdapter
from backend.app.models.chat import ChatAnswer, HistoryMessage
from backend.app.models.docs import ChunkMatch, SearchFilters, Source
from backend.app.ratelimit import UsageMeter
from backend.app.utils.logging import log_event
from backend.app.utils.metrics import metrics

logger = logging.getLogger(__name__)


def make_retriever(search: ChunkSearch, settings: Settings) -> HybridRetriever:
    return HybridRetriever(
        search,
        vector_weight=settings.hybrid_vector_weight,
        lexical_weight=settings.hybrid_lexical_weight,
        overfetch=settings.retrieval_overfetch,
        max_chunks=settings.max_chunks_to_llm,
        timeout_seconds=settings.retrieval_timeout_seconds,
    )


def make_usage_meter(usage: UsageRepository, settings: Settings) -> UsageMeter:
    return UsageMeter(
        usage,
        daily_query_limit=settings.daily_query_limit,
        daily_cost_limit=settings.daily_cost_limit,
        input_cost_per_million=settings.input_cost_per_million,
        output_cost_per_million=settings.output_cost_per_million,
        tz_offset_hours=settings.usage_tz_offset_hours,
    )


def to_source(match: ChunkMatch, preview_chars: int = 200) -> Source:
    """User-facing source reference with a content preview."""
    content = match.content
    if len(content) > preview_chars:
        content = content[:preview_chars] + "..."
    return Source(
        chunk_index=match.chunk_index,
        content=content,
        document_name=source_label(match),
        similarity=match.similarity,
        combined_score=match.combined_score,
    )


class StudyAssistant:
    """Answers study questions grounded in the user's uploaded documents."""

    def __init__(
        self,
        *,
        llm: GenerationClient,
        embeddings: EmbeddingAdapter,
        settings: Settings,
        reformulator: QueryReformulator | None = None,
    ) -> None:
        self._llm = llm
        self._embeddings = embeddings
        self._settings = settings
        self._reformulator = reformulator or QueryReformulator(llm)

    def validate_question(self, question: str) -> str:
        question = question.strip()
        if not question:
            raise ValidationError("Question is required")
        if len(question) > self._settings.max_question_chars:
            raise QuestionTooLong(self._settings.max_question_chars)
        return question

    def history_messages(self, history: list[HistoryMessage]) -> list[dict[str, str]]:
        """Most recent turns, each message truncated."""
        limit = self._settings.chat_history_turns * 2
        chars = self._settings.history_message_chars
        recent = history[-limit:] if limit > 0 else []
        return [{"role": m.role, "content": m.content[:chars]} for m in recent]

    async def answer(
        self,
        repos: Repositories,
        user_id: UUID,
        question: str,
        *,
        module_name: str | None = None,
        document_id: UUID | None = None,
        history: list[HistoryMessage] | None = None,
    ) -> ChatAnswer:
        """Run one chat turn.

        Args:
            repos: Repository bundle of the current request
            user_id: Authenticated user
            question: Raw question text
            module_name: Optional module scope
            document_id: Optional single-document scope
            history: Prior turns supplied by the client

        Returns:
            ChatAnswer with cited sources and refreshed usage

        Raises:
            ValidationError / QuestionTooLong: Empty or oversized question
            RateLimitExceeded: Daily allowance exhausted (nothing else is called)
            RetrievalError / RetrievalTimeout: Search failed on both paths
            GenerationError / GenerationTimeout: Answer generation failed
        """
        started = time.perf_counter()
        try:
            result = await self._answer(
                repos,
                user_id,
                question,
                module_name=module_name,
                document_id=document_id,
                history=history or [],
            )
        except RateLimitExceeded:
            self._observe("rate_limited", started)
            raise
        except StudyError:
            self._observe("error", started)
            raise

        self._observe("low_confidence" if result.low_confidence else "answered", started)
        return result

    async def _answer(
        self,
        repos: Repositories,
        user_id: UUID,
        question: str,
        *,
        module_name: str | None,
        document_id: UUID | None,
        history: list[HistoryMessage],
    ) -> ChatAnswer:
        question = self.validate_question(question)

        meter = make_usage_meter(repos.usage, self._settings)
        status = await meter.check_allowed(user_id)
        if not status.allowed:
            log_event(
                logger,
                "Chat request rejected by daily limit",
                level=logging.WARNING,
                user_id=str(user_id),
                query_count=status.query_count,
                daily_limit=status.daily_limit,
            )
            raise RateLimitExceeded(status)

        search_query = await self._reformulator.reformulate(question, history)

        try:
            query_embedding = await self._embeddings.embed_query(search_query)
        except EmbeddingServiceError as e:
            logger.error(f"Failed to embed search query: {e}")
            raise RetrievalError("Failed to process question") from e

        retriever = make_retriever(repos.chunks, self._settings)
        retrieval = await retriever.retrieve(
            query_embedding,
            search_query,
            SearchFilters(user_id=user_id, document_id=document_id, module_name=module_name),
            limit=self._settings.max_chunks_to_llm,
            threshold=self._settings.similarity_threshold,
        )

        if retrieval.low_confidence:
            return ChatAnswer(
                answer=retrieval.message or "",
                sources=[],
                low_confidence=True,
                usage=status,
            )

        messages = [{"role": "system", "content": build_system_prompt(retrieval.chunks)}]
        messages.extend(self.history_messages(history))
        messages.append({"role": "user", "content": question})

        completion = await self._llm.complete(
            messages,
            max_tokens=self._settings.max_answer_tokens,
            temperature=self._settings.answer_temperature,
        )

        metrics.record_tokens(completion.input_tokens, completion.output_tokens)
        usage = await meter.record_usage(user_id, completion.input_tokens, completion.output_tokens)

        log_event(
            logger,
            f"Answered question with {len(retrieval.chunks)} sources via {retrieval.path} search",
            user_id=str(user_id),
            module=module_name,
            reformulated=search_query != question,
            input_tokens=completion.input_tokens,
            output_tokens=completion.output_tokens,
        )

        preview = self._settings.source_preview_chars
        return ChatAnswer(
            answer=completion.text,
            sources=[to_source(m, preview) for m in retrieval.chunks],
            low_confidence=False,
            usage=usage,
        )

    @staticmethod
    def _observe(outcome: str, started: float) -> None:
        metrics.record_chat_latency(outcome, (time.perf_counter() - started) * 1000)
