"""Hybrid retriever - vector + full-text search with fallback and thresholding."""

import asyncio
import logging
from typing import Literal

from pydantic import BaseModel, Field

from backend.app.db.repositories import ChunkSearch, HybridSearchUnavailable
from backend.app.errors import RetrievalError, RetrievalTimeout
from backend.app.models.docs import ChunkMatch, SearchFilters
from backend.app.utils.metrics import metrics

logger = logging.getLogger(__name__)

LowConfidenceReason = Literal["no_matches", "weak_matches"]

NO_MATCHES_MESSAGE = (
    "I couldn't find any relevant information in your uploaded documents. "
    "Please make sure you've uploaded the relevant materials first."
)
WEAK_MATCHES_MESSAGE = (
    "I found some loosely related passages in your documents, but none were relevant "
    "enough to answer confidently. Try rephrasing your question or uploading more "
    "specific materials."
)


class RetrievalResult(BaseModel):
    """Ranked chunks that cleared the threshold, or a low-confidence outcome."""

    chunks: list[ChunkMatch] = Field(default_factory=list)
    candidates: int = 0
    path: Literal["hybrid", "vector"] = "hybrid"
    low_confidence: bool = False
    reason: LowConfidenceReason | None = None
    average_similarity: float = 0.0

    @property
    def message(self) -> str | None:
        """User-facing message for the low-confidence variants."""
        if self.reason == "no_matches":
            return NO_MATCHES_MESSAGE
        if self.reason == "weak_matches":
            return WEAK_MATCHES_MESSAGE
        return None


class HybridRetriever:
    """Retrieves chunks through the hybrid path, degrading to vector-only.

    Scoring on the hybrid path is ``vector_weight * cosine +
    lexical_weight * min(rank * 10, 1.0)``; on the fallback path the score is
    the cosine similarity alone.
    """

    def __init__(
        self,
        search: ChunkSearch,
        *,
        vector_weight: float = 0.7,
        lexical_weight: float = 0.3,
        overfetch: int = 3,
        max_chunks: int = 5,
        timeout_seconds: float | None = 20.0,
    ) -> None:
        self._search = search
        self._vector_weight = vector_weight
        self._lexical_weight = lexical_weight
        self._overfetch = overfetch
        self._max_chunks = max_chunks
        self._timeout = timeout_seconds

    async def retrieve(
        self,
        query_embedding: list[float],
        query_text: str,
        filters: SearchFilters,
        *,
        limit: int = 5,
        threshold: float = 0.3,
    ) -> RetrievalResult:
        """Retrieve, threshold and cap chunks for a query.

        Args:
            query_embedding: Embedded search query
            query_text: Search query text for the lexical part ("" disables it)
            filters: Owner / document / module constraints
            limit: Number of chunks wanted before the overfetch margin
            threshold: Minimum score a chunk must reach

        Returns:
            RetrievalResult; ``low_confidence`` when nothing cleared the threshold

        Raises:
            RetrievalError: If both hybrid and vector search fail
            RetrievalTimeout: If the vector fallback timed out
        """
        match_count = limit + self._overfetch

        try:
            candidates = await self._with_timeout(
                self._search.hybrid_search(
                    query_embedding=query_embedding,
                    query_text=query_text,
                    match_count=match_count,
                    similarity_threshold=0.0,
                    filters=filters,
                    vector_weight=self._vector_weight,
                    lexical_weight=self._lexical_weight,
                )
            )
            path: Literal["hybrid", "vector"] = "hybrid"
        except HybridSearchUnavailable as e:
            logger.warning(f"Hybrid search unavailable, falling back to vector search: {e}")
            candidates = await self._vector_fallback(query_embedding, match_count, filters)
            path = "vector"
        except Exception as e:
            logger.warning(f"Hybrid search failed, falling back to vector search: {e!r}")
            candidates = await self._vector_fallback(query_embedding, match_count, filters)
            path = "vector"

        metrics.record_retrieval_path(path)

        kept = [c for c in candidates if c.score >= threshold]
        kept = kept[: min(limit, self._max_chunks)]

        average = (
            sum(c.similarity for c in candidates) / len(candidates) if candidates else 0.0
        )

        if kept:
            return RetrievalResult(
                chunks=kept, candidates=len(candidates), path=path, average_similarity=average
            )

        # Nothing at all, or only noise far below the bar
        reason: LowConfidenceReason = (
            "no_matches" if not candidates or average < threshold / 2 else "weak_matches"
        )
        metrics.record_low_confidence(reason)
        logger.info(
            f"Low-confidence retrieval ({reason}): {len(candidates)} candidates, "
            f"avg similarity {average:.3f}, threshold {threshold}"
        )
        return RetrievalResult(
            candidates=len(candidates),
            path=path,
            low_confidence=True,
            reason=reason,
            average_similarity=average,
        )

    async def _vector_fallback(
        self, query_embedding: list[float], match_count: int, filters: SearchFilters
    ) -> list[ChunkMatch]:
        try:
            return await self._with_timeout(
                self._search.vector_search(
                    query_embedding=query_embedding,
                    match_count=match_count,
                    similarity_threshold=0.0,
                    filters=filters,
                )
            )
        except TimeoutError as e:
            logger.error("Vector search timed out after hybrid failure")
            raise RetrievalTimeout() from e
        except RetrievalError:
            logger.error("Vector search failed after hybrid failure")
            raise
        except Exception as e:
            logger.error(f"Vector search failed after hybrid failure: {e!r}")
            raise RetrievalError() from e

    async def _with_timeout(self, coro):  # type: ignore[no-untyped-def]
        if self._timeout is None:
            return await coro
        return await asyncio.wait_for(coro, timeout=self._timeout)
