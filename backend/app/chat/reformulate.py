"""Follow-up question reformulation into standalone search queries."""

import logging
import re

from backend.app.chat.prompts import REFORMULATE_SYSTEM_PROMPT
from backend.app.llm.client import GenerationClient
from backend.app.models.chat import HistoryMessage

logger = logging.getLogger(__name__)

FOLLOW_UP_PATTERN = re.compile(
    r"\b(that|this|it|those|these|above|previous|last|more|explain|elaborate)\b",
    re.IGNORECASE,
)

REFORMULATE_TURNS = 3
REFORMULATE_MESSAGE_CHARS = 300
REFORMULATE_MAX_TOKENS = 100


def needs_reformulation(question: str, history: list[HistoryMessage]) -> bool:
    """Only follow-ups with prior turns are rewritten."""
    return bool(history) and FOLLOW_UP_PATTERN.search(question) is not None


class QueryReformulator:
    """Turns context-dependent follow-ups into standalone search queries.

    Reformulation is best effort: any failure returns the original question.
    """

    def __init__(self, llm: GenerationClient) -> None:
        self._llm = llm

    async def reformulate(self, question: str, history: list[HistoryMessage]) -> str:
        if not needs_reformulation(question, history):
            return question

        recent = history[-REFORMULATE_TURNS * 2 :]
        transcript = "\n".join(
            f"{m.role}: {m.content[:REFORMULATE_MESSAGE_CHARS]}" for m in recent
        )
        messages = [
            {"role": "system", "content": REFORMULATE_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": f"Conversation:\n{transcript}\n\nLatest question: {question}",
            },
        ]

        try:
            completion = await self._llm.complete(
                messages, max_tokens=REFORMULATE_MAX_TOKENS, temperature=0
            )
        except Exception as e:
            logger.warning(f"Query reformulation failed, using original question: {e}")
            return question

        rewritten = completion.text.strip()
        if not rewritten:
            return question

        logger.debug(f"Reformulated {question!r} -> {rewritten!r}")
        return rewritten
