"""LLM client for answer generation with OpenAI integration.

Security: Reads API key from settings only, never hardcoded.
Provides a deterministic stub when no key is present for testing.
"""

import logging
from typing import Protocol

from openai import APITimeoutError, AsyncOpenAI, OpenAIError
from pydantic import BaseModel

from backend.app.config import Settings
from backend.app.errors import GenerationError, GenerationTimeout

logger = logging.getLogger(__name__)


class Completion(BaseModel):
    """Generated text with token accounting."""

    text: str
    input_tokens: int = 0
    output_tokens: int = 0


class GenerationClient(Protocol):
    """Protocol for chat-completion providers."""

    async def complete(
        self,
        messages: list[dict[str, str]],
        *,
        max_tokens: int,
        temperature: float,
    ) -> Completion:
        """Generate a completion for a chat message list.

        Args:
            messages: OpenAI-style ``{"role", "content"}`` messages
            max_tokens: Output token cap
            temperature: Sampling temperature

        Returns:
            Completion with text and token counts

        Raises:
            GenerationError: On provider failure
            GenerationTimeout: When the provider does not answer in time
        """
        ...


class DeterministicStubClient:
    """Deterministic stub client for testing (no API key required)."""

    async def complete(
        self,
        messages: list[dict[str, str]],
        *,
        max_tokens: int,
        temperature: float,
    ) -> Completion:
        """Echo the last user message back in a fixed template."""
        question = next(
            (m["content"] for m in reversed(messages) if m["role"] == "user"),
            "",
        )
        text = (
            f"Based on [Source 1], here is what your materials say about: {question}\n\n"
            "*This is a stub response generated without LLM synthesis.*"
        )
        input_tokens = sum(len(m["content"].split()) for m in messages)
        return Completion(text=text, input_tokens=input_tokens, output_tokens=len(text.split()))


class OpenAIGenerationClient:
    """OpenAI-backed generation client."""

    def __init__(self, api_key: str, model: str = "gpt-4o-mini", timeout: float = 30.0):
        """Initialize OpenAI client.

        Args:
            api_key: OpenAI API key (read from settings)
            model: Model name to use (default: gpt-4o-mini for cost efficiency)
            timeout: Client-side request timeout in seconds
        """
        self.client = AsyncOpenAI(api_key=api_key, timeout=timeout)
        self.model = model

    async def complete(
        self,
        messages: list[dict[str, str]],
        *,
        max_tokens: int,
        temperature: float,
    ) -> Completion:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,  # type: ignore[arg-type]
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except APITimeoutError as e:
            logger.error(f"OpenAI completion timed out (model={self.model})")
            raise GenerationTimeout() from e
        except OpenAIError as e:
            logger.error(f"OpenAI API call failed: {e}")
            raise GenerationError() from e

        text = ""
        if response.choices:
            text = response.choices[0].message.content or ""

        if not text.strip():
            logger.warning("OpenAI returned empty response")
            text = "No response generated."

        usage = response.usage
        return Completion(
            text=text,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )


def get_llm_client(settings: Settings) -> GenerationClient:
    """Factory function to get appropriate LLM client based on config.

    Returns:
        OpenAIGenerationClient if API key is configured, DeterministicStubClient otherwise
    """
    api_key = settings.openai_api_key

    if api_key and api_key.get_secret_value():
        logger.info("Using OpenAI client for generation")
        return OpenAIGenerationClient(
            api_key=api_key.get_secret_value(),
            model=settings.openai_model,
            timeout=settings.llm_timeout_seconds,
        )

    logger.warning("No OpenAI API key configured, using deterministic stub client")
    return DeterministicStubClient()
