"""Anthropic text generation plus cleanup of code returned by the model.

This module provides:
- strip_code_fences: Remove markdown fences / language tags around generated code
- AnthropicGenerator: AIGenerator backed by the Anthropic SDK, retrying
  overload (529) and rate-limit (429) responses with exponential backoff
"""

import re

import anthropic
import structlog
from anthropic._exceptions import OverloadedError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from forgeflow.core.config import get_settings
from forgeflow.core.exceptions import AIGenerationError

logger = structlog.get_logger(__name__)

_OPENING_FENCE = re.compile(r"^```[\w+-]*[ \t]*\n?", re.MULTILINE)
_CLOSING_FENCE = re.compile(r"^```[ \t]*$", re.MULTILINE)
_BARE_LANGUAGE_LINE = re.compile(r"^(typescript|javascript|tsx|jsx|ts|js)[ \t]*$", re.MULTILINE)


def strip_code_fences(content: str) -> str:
    """Return raw code from a model response that may be wrapped in markdown fences."""
    cleaned = _OPENING_FENCE.sub("", content)
    cleaned = _CLOSING_FENCE.sub("", cleaned).strip()

    if "```" in cleaned or _BARE_LANGUAGE_LINE.search(cleaned):
        cleaned = _BARE_LANGUAGE_LINE.sub("", cleaned).replace("```", "").strip()
    return cleaned


class AnthropicGenerator:
    """Generate text with Claude."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        client: anthropic.AsyncAnthropic | None = None,
    ):
        settings = get_settings()
        self.model = model or settings.default_model
        self.max_tokens = max_tokens or settings.generation_max_tokens
        self._client = client or anthropic.AsyncAnthropic(
            api_key=api_key if api_key is not None else settings.anthropic_api_key
        )

    async def generate(self, prompt: str, *, model: str | None = None, system: str | None = None) -> str:
        """Single-turn completion. Raises AIGenerationError on failure or empty output."""
        try:
            text = await self._create(prompt, model or self.model, system)
        except anthropic.APIError as exc:
            logger.error(
                "anthropic_generation_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise AIGenerationError(f"Anthropic request failed: {exc}") from exc

        if not text.strip():
            raise AIGenerationError("Model returned an empty response")
        return text

    @retry(
        retry=retry_if_exception_type((OverloadedError, anthropic.RateLimitError)),
        stop=stop_after_attempt(4),
        wait=wait_exponential(multiplier=2, min=2, max=30),
        reraise=True,
        before_sleep=lambda rs: logger.warning(
            "anthropic_retrying",
            attempt=rs.attempt_number,
            error_type=type(rs.outcome.exception()).__name__,
            sleep_seconds=rs.next_action.sleep,
        ),
    )
    async def _create(self, prompt: str, model: str, system: str | None) -> str:
        kwargs = {
            "model": model,
            "max_tokens": self.max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system

        response = await self._client.messages.create(**kwargs)
        return "".join(block.text for block in response.content if getattr(block, "type", None) == "text")
