from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Optional, Protocol

from chat_memory.core.config import Settings
from chat_memory.memory.errors import (
    InvalidArgument,
    SummarizationFailed,
    SummarizationUnavailable,
)
from chat_memory.memory.types import Message
from chat_memory.providers.base import LLMAdapter, ProviderError, ProviderRuntimeConfig
from chat_memory.providers.gemini_adapter import GeminiAdapter
from chat_memory.providers.ollama_adapter import OllamaAdapter

logger = logging.getLogger(__name__)

SUMMARY_PROMPT = """You maintain the long-term memory of a chat assistant.
Write a concise, informative summary of the conversation below so that it can
replace the original messages in future prompts.

Requirements:
- Keep every technical detail, rule, number and name that was discussed
- Keep the user's questions together with the answers they received
- Preserve the order in which topics came up
- Be brief; do not add information that is not in the conversation

Conversation:
{conversation}

Summary:"""

# ProviderError codes grouped into the summarization failure categories.
_CATEGORY_BY_CODE = {
    "API_KEY_REQUIRED": "auth",
    "PROVIDER_AUTH": "auth",
    "PROVIDER_SAFETY_BLOCK": "safety",
    "PROVIDER_RATE_LIMIT": "rate_limit",
    "PROVIDER_TIMEOUT": "timeout",
    "PROVIDER_CONNECTION_ERROR": "network",
    "PROVIDER_BASE_URL_MISSING": "network",
    "PROVIDER_UPSTREAM": "upstream",
    "PROVIDER_PARSE_ERROR": "invalid_response",
    "PROVIDER_BAD_STATUS": "invalid_response",
}


class Summarizer(Protocol):
    """Compresses an ordered batch of messages into one summary string."""

    def is_available(self) -> bool:
        """Return True when the backing service is configured."""

    async def summarize(self, messages: Sequence[Message]) -> str:
        """Return non-empty summary text for ``messages``."""


class NullSummarizer:
    """Summarizer used when no text-generation backend is configured."""

    def __init__(self, reason: str = "summarization is disabled") -> None:
        self.reason = reason

    def is_available(self) -> bool:
        return False

    async def summarize(self, messages: Sequence[Message]) -> str:
        raise SummarizationUnavailable(f"Summarizer is not available: {self.reason}")


class LLMSummarizer:
    """Summarizer backed by an LLM provider adapter."""

    def __init__(
        self,
        adapter: LLMAdapter,
        cfg: ProviderRuntimeConfig,
        *,
        requires_key: bool = True,
        prompt_template: str = SUMMARY_PROMPT,
    ) -> None:
        self._adapter = adapter
        self._cfg = cfg
        self._requires_key = requires_key
        self._prompt_template = prompt_template

    @property
    def provider(self) -> str:
        return self._cfg.provider

    def is_available(self) -> bool:
        if not self._cfg.model_name:
            return False
        return bool(self._cfg.api_key) or not self._requires_key

    async def summarize(self, messages: Sequence[Message]) -> str:
        if not self.is_available():
            raise SummarizationUnavailable(
                f"{self._cfg.provider} summarizer is not configured"
            )
        if not messages:
            raise InvalidArgument("summarize requires at least one message")

        prompt = self._prompt_template.format(conversation=format_messages(messages))
        try:
            result = await self._adapter.generate(
                self._cfg, [{"role": "user", "content": prompt}]
            )
        except ProviderError as exc:
            category = _CATEGORY_BY_CODE.get(exc.code, "unknown")
            raise SummarizationFailed(category, exc.code, cause=exc) from exc

        summary = (result.content or "").strip()
        if not summary:
            raise SummarizationFailed("invalid_response", "empty summary generated")
        logger.debug(
            "Summarized %d messages with %s/%s (tokens in=%s out=%s)",
            len(messages),
            result.model_provider,
            result.model_name,
            result.token_in,
            result.token_out,
        )
        return summary


def format_messages(messages: Sequence[Message]) -> str:
    return "\n".join(
        f"[{message.timestamp.isoformat()}] {message.role}: {message.content}"
        for message in messages
    )


def create_summarizer(
    settings: Settings, adapter: Optional[LLMAdapter] = None
) -> Summarizer:
    """Factory for the configured summarization backend."""

    provider = settings.summary_provider
    if provider == "off":
        return NullSummarizer("SUMMARY_PROVIDER=off")

    if provider == "gemini":
        api_key = settings.gemini_api_key.strip()
        if not api_key:
            logger.warning(
                "SUMMARY_PROVIDER=gemini but GEMINI_API_KEY is missing; summarization disabled"
            )
            return NullSummarizer("GEMINI_API_KEY is not configured")
        return LLMSummarizer(
            adapter or GeminiAdapter(timeout_sec=settings.summary_timeout_sec),
            ProviderRuntimeConfig(
                provider="gemini",
                model_name=settings.summary_model,
                base_url=settings.gemini_base_url,
                api_key=api_key,
            ),
        )

    if provider == "ollama":
        return LLMSummarizer(
            adapter or OllamaAdapter(timeout_sec=settings.summary_timeout_sec),
            ProviderRuntimeConfig(
                provider="ollama",
                model_name=settings.summary_model,
                base_url=settings.ollama_base_url,
            ),
            requires_key=False,
        )

    logger.warning("Unknown SUMMARY_PROVIDER=%s; summarization disabled", provider)
    return NullSummarizer(f"unknown provider {provider}")
