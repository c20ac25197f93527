from __future__ import annotations

from chat_memory.providers.base import (
    HTTPProviderAdapter,
    LLMResult,
    ProviderError,
    ProviderRuntimeConfig,
)


class OllamaAdapter(HTTPProviderAdapter):
    """Summaries from a local Ollama server (non-streaming ``/api/chat``)."""

    provider_label = "Ollama"
    api_prefix = "/api"

    async def generate(self, cfg: ProviderRuntimeConfig, messages: list[dict]) -> LLMResult:
        data = await self._post_json(
            self._endpoint(cfg.base_url, "/api/chat"),
            {
                "model": cfg.model_name,
                "messages": messages,
                "stream": False,
                "options": {
                    "temperature": cfg.temperature,
                    "num_predict": cfg.max_output_tokens,
                },
            },
        )
        reply = data.get("message")
        content = reply.get("content") if isinstance(reply, dict) else None
        if not isinstance(content, str) or not content.strip():
            raise ProviderError("PROVIDER_PARSE_ERROR", "Ollama returned no message content.")
        return LLMResult(
            content=content,
            model_provider=cfg.provider,
            model_name=cfg.model_name,
            token_in=self._token_count(data, "prompt_eval_count"),
            token_out=self._token_count(data, "eval_count"),
        )
