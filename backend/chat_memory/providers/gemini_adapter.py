from __future__ import annotations

from typing import Any

from chat_memory.providers.base import (
    HTTPProviderAdapter,
    LLMResult,
    ProviderError,
    ProviderRuntimeConfig,
    require_api_key,
)

SAFETY_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)
SAFETY_THRESHOLD = "BLOCK_MEDIUM_AND_ABOVE"


class GeminiAdapter(HTTPProviderAdapter):
    """Summaries from Google Gemini via ``models/{model}:generateContent``.

    Prompt or response blocks from Gemini's safety filter surface as
    ``PROVIDER_SAFETY_BLOCK`` so the summarizer can report them separately.
    """

    provider_label = "Gemini"
    api_prefix = "/v1beta"

    async def generate(self, cfg: ProviderRuntimeConfig, messages: list[dict]) -> LLMResult:
        api_key = require_api_key(cfg.api_key, self.provider_label)
        model = cfg.model_name
        if not model.startswith("models/"):
            model = f"models/{model}"
        data = await self._post_json(
            self._endpoint(cfg.base_url, f"/v1beta/{model}:generateContent"),
            generation_request(messages, cfg),
            headers={"x-goog-api-key": api_key},
        )
        usage = data.get("usageMetadata")
        return LLMResult(
            content=extract_text(data),
            model_provider=cfg.provider,
            model_name=cfg.model_name,
            token_in=self._token_count(usage, "promptTokenCount"),
            token_out=self._token_count(usage, "candidatesTokenCount"),
        )


def generation_request(messages: list[dict], cfg: ProviderRuntimeConfig) -> dict[str, Any]:
    system = [m.get("content", "") for m in messages if m.get("role") == "system"]
    contents = [
        {
            "role": "model" if m.get("role") == "assistant" else "user",
            "parts": [{"text": m.get("content", "")}],
        }
        for m in messages
        if m.get("role") != "system"
    ]
    request: dict[str, Any] = {
        "contents": contents,
        "generationConfig": {
            "temperature": cfg.temperature,
            "topK": 40,
            "topP": 0.95,
            "maxOutputTokens": cfg.max_output_tokens,
        },
        "safetySettings": [
            {"category": category, "threshold": SAFETY_THRESHOLD}
            for category in SAFETY_CATEGORIES
        ],
    }
    if system:
        request["system_instruction"] = {"parts": [{"text": "\n".join(system)}]}
    return request


def extract_text(data: dict[str, Any]) -> str:
    feedback = data.get("promptFeedback") or {}
    if feedback.get("blockReason"):
        raise ProviderError(
            "PROVIDER_SAFETY_BLOCK", f"Gemini blocked the prompt: {feedback['blockReason']}."
        )

    candidates = data.get("candidates") or []
    if not candidates:
        raise ProviderError("PROVIDER_PARSE_ERROR", "Gemini returned no candidates.")
    first = candidates[0]
    parts = (first.get("content") or {}).get("parts") or []
    text = "".join(part.get("text", "") for part in parts if isinstance(part, dict))
    if text.strip():
        return text
    if first.get("finishReason") == "SAFETY":
        raise ProviderError("PROVIDER_SAFETY_BLOCK", "Gemini safety filter blocked the summary.")
    raise ProviderError("PROVIDER_PARSE_ERROR", "Gemini returned an empty summary.")
