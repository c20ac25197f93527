from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol

import httpx


@dataclass
class ProviderRuntimeConfig:
    """Connection and sampling parameters for one summarization backend."""

    provider: str
    model_name: str
    base_url: str | None = None
    api_key: str | None = None
    temperature: float = 0.3
    max_output_tokens: int = 500


@dataclass
class LLMResult:
    """Generated text plus token accounting when the backend reports it."""

    content: str
    model_provider: str
    model_name: str
    token_in: int | None = None
    token_out: int | None = None


class LLMAdapter(Protocol):
    """Text-generation backend used to produce summaries."""

    async def generate(self, cfg: ProviderRuntimeConfig, messages: list[dict]) -> LLMResult:
        """Return the completion for a chat-style ``messages`` list."""


class ProviderError(RuntimeError):
    """Normalized backend failure; ``code`` selects the summarization failure category."""

    def __init__(
        self,
        code: str,
        message: str,
        retryable: bool = False,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.retryable = retryable
        self.status_code = status_code


# HTTP status -> (error code, retryable); other 5xx are upstream failures.
_STATUS_ERRORS: dict[int, tuple[str, bool]] = {
    401: ("PROVIDER_AUTH", False),
    403: ("PROVIDER_AUTH", False),
    408: ("PROVIDER_TIMEOUT", True),
    429: ("PROVIDER_RATE_LIMIT", True),
}


def build_status_error(response: httpx.Response, label: str = "Provider") -> ProviderError:
    status = response.status_code
    if status in _STATUS_ERRORS:
        code, retryable = _STATUS_ERRORS[status]
    elif status >= 500:
        code, retryable = "PROVIDER_UPSTREAM", True
    else:
        code, retryable = "PROVIDER_BAD_STATUS", False
    return ProviderError(
        code,
        f"{label} returned {status}: {error_detail(response)}",
        retryable=retryable,
        status_code=status,
    )


def require_api_key(api_key: Optional[str], label: str) -> str:
    if not api_key:
        raise ProviderError("API_KEY_REQUIRED", f"API key is required for {label}.")
    return api_key


def error_detail(response: httpx.Response) -> str:
    """Best-effort reason from an error body: JSON ``error``/``message`` or raw text."""

    try:
        payload: Any = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            candidates = [error.get("message"), error.get("status")]
        else:
            candidates = [error]
        candidates.append(payload.get("message"))
        for candidate in candidates:
            if isinstance(candidate, str) and candidate.strip():
                return candidate.strip()
    return (response.text or "empty response body").strip()


class HTTPProviderAdapter:
    """Base for adapters that POST one JSON request per summary."""

    provider_label = "provider"
    # Path segment that users sometimes include in the configured base URL.
    api_prefix = ""

    def __init__(
        self, timeout_sec: float = 90, http_client: Optional[httpx.AsyncClient] = None
    ) -> None:
        self._timeout = timeout_sec
        self._client = http_client

    async def _post_json(
        self,
        url: str,
        payload: dict[str, Any],
        headers: Optional[dict[str, str]] = None,
    ) -> dict[str, Any]:
        response = await self._send(url, payload, headers)
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError(
                "PROVIDER_PARSE_ERROR", f"{self.provider_label} returned a non-JSON body."
            ) from exc
        if not isinstance(data, dict):
            raise ProviderError(
                "PROVIDER_PARSE_ERROR", f"{self.provider_label} returned an unexpected payload."
            )
        return data

    async def _send(
        self,
        url: str,
        payload: dict[str, Any],
        headers: Optional[dict[str, str]],
    ) -> httpx.Response:
        try:
            if self._client is not None:
                response = await self._client.post(
                    url, json=payload, headers=headers, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise ProviderError(
                "PROVIDER_TIMEOUT", f"{self.provider_label} request timed out.", retryable=True
            ) from exc
        except httpx.RequestError as exc:
            raise ProviderError(
                "PROVIDER_CONNECTION_ERROR",
                f"Could not reach {self.provider_label}.",
                retryable=True,
            ) from exc
        if response.is_error:
            raise build_status_error(response, self.provider_label)
        return response

    def _endpoint(self, base_url: Optional[str], path: str) -> str:
        """Join ``base_url`` and ``path`` without doubling ``api_prefix``."""

        if not base_url:
            raise ProviderError(
                "PROVIDER_BASE_URL_MISSING", f"Base URL is required for {self.provider_label}."
            )
        base = base_url.rstrip("/")
        prefix = self.api_prefix
        if prefix and base.endswith(prefix) and path.startswith(prefix + "/"):
            path = path[len(prefix):]
        return base + path

    @staticmethod
    def _token_count(data: Any, key: str) -> Optional[int]:
        value = data.get(key) if isinstance(data, dict) else None
        if isinstance(value, bool) or not isinstance(value, int):
            return None
        return value
