from __future__ import annotations

from abc import ABC, abstractmethod

import httpx

from .errors import (
    AIBackendError,
    MissingCredentialsError,
    UnsupportedProviderError,
)

DEFAULT_TIMEOUT = httpx.Timeout(60.0)


def error_message(response: httpx.Response) -> str:
    """Pull a human-readable message out of a provider's error body.

    OpenAI, Gemini and Claude all nest it as ``{"error": {"message": ...}}``;
    Ollama answers with plain text.
    """
    try:
        data = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str):
            return err
    return response.reason_phrase


class AIBackend(ABC):
    backend_id: str
    display_name: str

    @abstractmethod
    async def chat(
        self,
        prompt: str,
        *,
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> str:
        ...


class HttpBackend(AIBackend):
    """Shared plumbing for providers reached over a JSON HTTP API."""

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str,
        base_url: str,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    async def _post(self, url: str, payload: dict, headers: dict[str, str]) -> dict:
        try:
            async with httpx.AsyncClient(
                timeout=DEFAULT_TIMEOUT, transport=self._transport
            ) as client:
                response = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise AIBackendError(f"{self.display_name} request failed: {exc}") from exc

        if response.status_code != 200:
            raise AIBackendError(f"{self.display_name} Error: {error_message(response)}")
        try:
            return response.json()
        except ValueError as exc:
            raise AIBackendError(f"{self.display_name} returned invalid JSON") from exc


# Providers that cannot be called without an API key
_KEY_REQUIRED = {"openai", "gemini", "claude"}


def create_backend(
    provider: str,
    *,
    api_key: str | None = None,
    model: str | None = None,
    base_url: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AIBackend:
    """Build the backend registered under ``provider`` (case-insensitive).

    Fails immediately on an unknown provider or a missing key rather than at
    the first chat call.
    """
    kind = (provider or "").strip().lower()

    if kind in _KEY_REQUIRED and not api_key:
        raise MissingCredentialsError(f"AI provider '{kind}' requires an API key")

    if kind == "openai":
        from .openai_backend import OpenAIBackend
        return OpenAIBackend(api_key=api_key, model=model, base_url=base_url, transport=transport)
    if kind == "ollama":
        from .openai_backend import OllamaBackend
        return OllamaBackend(api_key=api_key, model=model, base_url=base_url, transport=transport)
    if kind == "gemini":
        from .gemini_backend import GeminiBackend
        return GeminiBackend(api_key=api_key, model=model, base_url=base_url, transport=transport)
    if kind == "claude":
        from .claude_backend import ClaudeBackend
        return ClaudeBackend(api_key=api_key, model=model, base_url=base_url, transport=transport)
    if kind == "claude_code":
        from .claude_backend import ClaudeCodeBackend
        return ClaudeCodeBackend(model=model)

    raise UnsupportedProviderError(provider)
