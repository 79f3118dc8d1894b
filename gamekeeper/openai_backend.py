from __future__ import annotations

import logging

import httpx

from .backend import HttpBackend
from .errors import AIBackendError

log = logging.getLogger(__name__)


class OpenAIBackend(HttpBackend):
    backend_id = "openai"
    display_name = "OpenAI"

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str | None = None,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(
            api_key=api_key,
            model=model or "gpt-4o",
            base_url=base_url or "https://api.openai.com/v1",
            transport=transport,
        )

    async def chat(
        self,
        prompt: str,
        *,
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> str:
        data = await self._post(
            f"{self.base_url}/chat/completions",
            {
                "model": self.model,
                "messages": [{"role": "user", "content": prompt}],
                "max_tokens": max_tokens,
                "temperature": temperature,
            },
            {"Authorization": f"Bearer {self.api_key}"},
        )
        try:
            return data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise AIBackendError("OpenAI returned no completion") from exc


class OllamaBackend(HttpBackend):
    """Local Ollama by default; an API key switches to Ollama Cloud auth."""

    backend_id = "ollama"

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(
            api_key=api_key,
            model=model or "llama3",
            base_url=base_url or "http://localhost:11434",
            transport=transport,
        )

    @property
    def display_name(self) -> str:  # type: ignore[override]
        return "Ollama Cloud" if self.api_key else "Ollama Local"

    async def chat(
        self,
        prompt: str,
        *,
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> str:
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        data = await self._post(
            f"{self.base_url}/api/chat",
            {
                "model": self.model,
                "messages": [{"role": "user", "content": prompt}],
                "stream": False,
                "options": {"temperature": temperature, "num_predict": max_tokens},
            },
            headers,
        )
        content = (data.get("message") or {}).get("content")
        if content is None:
            log.warning("Ollama response without message content: %s", str(data)[:200])
            raise AIBackendError("Ollama returned no message")
        return content
