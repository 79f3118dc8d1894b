from __future__ import annotations

import httpx

from .backend import HttpBackend
from .errors import AIBackendError


class GeminiBackend(HttpBackend):
    backend_id = "gemini"
    display_name = "Gemini"

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
            model=model or "gemini-1.5-flash",
            base_url=base_url or "https://generativelanguage.googleapis.com/v1beta",
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
            f"{self.base_url}/models/{self.model}:generateContent",
            {
                "contents": [{"parts": [{"text": prompt}]}],
                "generationConfig": {
                    "temperature": temperature,
                    "maxOutputTokens": max_tokens,
                },
            },
            {"x-goog-api-key": self.api_key or ""},
        )
        try:
            parts = data["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError) as exc:
            raise AIBackendError("Gemini returned no candidates") from exc
        return "".join(part.get("text", "") for part in parts if isinstance(part, dict))
