from __future__ import annotations

import logging

import httpx
from claude_agent_sdk import (
    AssistantMessage,
    ClaudeAgentOptions,
    ResultMessage,
    TextBlock,
    query,
)

from .backend import AIBackend, HttpBackend
from .errors import AIBackendError

log = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


class ClaudeBackend(HttpBackend):
    """Anthropic Messages API with an API key."""

    backend_id = "claude"
    display_name = "Claude"

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
            model=model or "claude-3-5-sonnet-20240620",
            base_url=base_url or "https://api.anthropic.com/v1",
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
            f"{self.base_url}/messages",
            {
                "model": self.model,
                "max_tokens": max_tokens,
                "temperature": temperature,
                "messages": [{"role": "user", "content": prompt}],
            },
            {
                "x-api-key": self.api_key or "",
                "anthropic-version": ANTHROPIC_VERSION,
            },
        )
        blocks = data.get("content") or []
        text = "".join(
            block.get("text", "")
            for block in blocks
            if isinstance(block, dict) and block.get("type") == "text"
        )
        if not text:
            raise AIBackendError("Claude returned no text content")
        return text


class ClaudeCodeBackend(AIBackend):
    """Local Claude Code install driven through the agent SDK.

    Uses the CLI's own login, so no API key is needed.  The SDK has no
    sampling knobs; ``max_tokens`` and ``temperature`` are accepted and
    ignored, and the reply is kept short by the prompt itself.
    """

    backend_id = "claude_code"
    display_name = "Claude Code"

    def __init__(self, *, model: str | None = None) -> None:
        self.model = model

    async def chat(
        self,
        prompt: str,
        *,
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> str:
        options = ClaudeAgentOptions(max_turns=1, allowed_tools=[])
        if self.model:
            options.model = self.model

        parts: list[str] = []
        result: str | None = None
        try:
            async for msg in query(prompt=prompt, options=options):
                if isinstance(msg, AssistantMessage):
                    if msg.error:
                        raise AIBackendError(f"Claude Code error: {msg.error}")
                    for block in msg.content:
                        if isinstance(block, TextBlock):
                            parts.append(block.text)
                elif isinstance(msg, ResultMessage):
                    result = msg.result
        except AIBackendError:
            raise
        except Exception as exc:
            log.exception("Claude Code backend error")
            raise AIBackendError(f"Claude Code error: {exc}") from exc

        text = "".join(parts) or (result or "")
        if not text:
            raise AIBackendError("Claude Code returned no text")
        return text
