"""Tests for the AI backend factory and the HTTP providers."""

from __future__ import annotations

import json
from dataclasses import dataclass

import httpx
import pytest

from gamekeeper import claude_backend
from gamekeeper.backend import create_backend
from gamekeeper.claude_backend import ClaudeBackend, ClaudeCodeBackend
from gamekeeper.errors import (
    AIBackendError,
    MissingCredentialsError,
    UnsupportedProviderError,
)
from gamekeeper.gemini_backend import GeminiBackend
from gamekeeper.openai_backend import OllamaBackend, OpenAIBackend


class Recorder:
    """MockTransport handler that remembers the last request."""

    def __init__(self, response: httpx.Response) -> None:
        self.response = response
        self.request: httpx.Request | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.request = request
        return self.response

    @property
    def body(self) -> dict:
        assert self.request is not None
        return json.loads(self.request.content)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def test_factory_is_case_insensitive() -> None:
    assert isinstance(create_backend("OpenAI", api_key="sk"), OpenAIBackend)
    assert isinstance(create_backend(" gemini ", api_key="g"), GeminiBackend)
    assert isinstance(create_backend("Claude", api_key="c"), ClaudeBackend)
    assert isinstance(create_backend("ollama"), OllamaBackend)
    assert isinstance(create_backend("claude_code"), ClaudeCodeBackend)


def test_factory_rejects_unknown_provider() -> None:
    with pytest.raises(UnsupportedProviderError, match="Unsupported AI provider: skynet"):
        create_backend("skynet")


@pytest.mark.parametrize("provider", ["openai", "gemini", "claude"])
def test_factory_requires_key(provider: str) -> None:
    with pytest.raises(MissingCredentialsError):
        create_backend(provider)


def test_ollama_display_name_tracks_key() -> None:
    assert create_backend("ollama").display_name == "Ollama Local"
    assert create_backend("ollama", api_key="k").display_name == "Ollama Cloud"


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_openai_request_and_reply() -> None:
    handler = Recorder(httpx.Response(200, json={"choices": [{"message": {"content": "Hi mortal"}}]}))
    backend = create_backend(
        "openai", api_key="sk-test", model="gpt-test", transport=httpx.MockTransport(handler)
    )

    reply = await backend.chat("hello", max_tokens=150, temperature=0.85)

    assert reply == "Hi mortal"
    assert str(handler.request.url) == "https://api.openai.com/v1/chat/completions"
    assert handler.request.headers["Authorization"] == "Bearer sk-test"
    assert handler.body == {
        "model": "gpt-test",
        "messages": [{"role": "user", "content": "hello"}],
        "max_tokens": 150,
        "temperature": 0.85,
    }


@pytest.mark.asyncio
async def test_provider_error_message_is_surfaced() -> None:
    handler = Recorder(httpx.Response(429, json={"error": {"message": "Rate limit reached"}}))
    backend = create_backend("openai", api_key="sk", transport=httpx.MockTransport(handler))
    with pytest.raises(AIBackendError, match="OpenAI Error: Rate limit reached"):
        await backend.chat("hello")


@pytest.mark.asyncio
async def test_transport_failure_becomes_backend_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    backend = create_backend("ollama", transport=httpx.MockTransport(handler))
    with pytest.raises(AIBackendError, match="Ollama Local request failed"):
        await backend.chat("hello")


@pytest.mark.asyncio
async def test_gemini_request_and_reply() -> None:
    handler = Recorder(httpx.Response(200, json={
        "candidates": [{"content": {"parts": [{"text": "Thus "}, {"text": "spoke"}]}}],
    }))
    backend = create_backend(
        "gemini", api_key="g-key", model="gemini-test", transport=httpx.MockTransport(handler)
    )

    assert await backend.chat("hello", max_tokens=150, temperature=0.7) == "Thus spoke"
    assert handler.request.url.path.endswith("/models/gemini-test:generateContent")
    assert handler.request.headers["x-goog-api-key"] == "g-key"
    assert handler.body["generationConfig"] == {"temperature": 0.7, "maxOutputTokens": 150}


@pytest.mark.asyncio
async def test_gemini_without_candidates_fails() -> None:
    handler = Recorder(httpx.Response(200, json={"candidates": []}))
    backend = create_backend("gemini", api_key="g", transport=httpx.MockTransport(handler))
    with pytest.raises(AIBackendError):
        await backend.chat("hello")


@pytest.mark.asyncio
async def test_claude_request_and_reply() -> None:
    handler = Recorder(httpx.Response(200, json={
        "content": [
            {"type": "text", "text": "I see "},
            {"type": "tool_use", "id": "x"},
            {"type": "text", "text": "all"},
        ],
    }))
    backend = create_backend("claude", api_key="c-key", transport=httpx.MockTransport(handler))

    assert await backend.chat("hello") == "I see all"
    assert str(handler.request.url) == "https://api.anthropic.com/v1/messages"
    assert handler.request.headers["x-api-key"] == "c-key"
    assert handler.request.headers["anthropic-version"] == "2023-06-01"


@pytest.mark.asyncio
async def test_ollama_request_and_reply() -> None:
    handler = Recorder(httpx.Response(200, json={"message": {"role": "assistant", "content": "Hey"}}))
    backend = create_backend(
        "ollama", base_url="http://gpu-box:11434/", transport=httpx.MockTransport(handler)
    )

    assert await backend.chat("hello", max_tokens=150, temperature=0.95) == "Hey"
    assert str(handler.request.url) == "http://gpu-box:11434/api/chat"
    assert "Authorization" not in handler.request.headers
    assert handler.body["stream"] is False
    assert handler.body["options"] == {"temperature": 0.95, "num_predict": 150}


@pytest.mark.asyncio
async def test_ollama_plain_text_error() -> None:
    handler = Recorder(httpx.Response(404, text="model 'llama9' not found"))
    backend = create_backend("ollama", transport=httpx.MockTransport(handler))
    with pytest.raises(AIBackendError, match="model 'llama9' not found"):
        await backend.chat("hello")


# ---------------------------------------------------------------------------
# Claude Code (agent SDK)
# ---------------------------------------------------------------------------


@dataclass
class SdkText:
    text: str


@dataclass
class SdkAssistant:
    content: list
    error: str | None = None


@dataclass
class SdkResult:
    result: str | None


@pytest.fixture
def sdk_stream(monkeypatch: pytest.MonkeyPatch):
    """Replace the SDK's ``query`` with a scripted message stream."""
    monkeypatch.setattr(claude_backend, "AssistantMessage", SdkAssistant)
    monkeypatch.setattr(claude_backend, "TextBlock", SdkText)
    monkeypatch.setattr(claude_backend, "ResultMessage", SdkResult)
    script: dict = {"messages": [], "calls": []}

    async def fake_query(*, prompt, options):
        script["calls"].append((prompt, options))
        for msg in script["messages"]:
            if isinstance(msg, Exception):
                raise msg
            yield msg

    monkeypatch.setattr(claude_backend, "query", fake_query)
    return script


@pytest.mark.asyncio
async def test_claude_code_joins_text_blocks(sdk_stream) -> None:
    sdk_stream["messages"] = [
        SdkAssistant(content=[SdkText("Kneel, "), object(), SdkText("mortal")]),
        SdkResult(result="ignored when text was streamed"),
    ]
    backend = create_backend("claude_code", model="sonnet")

    assert await backend.chat("hello") == "Kneel, mortal"
    prompt, options = sdk_stream["calls"][0]
    assert prompt == "hello"
    assert options.model == "sonnet"
    assert options.max_turns == 1


@pytest.mark.asyncio
async def test_claude_code_falls_back_to_result(sdk_stream) -> None:
    sdk_stream["messages"] = [SdkResult(result="From the result")]
    assert await create_backend("claude_code").chat("hello") == "From the result"


@pytest.mark.asyncio
async def test_claude_code_message_error(sdk_stream) -> None:
    sdk_stream["messages"] = [SdkAssistant(content=[], error="rate_limit")]
    with pytest.raises(AIBackendError, match="Claude Code error: rate_limit"):
        await create_backend("claude_code").chat("hello")


@pytest.mark.asyncio
async def test_claude_code_empty_reply(sdk_stream) -> None:
    sdk_stream["messages"] = [SdkAssistant(content=[]), SdkResult(result=None)]
    with pytest.raises(AIBackendError, match="returned no text"):
        await create_backend("claude_code").chat("hello")


@pytest.mark.asyncio
async def test_claude_code_sdk_failure_is_wrapped(sdk_stream) -> None:
    sdk_stream["messages"] = [RuntimeError("CLI not found")]
    with pytest.raises(AIBackendError, match="CLI not found"):
        await create_backend("claude_code").chat("hello")
