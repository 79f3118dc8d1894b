"""Formatter: turns agent replies into in-game chat commands.

Replies are sanitized once (``sanitize_message`` / ``truncate``); each game
family then gets its own ChatFormatter subclass that wraps the text in the
console command its server understands.
"""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod

from .catalog import DEFAULT_CHAT_LIMIT
from .models import GameDefinition

# Characters that can break a game's chat or command parser
_UNSAFE_CHARS_RE = re.compile(r"[\[\]{}<>()\"'`\\|^~@#$%&*_=+]")
_WHITESPACE_RE = re.compile(r"\s+")

ELLIPSIS = "..."


def sanitize_message(text: str) -> str:
    """Collapse whitespace and strip structural symbols.

    >>> sanitize_message('  "Hello"\\n  [world] ')
    'Hello world'
    """
    text = _UNSAFE_CHARS_RE.sub("", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def truncate(text: str, limit: int, marker: str = ELLIPSIS) -> str:
    if len(text) <= limit:
        return text
    return text[: max(0, limit - len(marker))] + marker


def prepare_reply(text: str, game: GameDefinition | None) -> str:
    """Sanitize and truncate a raw model reply to the game's chat limit."""
    limit = (game.chat_limit if game else None) or DEFAULT_CHAT_LIMIT
    return truncate(sanitize_message(text), limit)


# ---------------------------------------------------------------------------
# Abstract base
# ---------------------------------------------------------------------------


class ChatFormatter(ABC):
    """Render a chat message as a console command."""

    @abstractmethod
    def format_chat(self, speaker: str, text: str) -> str:
        ...


# ---------------------------------------------------------------------------
# Implementations
# ---------------------------------------------------------------------------


class MinecraftJavaFormatter(ChatFormatter):
    """``tellraw`` with a JSON text component, so the speaker tag is not "[Server]"."""

    def format_chat(self, speaker: str, text: str) -> str:
        component = {"text": f"[{speaker}] {text}", "color": "gold"}
        return f"tellraw @a {json.dumps(component, ensure_ascii=False)}"


class SayFormatter(ChatFormatter):
    def format_chat(self, speaker: str, text: str) -> str:
        return f"say [{speaker}] {text}"


_FORMATTERS: dict[str, ChatFormatter] = {
    "minecraft_java": MinecraftJavaFormatter(),
}
_DEFAULT_FORMATTER = SayFormatter()


def formatter_for(game: GameDefinition) -> ChatFormatter:
    return _FORMATTERS.get(game.id) or _FORMATTERS.get(game.family) or _DEFAULT_FORMATTER
