from __future__ import annotations

from collections import deque

from .models import ChatLine

BUFFER_SIZE = 50


class ConversationBuffers:
    """In-memory store of game_id -> recent chat lines.

    Lost on restart by design: conversation context is only meant to
    colour the agent's next few replies.
    """

    def __init__(self, size: int = BUFFER_SIZE) -> None:
        self._size = size
        self._store: dict[str, deque[ChatLine]] = {}

    def add(self, game_id: str, line: ChatLine) -> None:
        buf = self._store.get(game_id)
        if buf is None:
            buf = self._store[game_id] = deque(maxlen=self._size)
        buf.append(line)

    def get(self, game_id: str) -> list[ChatLine]:
        return list(self._store.get(game_id, ()))

    def recent(self, game_id: str, max_lines: int) -> list[ChatLine]:
        if max_lines <= 0:
            return []
        return self.get(game_id)[-max_lines:]

    def context(self, game_id: str, max_lines: int) -> str:
        return "\n".join(f"{m.player}: {m.message}" for m in self.recent(game_id, max_lines))

    def discard(self, game_id: str) -> bool:
        return self._store.pop(game_id, None) is not None
