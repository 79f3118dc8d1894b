"""Broadcaster: line-oriented side channel for console output and milestones.

Every console line and every lifecycle / agent milestone is published here.
Observers either subscribe with a queue (live fan-out) or read the recent
history through ``tail``.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field

log = logging.getLogger(__name__)


@dataclass
class RingBuffer:
    """Fixed-size ring buffer of lines, tracked by sequence number."""

    max_lines: int = 2000
    _buf: deque[str] = field(default_factory=deque)
    _seq: int = 0  # monotonic sequence counter (one per append)

    def append(self, line: str) -> None:
        self._buf.append(line)
        self._seq += 1
        while len(self._buf) > self.max_lines:
            self._buf.popleft()

    @property
    def seq(self) -> int:
        return self._seq

    def tail(self, num_lines: int = 100) -> list[str]:
        """Return the last ``num_lines`` buffered lines, oldest first."""
        if num_lines <= 0:
            return []
        return list(self._buf)[-num_lines:]


class Broadcaster:
    def __init__(self, history: int = 2000, queue_size: int = 500) -> None:
        self._history = RingBuffer(max_lines=history)
        self._queue_size = queue_size
        self._subscribers: set[asyncio.Queue[str]] = set()

    def publish(self, line: str) -> None:
        self._history.append(line)
        log.debug("broadcast: %s", line)
        for queue in self._subscribers:
            try:
                queue.put_nowait(line)
            except asyncio.QueueFull:
                # Slow observer: it misses this line rather than blocking others
                pass

    def subscribe(self) -> asyncio.Queue[str]:
        queue: asyncio.Queue[str] = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[str]) -> None:
        self._subscribers.discard(queue)

    def tail(self, num_lines: int = 100) -> list[str]:
        return self._history.tail(num_lines)

    @property
    def seq(self) -> int:
        return self._history.seq

    async def on_console_line(self, game_id: str, line: str) -> None:
        """Log-stream listener: republish console output tagged with its game."""
        self.publish(f"[{game_id}] {line}")
