"""Log stream multiplexer: tails each running instance's console log.

One ``tail -F`` process per attached instance; every non-empty line is
published to all subscribers (the broadcaster and the agent, typically).
Listeners run inline on the reader task and must return promptly; slow
work belongs in a task the listener spawns itself.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path

from gamekeeper.errors import ExternalProcessError

log = logging.getLogger(__name__)

LineListener = Callable[[str, str], Awaitable[None] | None]


@dataclass
class _Tail:
    path: Path
    process: asyncio.subprocess.Process
    reader: asyncio.Task[None] | None = field(default=None, repr=False)


class LogStreamMultiplexer:
    def __init__(self, tail_bin: str = "tail") -> None:
        self.tail_bin = tail_bin
        self._tails: dict[str, _Tail] = {}
        self._listeners: list[LineListener] = []

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    def subscribe(self, listener: LineListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: LineListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def publish(self, game_id: str, line: str) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(game_id, line)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                log.exception("Log listener failed for %s", game_id)

    # ------------------------------------------------------------------
    # Attach / detach
    # ------------------------------------------------------------------

    def attached(self, game_id: str) -> bool:
        return game_id in self._tails

    async def attach(self, game_id: str, path: str | Path) -> None:
        """Start tailing ``path`` from its current end. No-op if already attached."""
        if game_id in self._tails:
            return

        log_path = Path(path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        log_path.touch(exist_ok=True)

        try:
            process = await asyncio.create_subprocess_exec(
                self.tail_bin, "-n", "0", "-F", str(log_path),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as exc:
            raise ExternalProcessError(f"Could not run {self.tail_bin}: {exc}") from exc
        tail = _Tail(path=log_path, process=process)
        self._tails[game_id] = tail
        tail.reader = asyncio.create_task(
            self._read_lines(game_id, process.stdout),  # type: ignore[arg-type]
            name=f"{game_id}-tail",
        )
        log.info("Attached log stream for %s (%s)", game_id, log_path)

    async def detach(self, game_id: str) -> None:
        tail = self._tails.pop(game_id, None)
        if tail is None:
            return

        if tail.process.returncode is None:
            try:
                tail.process.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(tail.process.wait(), timeout=2.0)
            except asyncio.TimeoutError:
                try:
                    tail.process.kill()
                except ProcessLookupError:
                    pass
                await tail.process.wait()

        if tail.reader is not None and tail.reader is not asyncio.current_task():
            tail.reader.cancel()
            try:
                await tail.reader
            except asyncio.CancelledError:
                pass
        log.info("Detached log stream for %s", game_id)

    async def detach_all(self) -> None:
        for game_id in list(self._tails):
            await self.detach(game_id)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _read_lines(self, game_id: str, stream: asyncio.StreamReader) -> None:
        try:
            async for raw_line in stream:
                line = raw_line.decode("utf-8", errors="replace").strip()
                if line:
                    await self.publish(game_id, line)
        except asyncio.CancelledError:
            pass
