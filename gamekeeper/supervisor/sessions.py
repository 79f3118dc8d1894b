"""Session host: runs game servers detached from the supervisor's process tree.

Sessions are addressed by name, so a supervisor restart can re-adopt a
server that kept running in the meantime.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from gamekeeper.errors import SessionHostError, SessionNotAliveError

log = logging.getLogger(__name__)

SESSION_PREFIX = "gamekeeper-"


def session_name(game_id: str) -> str:
    return f"{SESSION_PREFIX}{game_id}"


class SessionHost(ABC):
    @abstractmethod
    async def open(self, name: str, command: str, cwd: Path, log_path: Path) -> None:
        """Start ``command`` in a new detached session with output appended to ``log_path``."""
        ...

    @abstractmethod
    async def is_alive(self, name: str) -> bool:
        ...

    @abstractmethod
    async def send(self, name: str, text: str) -> None:
        """Type ``text`` plus a line terminator into the session's console."""
        ...

    @abstractmethod
    async def terminate(self, name: str) -> None:
        ...


class ScreenSessionHost(SessionHost):
    """GNU screen backed sessions."""

    def __init__(self, screen_bin: str = "screen") -> None:
        self.screen_bin = screen_bin

    async def open(self, name: str, command: str, cwd: Path, log_path: Path) -> None:
        await self._run(
            "-dmS", name, "-L", "-Logfile", str(log_path), "bash", "-c", command,
            cwd=cwd,
        )
        # screen buffers its log for 10s by default; flush every second instead
        try:
            await self._run("-S", name, "-X", "logfile", "flush", "1")
        except SessionHostError:
            log.warning("Could not set log flush interval for session %s", name)

    async def is_alive(self, name: str) -> bool:
        code, _, _ = await self._exec("-S", name, "-Q", "select", ".")
        return code == 0

    async def send(self, name: str, text: str) -> None:
        if not await self.is_alive(name):
            raise SessionNotAliveError(f"Session '{name}' is not running")
        await self._run("-S", name, "-p", "0", "-X", "stuff", f"{text}\r")

    async def terminate(self, name: str) -> None:
        await self._run("-S", name, "-X", "quit")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _exec(self, *args: str, cwd: Path | None = None) -> tuple[int, str, str]:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.screen_bin,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd) if cwd else None,
            )
        except OSError as exc:
            raise SessionHostError(f"Could not run {self.screen_bin}: {exc}") from exc
        stdout, stderr = await proc.communicate()
        return (
            proc.returncode if proc.returncode is not None else -1,
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
        )

    async def _run(self, *args: str, cwd: Path | None = None) -> None:
        code, stdout, stderr = await self._exec(*args, cwd=cwd)
        if code != 0:
            detail = (stderr or stdout).strip()
            raise SessionHostError(
                f"Command failed ({code}): {self.screen_bin} {' '.join(args)}"
                + (f": {detail}" if detail else "")
            )
