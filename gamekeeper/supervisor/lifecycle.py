"""Lifecycle manager: install, start, stop, restart and delete game instances.

The state store is the only persisted source of truth: a session handle is
recorded only after the session was verified alive, and cleared whenever a
stop completes or a stale handle is found.  Every operation on one instance
runs under that instance's lock, so two concurrent ``start`` calls cannot
both launch a server.
"""

from __future__ import annotations

import asyncio
import json
import logging
import shlex
import shutil
from collections import defaultdict
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

from gamekeeper.catalog import GAMES, get_game
from gamekeeper.errors import (
    AlreadyInstalledError,
    GamekeeperError,
    NotInstalledError,
    SessionNotAliveError,
    UnsupportedOperationError,
    VerificationError,
)
from gamekeeper.formatter import formatter_for
from gamekeeper.models import GameDefinition, InstanceState, utcnow_iso

from .installer import Installer
from .log_stream import LogStreamMultiplexer
from .sessions import SessionHost, session_name
from .state_store import StateStore, instance_state, put_instance_state

if TYPE_CHECKING:
    from gamekeeper.agent import ConversationalAgent

log = logging.getLogger(__name__)

CONSOLE_LOG = "console.log"
MEMORY_FLAG_PREFIXES = ("-Xms", "-Xmx")


def compose_launch_command(game: GameDefinition, custom_params: str | None) -> str:
    """Shell command line for ``game``.

    Custom params take the place of the default -Xms/-Xmx flags; templates
    without such flags get them appended.
    """
    args = list(game.launch.args)
    if custom_params and custom_params.strip():
        extra = shlex.split(custom_params)
        kept: list[str] = []
        insert_at: int | None = None
        for arg in args:
            if arg.startswith(MEMORY_FLAG_PREFIXES):
                if insert_at is None:
                    insert_at = len(kept)
                continue
            kept.append(arg)
        if insert_at is None:
            insert_at = len(kept)
        args = kept[:insert_at] + extra + kept[insert_at:]
    return shlex.join([game.launch.bin, *args])


class LifecycleManager:
    def __init__(
        self,
        *,
        instances_dir: str | Path,
        store: StateStore,
        sessions: SessionHost,
        streams: LogStreamMultiplexer,
        installer: Installer,
        games: dict[str, GameDefinition] | None = None,
        publish: Callable[[str], None] | None = None,
        start_grace: float = 2.0,
        stop_retries: int = 10,
        stop_backoff: float = 0.5,
    ) -> None:
        self.instances_dir = Path(instances_dir)
        self.store = store
        self.sessions = sessions
        self.streams = streams
        self.installer = installer
        self.games = GAMES if games is None else games
        self.agent: ConversationalAgent | None = None
        self._publish = publish or (lambda line: None)
        self.start_grace = start_grace
        self.stop_retries = stop_retries
        self.stop_backoff = stop_backoff
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def game(self, game_id: str) -> GameDefinition:
        return get_game(game_id, self.games)

    def instance_dir(self, game_id: str) -> Path:
        return self.instances_dir / game_id.replace("_", "-")

    def log_path(self, game_id: str) -> Path:
        return self.instance_dir(game_id) / CONSOLE_LOG

    def is_installed(self, game_id: str) -> bool:
        return self.instance_dir(game_id).is_dir()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def install(self, game_id: str) -> dict[str, Any]:
        game = self.game(game_id)
        async with self._locks[game_id]:
            instance_dir = self.instance_dir(game_id)
            if instance_dir.exists():
                raise AlreadyInstalledError(
                    f"The {game.name} instance already exists. Delete it first to reinstall."
                )
            instance_dir.mkdir(parents=True)
            self._milestone(game_id, f"Installing {game.name}")
            try:
                await self.installer.install(game, instance_dir)
                session = await self._start(game)
            except BaseException:
                shutil.rmtree(instance_dir, ignore_errors=True)
                self._milestone(game_id, "Install failed; instance directory removed")
                raise
        return self._ok(game_id, f"Installed and started: {game.name}.", session=session)

    async def start(self, game_id: str) -> dict[str, Any]:
        game = self.game(game_id)
        async with self._locks[game_id]:
            doc = await self.store.read()
            state = instance_state(doc, game_id)
            if state and state.session and await self.sessions.is_alive(state.session):
                return self._ok(game_id, "Already running.", session=state.session)
            session = await self._start(game)
        return self._ok(game_id, "Server started.", session=session)

    async def stop(self, game_id: str) -> dict[str, Any]:
        game = self.game(game_id)
        async with self._locks[game_id]:
            stopped = await self._stop(game)
        return self._ok(game_id, "Server stopped." if stopped else "No active session.")

    async def restart(self, game_id: str) -> dict[str, Any]:
        game = self.game(game_id)
        async with self._locks[game_id]:
            try:
                await self._stop(game)
            except GamekeeperError as exc:
                log.warning("Stop failed during restart of %s: %s", game_id, exc)
                self._milestone(game_id, f"Stop failed during restart: {exc}")
            session = await self._start(game)
        return self._ok(game_id, "Server restarted.", session=session)

    async def delete(self, game_id: str) -> dict[str, Any]:
        game = self.game(game_id)
        async with self._locks[game_id]:
            await self._stop(game)
            await asyncio.to_thread(shutil.rmtree, self.instance_dir(game_id), True)
            doc = await self.store.read()
            put_instance_state(doc, game_id, None)
            await self.store.write(doc)
            self._milestone(game_id, "Instance deleted")
        return self._ok(game_id, "Instance deleted completely.")

    async def set_params(self, game_id: str, params: str | None) -> dict[str, Any]:
        self.game(game_id)
        cleaned = (params or "").strip() or None
        async with self._locks[game_id]:
            doc = await self.store.read()
            state = instance_state(doc, game_id) or InstanceState()
            state.custom_params = cleaned
            state.updated_at = utcnow_iso()
            put_instance_state(doc, game_id, state if (state.session or cleaned) else None)
            await self.store.write(doc)
        message = "Launch params saved; they apply on next start." if cleaned else "Launch params cleared."
        return self._ok(game_id, message, custom_params=cleaned)

    async def set_password(self, game_id: str, password: str) -> dict[str, Any]:
        game = self.game(game_id)
        if game.password is None:
            raise UnsupportedOperationError(f"{game.name} does not support a server password")
        async with self._locks[game_id]:
            if not self.is_installed(game_id):
                raise NotInstalledError(f"{game.name} is not installed")
            target = self.instance_dir(game_id) / game.password.file
            await asyncio.to_thread(_write_json_key, target, game.password.key, password)
        self._milestone(game_id, "Server password updated")
        return self._ok(game_id, "Password saved; it applies on next restart.")

    async def send_command(self, game_id: str, text: str) -> dict[str, Any]:
        game = self.game(game_id)
        handle = await self._live_session(game)
        await self.send_console_command(handle, text)
        return self._ok(game_id, "Command sent.")

    async def send_chat(self, game_id: str, message: str, speaker: str = "Server") -> dict[str, Any]:
        game = self.game(game_id)
        handle = await self._live_session(game)
        command = formatter_for(game).format_chat(speaker, message)
        await self.send_console_command(handle, command)
        return self._ok(game_id, "Chat message sent.")

    async def send_console_command(self, handle: str, text: str) -> None:
        if not await self.sessions.is_alive(handle):
            raise SessionNotAliveError(f"Session '{handle}' is not running")
        await self.sessions.send(handle, text)

    async def status(self) -> dict[str, dict[str, Any]]:
        doc = await self.store.read()
        result: dict[str, dict[str, Any]] = {}
        for game_id, game in self.games.items():
            state = instance_state(doc, game_id)
            session = state.session if state else None
            running = bool(session) and await self.sessions.is_alive(session)
            result[game_id] = {
                "name": game.name,
                "port": game.port,
                "protocol": game.protocol,
                "installed": self.is_installed(game_id),
                "running": running,
                "session": session if running else None,
                "custom_params": state.custom_params if state else None,
            }
        return result

    async def reconcile(self) -> None:
        """Rebuild in-memory watchers from the persisted state.

        Live sessions get their log stream and agent watch back; stale
        handles are cleared.
        """
        doc = await self.store.read()
        changed = False
        for game_id, game in self.games.items():
            state = instance_state(doc, game_id)
            if not state or not state.session:
                continue
            if await self.sessions.is_alive(state.session):
                await self._watch(game)
                log.info("Re-adopted running session %s", state.session)
                self._milestone(game_id, f"Re-adopted running session {state.session}")
            else:
                log.info("Clearing stale session %s for %s", state.session, game_id)
                state.session = None
                state.updated_at = utcnow_iso()
                put_instance_state(doc, game_id, state if state.custom_params else None)
                changed = True
        if changed:
            await self.store.write(doc)

    async def shutdown(self) -> None:
        """Drop watchers without touching the (detached) game sessions."""
        await self.streams.detach_all()
        if self.agent is not None:
            self.agent.shutdown()

    # ------------------------------------------------------------------
    # Internal helpers: callers hold the instance lock
    # ------------------------------------------------------------------

    async def _start(self, game: GameDefinition) -> str:
        if not self.is_installed(game.id):
            raise NotInstalledError(f"{game.name} is not installed")

        doc = await self.store.read()
        state = instance_state(doc, game.id) or InstanceState()
        handle = session_name(game.id)
        if await self.sessions.is_alive(handle):
            # Left over from a session we lost track of
            await self.sessions.terminate(handle)

        command = compose_launch_command(game, state.custom_params)
        log_path = self.log_path(game.id)
        log_path.touch(exist_ok=True)

        self._milestone(game.id, f"Starting: {command}")
        await self.sessions.open(handle, command, self.instance_dir(game.id), log_path)
        await asyncio.sleep(self.start_grace)
        if not await self.sessions.is_alive(handle):
            raise VerificationError(
                f"{game.name} did not stay running; check {log_path} for details"
            )

        try:
            await self._watch(game)
            state.session = handle
            state.updated_at = utcnow_iso()
            put_instance_state(doc, game.id, state)
            await self.store.write(doc)
        except BaseException:
            # Nothing recorded yet, so the session must not outlive this call
            await self._unwatch(game.id)
            try:
                await self.sessions.terminate(handle)
            except GamekeeperError as exc:
                log.warning("Could not terminate %s after failed start: %s", handle, exc)
            raise
        self._milestone(game.id, f"Running in session {handle}")
        return handle

    async def _stop(self, game: GameDefinition) -> bool:
        """Stop the recorded session. Returns False if nothing was running."""
        doc = await self.store.read()
        state = instance_state(doc, game.id)
        handle = state.session if state else None
        try:
            if not handle or not await self.sessions.is_alive(handle):
                return False

            self._milestone(game.id, "Stopping")
            try:
                await self.sessions.send(handle, game.stop_command)
            except GamekeeperError as exc:
                log.warning("Graceful stop of %s failed: %s", game.id, exc)

            for _ in range(self.stop_retries):
                if not await self.sessions.is_alive(handle):
                    break
                await asyncio.sleep(self.stop_backoff)

            if await self.sessions.is_alive(handle):
                log.warning("%s ignored '%s'; terminating session", game.id, game.stop_command)
                await self.sessions.terminate(handle)
            self._milestone(game.id, "Stopped")
            return True
        finally:
            await self._unwatch(game.id)
            if state is not None and state.session:
                state.session = None
                state.updated_at = utcnow_iso()
                put_instance_state(doc, game.id, state if state.custom_params else None)
                await self.store.write(doc)

    async def _live_session(self, game: GameDefinition) -> str:
        doc = await self.store.read()
        state = instance_state(doc, game.id)
        if not state or not state.session or not await self.sessions.is_alive(state.session):
            raise SessionNotAliveError(f"{game.name} is not running")
        return state.session

    async def _watch(self, game: GameDefinition) -> None:
        await self.streams.attach(game.id, self.log_path(game.id))
        if self.agent is not None:
            self.agent.activate(game.id)

    async def _unwatch(self, game_id: str) -> None:
        await self.streams.detach(game_id)
        if self.agent is not None:
            self.agent.deactivate(game_id)

    def _milestone(self, game_id: str, text: str) -> None:
        self._publish(f"[{game_id}] {text}")

    @staticmethod
    def _ok(game_id: str, message: str, **extra: Any) -> dict[str, Any]:
        return {"ok": True, "game": game_id, "message": message, **extra}


def _write_json_key(path: Path, key: str, value: Any) -> None:
    data: dict[str, Any] = {}
    if path.exists():
        raw = path.read_text(encoding="utf-8")
        if raw.strip():
            loaded = json.loads(raw)
            if isinstance(loaded, dict):
                data = loaded
    data[key] = value
    path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
