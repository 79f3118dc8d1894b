"""Shared fakes and fixtures for gamekeeper tests.

External facilities (screen, tail, HTTP, AI providers) are replaced with
in-memory stand-ins so lifecycle and agent behaviour can be asserted
without launching real servers.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path

import httpx
import pytest

from gamekeeper.backend import AIBackend
from gamekeeper.errors import (
    AIBackendError,
    ExternalProcessError,
    SessionHostError,
    SessionNotAliveError,
)
from gamekeeper.models import (
    ArchiveKind,
    GameDefinition,
    InstallSource,
    LaunchCommand,
    PasswordSetting,
    PostInstallFile,
)
from gamekeeper.supervisor.installer import Installer
from gamekeeper.supervisor.lifecycle import LifecycleManager
from gamekeeper.supervisor.log_stream import LogStreamMultiplexer
from gamekeeper.supervisor.sessions import SessionHost
from gamekeeper.supervisor.state_store import StateStore

ALPHA_URL = "https://downloads.example.test/alpha/server.jar"
ALPHA_CDN_URL = "https://cdn.example.test/alpha/server-1.0.jar"


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

def make_games() -> dict[str, GameDefinition]:
    return {
        "alpha": GameDefinition(
            id="alpha",
            name="Alpha Craft",
            family="alpha",
            port=25565,
            protocol="tcp",
            source=InstallSource(url=ALPHA_URL, file_name="server.jar", kind=ArchiveKind.JAR),
            launch=LaunchCommand("java", ("-Xms1G", "-Xmx1G", "-jar", "server.jar", "nogui")),
            post_install_files=(PostInstallFile("eula.txt", "eula=true\n"),),
            chat_limit=40,
            password=PasswordSetting(file="config.json", key="Password"),
        ),
        "beta": GameDefinition(
            id="beta",
            name="Beta World",
            family="beta",
            port=19132,
            protocol="udp",
            source=InstallSource(
                url="https://downloads.example.test/beta/beta.rar",
                file_name="beta.rar",
                kind=ArchiveKind.ZIP,
            ),
            launch=LaunchCommand("./beta_server"),
        ),
    }


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeSessionHost(SessionHost):
    def __init__(self, *, dies_on_start: bool = False, ignores_stop: bool = False) -> None:
        self.alive: set[str] = set()
        self.opened: list[tuple[str, str]] = []
        self.sent: list[tuple[str, str]] = []
        self.terminated: list[str] = []
        self.dies_on_start = dies_on_start
        self.ignores_stop = ignores_stop
        self.fail_terminate = 0  # number of terminate calls that should fail

    async def open(self, name: str, command: str, cwd: Path, log_path: Path) -> None:
        self.opened.append((name, command))
        if not self.dies_on_start:
            self.alive.add(name)

    async def is_alive(self, name: str) -> bool:
        return name in self.alive

    async def send(self, name: str, text: str) -> None:
        if name not in self.alive:
            raise SessionNotAliveError(f"Session '{name}' is not running")
        self.sent.append((name, text))
        if text == "stop" and not self.ignores_stop:
            self.alive.discard(name)

    async def terminate(self, name: str) -> None:
        if self.fail_terminate > 0:
            self.fail_terminate -= 1
            raise SessionHostError(f"Command failed (1): screen -S {name} -X quit")
        self.terminated.append(name)
        self.alive.discard(name)


class FakeLogStreams(LogStreamMultiplexer):
    """Records attach/detach instead of spawning ``tail``."""

    def __init__(self) -> None:
        super().__init__()
        self.paths: dict[str, Path] = {}
        self.history: list[tuple[str, str]] = []
        self.fail_attach = False

    def attached(self, game_id: str) -> bool:
        return game_id in self.paths

    async def attach(self, game_id: str, path: str | Path) -> None:
        if game_id in self.paths:
            return
        if self.fail_attach:
            raise ExternalProcessError("Could not run tail: No such file or directory")
        self.paths[game_id] = Path(path)
        self.history.append(("attach", game_id))

    async def detach(self, game_id: str) -> None:
        if self.paths.pop(game_id, None) is not None:
            self.history.append(("detach", game_id))

    async def detach_all(self) -> None:
        for game_id in list(self.paths):
            await self.detach(game_id)


class FakeBackend(AIBackend):
    backend_id = "fake"
    display_name = "Fake"

    def __init__(self, reply: str = "Mortal, your base is gone", *, error: str | None = None) -> None:
        self.reply = reply
        self.error = error
        self.calls: list[dict] = []
        self.gate: asyncio.Event | None = None

    async def chat(self, prompt: str, *, max_tokens: int = 1024, temperature: float = 0.7) -> str:
        self.calls.append({"prompt": prompt, "max_tokens": max_tokens, "temperature": temperature})
        if self.gate is not None:
            await self.gate.wait()
        if self.error:
            raise AIBackendError(self.error)
        return self.reply


class ChatRecorder:
    """Stands in for LifecycleManager.send_chat."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    async def __call__(self, game_id: str, text: str, speaker: str) -> dict:
        self.sent.append((game_id, text, speaker))
        return {"ok": True}


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def download_handler(*, fail: bool = False) -> Callable[[httpx.Request], httpx.Response]:
    """Mock download server; the first URL redirects to a CDN."""

    def handler(request: httpx.Request) -> httpx.Response:
        if fail:
            return httpx.Response(404, text="not found")
        if str(request.url) == ALPHA_URL:
            return httpx.Response(302, headers={"Location": ALPHA_CDN_URL})
        if str(request.url) == ALPHA_CDN_URL:
            return httpx.Response(200, content=b"PK-fake-server-jar")
        return httpx.Response(404)

    return handler


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def games() -> dict[str, GameDefinition]:
    return make_games()


@pytest.fixture
def sessions() -> FakeSessionHost:
    return FakeSessionHost()


@pytest.fixture
def streams() -> FakeLogStreams:
    return FakeLogStreams()


@pytest.fixture
def store(tmp_path: Path) -> StateStore:
    return StateStore(tmp_path / "state.json")


@pytest.fixture
def make_lifecycle(tmp_path: Path, games, sessions, streams, store):
    """Factory so a test can pick the download behaviour."""

    def _make(*, fail_download: bool = False, published: list[str] | None = None) -> LifecycleManager:
        handler = download_handler(fail=fail_download)
        installer = Installer(
            tmp_path / "downloads",
            client_factory=lambda: httpx.AsyncClient(
                transport=httpx.MockTransport(handler), follow_redirects=True
            ),
            publish=published.append if published is not None else None,
        )
        return LifecycleManager(
            instances_dir=tmp_path / "instances",
            store=store,
            sessions=sessions,
            streams=streams,
            installer=installer,
            games=games,
            publish=published.append if published is not None else None,
            start_grace=0,
            stop_retries=3,
            stop_backoff=0,
        )

    return _make


@pytest.fixture
def lifecycle(make_lifecycle) -> LifecycleManager:
    return make_lifecycle()
