"""Run the game-server supervisor as a persistent MCP daemon over HTTP.

Usage:
    python -m gamekeeper [--port PORT] [--base-dir DIR]

Game servers run in detached screen sessions, so they survive restarts of
this daemon; on startup it re-adopts every session recorded in the state
file that is still alive.
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import signal

import uvicorn

from gamekeeper.agent import ConversationalAgent
from gamekeeper.broadcast import Broadcaster
from gamekeeper.catalog import GAMES
from gamekeeper.config import Config
from gamekeeper.errors import ConfigurationError

from .installer import Installer
from .lifecycle import LifecycleManager
from .log_stream import LogStreamMultiplexer
from .server import apply_agent_config, create_server
from .sessions import ScreenSessionHost
from .state_store import StateStore

log = logging.getLogger(__name__)


def build(config: Config) -> tuple[LifecycleManager, ConversationalAgent, Broadcaster]:
    """Wire the supervisor's components together."""
    broadcaster = Broadcaster()
    streams = LogStreamMultiplexer()
    lifecycle = LifecycleManager(
        instances_dir=config.instances_dir,
        store=StateStore(config.state_file),
        sessions=ScreenSessionHost(),
        streams=streams,
        installer=Installer(config.downloads_dir, publish=broadcaster.publish),
        games=GAMES,
        publish=broadcaster.publish,
    )
    agent = ConversationalAgent(
        chat_sender=lifecycle.send_chat,
        games=GAMES,
        publish=broadcaster.publish,
    )
    lifecycle.agent = agent

    # Observers see each line before the agent reacts to it
    streams.subscribe(broadcaster.on_console_line)
    streams.subscribe(agent.process_line)
    return lifecycle, agent, broadcaster


async def _run(config: Config) -> None:
    config.ensure_dirs()
    lifecycle, agent, broadcaster = build(config)

    try:
        await apply_agent_config(lifecycle, agent, config)
    except ConfigurationError as exc:
        log.error("Agent disabled: %s", exc)

    await lifecycle.reconcile()

    server = create_server(lifecycle, agent, broadcaster, config=config, port=config.port)
    app = server.streamable_http_app()
    uvi = uvicorn.Server(
        uvicorn.Config(app, host="127.0.0.1", port=config.port, log_level="info")
    )

    # Use _serve() instead of serve() to bypass uvicorn's
    # capture_signals() context manager, which would replace the
    # loop's signal handlers below.
    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)

    serve_task = asyncio.create_task(uvi._serve())

    await shutdown.wait()
    log.info("Signal received: shutting down")

    uvi.should_exit = True
    await serve_task
    # Game sessions keep running; only our tails and timers go away
    await lifecycle.shutdown()


def main() -> None:
    config = Config.from_env()

    parser = argparse.ArgumentParser(description="Game server supervisor daemon")
    parser.add_argument(
        "--port", type=int, default=config.port,
        help=f"Port to listen on (default: {config.port})",
    )
    parser.add_argument(
        "--base-dir", default=config.base_dir,
        help=f"Directory holding instances, downloads and state (default: {config.base_dir})",
    )
    args = parser.parse_args()
    config = dataclasses.replace(config, port=args.port, base_dir=args.base_dir)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [gamekeeper] %(levelname)s %(message)s",
    )

    log.info("Starting gamekeeper on http://127.0.0.1:%d/mcp", config.port)
    asyncio.run(_run(config))


if __name__ == "__main__":
    main()
