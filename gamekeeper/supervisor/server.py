"""MCP server exposing game-server management tools over HTTP."""

from __future__ import annotations

import logging
from collections.abc import Awaitable
from typing import Any

from mcp.server.fastmcp import FastMCP

from gamekeeper.agent import ConversationalAgent
from gamekeeper.broadcast import Broadcaster
from gamekeeper.catalog import normalize_game_id
from gamekeeper.config import DEFAULT_PORT, Config
from gamekeeper.errors import GamekeeperError
from gamekeeper.models import AgentConfig

from .lifecycle import LifecycleManager
from .state_store import agent_config, put_agent_config

log = logging.getLogger(__name__)


async def _envelope(action: str, op: Awaitable[dict[str, Any]]) -> dict[str, Any]:
    """Await a lifecycle call and turn failures into ``{"ok": False, "error": ...}``."""
    try:
        return await op
    except GamekeeperError as exc:
        return {"ok": False, "error": str(exc)}
    except Exception as exc:
        log.exception("%s failed", action)
        return {"ok": False, "error": str(exc)}


async def apply_agent_config(
    lifecycle: LifecycleManager,
    agent: ConversationalAgent,
    config: Config,
    update: AgentConfig | None = None,
) -> AgentConfig:
    """Persist ``update`` over the stored agent config, then apply it with env overrides.

    Returns the effective config.  Raises ConfigurationError if the
    effective provider cannot be built; the persisted document is still
    updated in that case.
    """
    doc = await lifecycle.store.read()
    stored = agent_config(doc)
    if update is not None:
        stored = stored.overlay(update)
        put_agent_config(doc, stored)
        await lifecycle.store.write(doc)
    effective = stored.overlay(config.env_agent_config())
    agent.configure(effective)
    return effective


def create_server(
    lifecycle: LifecycleManager,
    agent: ConversationalAgent,
    broadcaster: Broadcaster,
    config: Config | None = None,
    port: int = DEFAULT_PORT,
) -> FastMCP:
    """Create and configure the MCP game-server manager."""

    cfg = config or Config(port=port)

    mcp = FastMCP(
        name="gamekeeper",
        instructions=(
            "Manages dedicated game servers (install, start, stop, restart, delete). "
            "Use list_games for status, get_console to read recent server output and "
            "agent activity, and send_command / send_chat to talk to a running server."
        ),
        host="127.0.0.1",
        port=port,
        stateless_http=True,
    )

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------
    @mcp.tool()
    async def list_games() -> dict:
        """List every supported game with install/run status, port and launch params."""
        return await _envelope("list_games", _status(lifecycle))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @mcp.tool()
    async def install_game(game_id: str) -> dict:
        """Download and install a game server, then start it.

        Fails if the instance already exists; a failed install leaves nothing
        behind.  Games that need an authorization step print the prompt to the
        console channel (see get_console).
        """
        return await _envelope("install", lifecycle.install(normalize_game_id(game_id)))

    @mcp.tool()
    async def start_game(game_id: str) -> dict:
        """Start an installed game server. Succeeds without effect if already running."""
        return await _envelope("start", lifecycle.start(normalize_game_id(game_id)))

    @mcp.tool()
    async def stop_game(game_id: str) -> dict:
        """Stop a game server gracefully, forcing termination if it does not exit."""
        return await _envelope("stop", lifecycle.stop(normalize_game_id(game_id)))

    @mcp.tool()
    async def restart_game(game_id: str) -> dict:
        """Stop and start a game server."""
        return await _envelope("restart", lifecycle.restart(normalize_game_id(game_id)))

    @mcp.tool()
    async def delete_game(game_id: str) -> dict:
        """Stop a game server and delete its instance directory and state."""
        return await _envelope("delete", lifecycle.delete(normalize_game_id(game_id)))

    @mcp.tool()
    async def set_launch_params(game_id: str, params: str = "") -> dict:
        """Replace the default memory flags (e.g. "-Xms2G -Xmx4G") on next start.

        An empty string restores the defaults.
        """
        return await _envelope(
            "set_params", lifecycle.set_params(normalize_game_id(game_id), params)
        )

    @mcp.tool()
    async def set_password(game_id: str, password: str) -> dict:
        """Set the server join password (only for games that support one)."""
        return await _envelope(
            "set_password", lifecycle.set_password(normalize_game_id(game_id), password)
        )

    # ------------------------------------------------------------------
    # Console
    # ------------------------------------------------------------------
    @mcp.tool()
    async def send_command(game_id: str, command: str) -> dict:
        """Type a raw console command into a running server (e.g. "list")."""
        return await _envelope(
            "send_command", lifecycle.send_command(normalize_game_id(game_id), command)
        )

    @mcp.tool()
    async def send_chat(game_id: str, message: str, speaker: str = "Server") -> dict:
        """Broadcast a chat message to everyone on a running server."""
        return await _envelope(
            "send_chat", lifecycle.send_chat(normalize_game_id(game_id), message, speaker)
        )

    @mcp.tool()
    async def get_console(tail: int = 100) -> dict:
        """Recent console lines and supervisor/agent milestones, oldest first.

        Args:
            tail: Number of lines to return (max ~2000, the history size).
        """
        return {"ok": True, "seq": broadcaster.seq, "lines": broadcaster.tail(tail)}

    # ------------------------------------------------------------------
    # Agent
    # ------------------------------------------------------------------
    @mcp.tool()
    async def get_agent_config() -> dict:
        """Show the persisted agent configuration (API key redacted) and its state."""
        doc = await lifecycle.store.read()
        return {
            "ok": True,
            "config": agent_config(doc).redacted(),
            "enabled": agent.enabled,
            "watching": agent.watched(),
        }

    @mcp.tool()
    async def configure_agent(
        provider: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        system_prompt: str | None = None,
        agent_prompt: str | None = None,
        game_prompts: dict[str, str] | None = None,
    ) -> dict:
        """Update and persist the chat agent configuration.

        Omitted fields keep their stored value.  Provider is one of openai,
        gemini, ollama, claude or claude_code.  AI_* environment variables
        always override stored credentials.  ``game_prompts`` maps a game
        family (e.g. "minecraft", "hytale") to a God prompt override.
        """
        update = AgentConfig(
            provider=provider,
            api_key=api_key,
            model=model,
            base_url=base_url,
            system_prompt=system_prompt,
            agent_prompt=agent_prompt,
            game_prompts=game_prompts or {},
        )

        async def _apply() -> dict[str, Any]:
            effective = await apply_agent_config(lifecycle, agent, cfg, update)
            return {
                "ok": True,
                "message": "Agent configured." if agent.enabled else "Agent disabled.",
                "provider": effective.provider,
            }

        return await _envelope("configure_agent", _apply())

    return mcp


async def _status(lifecycle: LifecycleManager) -> dict[str, Any]:
    return {"ok": True, "data": await lifecycle.status()}
