"""Game server supervisor: lifecycle, console log streams and the MCP daemon.

Exposes MCP tools to install, start, stop, restart and delete game server
instances, send console commands and chat, read recent console output, and
configure the chat agent.

Can run standalone:
    python -m gamekeeper.supervisor
"""

from gamekeeper.supervisor.lifecycle import LifecycleManager
from gamekeeper.supervisor.server import create_server

__all__ = ["LifecycleManager", "create_server"]
