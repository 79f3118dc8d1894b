"""Durable key/value document holding per-instance runtime facts."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

from gamekeeper.errors import GamekeeperError
from gamekeeper.models import AgentConfig, InstanceState

# Reserved top-level key for the agent's configuration; never a game id.
AGENT_KEY = "_agent"


class StateStore:
    """Whole-document JSON store.

    ``read`` treats a missing or blank file as ``{}``.  ``write`` replaces
    the document atomically (temp file + rename); callers do
    read-modify-write per key.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    async def read(self) -> dict[str, Any]:
        return await asyncio.to_thread(self._read_sync)

    async def write(self, document: dict[str, Any]) -> None:
        await asyncio.to_thread(self._write_sync, document)

    def _read_sync(self) -> dict[str, Any]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        if not raw.strip():
            return {}
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise GamekeeperError(f"State file {self.path} is corrupt: {exc}") from exc
        if not isinstance(payload, dict):
            raise GamekeeperError(f"State file {self.path} does not hold a JSON object")
        return payload

    def _write_sync(self, document: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.path.with_suffix(f"{self.path.suffix}.tmp")
        temp_path.write_text(json.dumps(document, indent=2), encoding="utf-8")
        temp_path.replace(self.path)


# ---------------------------------------------------------------------------
# Document helpers
# ---------------------------------------------------------------------------

def instance_state(document: dict[str, Any], game_id: str) -> InstanceState | None:
    entry = document.get(game_id)
    if not isinstance(entry, dict):
        return None
    return InstanceState.from_dict(entry)


def put_instance_state(
    document: dict[str, Any],
    game_id: str,
    state: InstanceState | None,
) -> None:
    """Store ``state`` under ``game_id``; ``None`` removes the entry."""
    if state is None:
        document.pop(game_id, None)
    else:
        document[game_id] = state.to_dict()


def agent_config(document: dict[str, Any]) -> AgentConfig:
    entry = document.get(AGENT_KEY)
    return AgentConfig.from_dict(entry if isinstance(entry, dict) else None)


def put_agent_config(document: dict[str, Any], config: AgentConfig) -> None:
    document[AGENT_KEY] = config.to_dict()
