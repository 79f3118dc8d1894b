from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from typing import Any


# ---------------------------------------------------------------------------
# Static catalog types: one GameDefinition per supported game kind
# ---------------------------------------------------------------------------

class ArchiveKind(str, enum.Enum):
    JAR = "jar"                # copied into the instance as-is
    ZIP = "zip"
    TAR_GZ = "tar.gz"
    DOWNLOADER = "downloader"  # artifact is a tool that fetches the real server


@dataclass(frozen=True)
class PostInstallFile:
    path: str
    content: str


@dataclass(frozen=True)
class InstallSource:
    url: str
    file_name: str
    kind: ArchiveKind
    # Only used by DOWNLOADER sources:
    tool: str | None = None
    acquire_args: tuple[str, ...] = ()
    acquired_archive: str | None = None


@dataclass(frozen=True)
class LaunchCommand:
    bin: str
    args: tuple[str, ...] = ()


@dataclass(frozen=True)
class PasswordSetting:
    """JSON config file (relative to the instance dir) and the key holding the password."""
    file: str
    key: str


@dataclass(frozen=True)
class GameDefinition:
    id: str
    name: str
    family: str
    port: int
    protocol: str
    source: InstallSource
    launch: LaunchCommand
    post_install_files: tuple[PostInstallFile, ...] = ()
    stop_command: str = "stop"
    chat_limit: int | None = None
    password: PasswordSetting | None = None


# ---------------------------------------------------------------------------
# Persisted runtime state
# ---------------------------------------------------------------------------

def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class InstanceState:
    session: str | None = None
    custom_params: str | None = None
    updated_at: str = field(default_factory=utcnow_iso)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InstanceState:
        return cls(
            session=data.get("session") or None,
            custom_params=data.get("custom_params") or None,
            updated_at=data.get("updated_at") or utcnow_iso(),
        )


@dataclass
class AgentConfig:
    provider: str | None = None
    api_key: str | None = None
    model: str | None = None
    base_url: str | None = None
    system_prompt: str | None = None
    agent_prompt: str | None = None
    game_prompts: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> AgentConfig:
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        prompts = values.get("game_prompts")
        values["game_prompts"] = dict(prompts) if isinstance(prompts, dict) else {}
        return cls(**values)

    def overlay(self, other: AgentConfig) -> AgentConfig:
        """Return a copy where every field set on ``other`` wins.

        ``None`` keeps the current value; an empty string clears it.  Game
        prompts merge per key, and an empty prompt removes that key.
        """
        merged = self.to_dict()
        for key, value in other.to_dict().items():
            if key == "game_prompts":
                prompts = {**merged[key], **value}
                merged[key] = {k: v for k, v in prompts.items() if v}
            elif value is not None:
                merged[key] = value or None
        return AgentConfig.from_dict(merged)

    def redacted(self) -> dict[str, Any]:
        data = self.to_dict()
        if data["api_key"]:
            data["api_key"] = "***"
        return data


# ---------------------------------------------------------------------------
# Agent types
# ---------------------------------------------------------------------------

class Persona(str, enum.Enum):
    GOD = "god"      # theatrical, sees the recent conversation
    AGENT = "agent"  # plain assistant, context-free

    @property
    def speaker(self) -> str:
        return self.value.capitalize()


@dataclass(frozen=True)
class ChatLine:
    player: str
    message: str
