from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .models import AgentConfig

DEFAULT_BASE_DIR = "/home/games"
DEFAULT_PORT = 8911
STATE_FILE_NAME = ".gamekeeper-state.json"


@dataclass(frozen=True)
class Config:
    base_dir: str = DEFAULT_BASE_DIR
    port: int = DEFAULT_PORT
    ai_provider: str | None = None
    ai_api_key: str | None = None
    ai_model: str | None = None
    ai_base_url: str | None = None

    @property
    def instances_dir(self) -> Path:
        return Path(self.base_dir) / "instances"

    @property
    def downloads_dir(self) -> Path:
        return Path(self.base_dir) / "downloads"

    @property
    def state_file(self) -> Path:
        return Path(self.base_dir) / STATE_FILE_NAME

    def ensure_dirs(self) -> None:
        self.instances_dir.mkdir(parents=True, exist_ok=True)
        self.downloads_dir.mkdir(parents=True, exist_ok=True)

    def env_agent_config(self) -> AgentConfig:
        """AI credentials taken from the environment.

        Overlaid on the persisted agent config, so any value set here wins
        field by field.
        """
        return AgentConfig(
            provider=self.ai_provider,
            api_key=self.ai_api_key,
            model=self.ai_model,
            base_url=self.ai_base_url,
        )

    @classmethod
    def from_env(cls, env_path: str | Path | None = None) -> Config:
        load_dotenv(env_path)

        return cls(
            base_dir=os.getenv("GAMEKEEPER_BASE_DIR", DEFAULT_BASE_DIR),
            port=int(os.getenv("GAMEKEEPER_PORT", str(DEFAULT_PORT))),
            ai_provider=os.getenv("AI_PROVIDER") or None,
            ai_api_key=os.getenv("AI_API_KEY") or None,
            ai_model=os.getenv("AI_MODEL") or None,
            ai_base_url=os.getenv("AI_BASE_URL") or None,
        )
