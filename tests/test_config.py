"""Tests for environment configuration and the game catalog."""

from __future__ import annotations

from pathlib import Path

import pytest

from gamekeeper.catalog import GAMES, get_game, normalize_game_id
from gamekeeper.config import DEFAULT_PORT, Config
from gamekeeper.errors import ConfigurationError, UnknownGameError


def test_from_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("GAMEKEEPER_BASE_DIR", str(tmp_path))
    monkeypatch.setenv("GAMEKEEPER_PORT", "9100")
    monkeypatch.setenv("AI_PROVIDER", "gemini")
    monkeypatch.setenv("AI_API_KEY", "g-key")
    monkeypatch.setenv("AI_MODEL", "")
    monkeypatch.delenv("AI_BASE_URL", raising=False)

    config = Config.from_env(tmp_path / "missing.env")

    assert config.port == 9100
    assert config.state_file == tmp_path / ".gamekeeper-state.json"
    assert config.instances_dir == tmp_path / "instances"
    env = config.env_agent_config()
    assert env.provider == "gemini"
    assert env.api_key == "g-key"
    assert env.model is None
    assert env.base_url is None


def test_ensure_dirs(tmp_path: Path) -> None:
    config = Config(base_dir=str(tmp_path / "games"))
    config.ensure_dirs()
    assert config.instances_dir.is_dir()
    assert config.downloads_dir.is_dir()
    assert Config().port == DEFAULT_PORT


def test_catalog_lookup() -> None:
    assert get_game("hytale") is GAMES["hytale"]
    assert normalize_game_id("  Minecraft_Java ") == "minecraft_java"


def test_unknown_game_lists_choices() -> None:
    with pytest.raises(UnknownGameError) as info:
        get_game("doom")
    assert isinstance(info.value, ConfigurationError)
    message = str(info.value)
    assert "doom" in message
    assert "minecraft_java" in message
