"""Static catalog of supported game kinds."""

from __future__ import annotations

from .errors import UnknownGameError
from .models import (
    ArchiveKind,
    GameDefinition,
    InstallSource,
    LaunchCommand,
    PasswordSetting,
    PostInstallFile,
)

DEFAULT_CHAT_LIMIT = 200

GAMES: dict[str, GameDefinition] = {
    "minecraft_java": GameDefinition(
        id="minecraft_java",
        name="Minecraft Java Edition",
        family="minecraft",
        port=25565,
        protocol="tcp",
        source=InstallSource(
            url="https://piston-data.mojang.com/v1/objects/4707d00eb834b446575d89a61a11b5d548d8c001/server.jar",
            file_name="server.jar",
            kind=ArchiveKind.JAR,
        ),
        launch=LaunchCommand("java", ("-Xms1G", "-Xmx1G", "-jar", "server.jar", "nogui")),
        post_install_files=(PostInstallFile("eula.txt", "eula=true\n"),),
        chat_limit=100,
    ),
    "minecraft_bedrock": GameDefinition(
        id="minecraft_bedrock",
        name="Minecraft Bedrock Edition",
        family="minecraft",
        port=19132,
        protocol="udp",
        source=InstallSource(
            url="https://www.minecraft.net/bedrockdedicatedserver/bin-linux/bedrock-server-1.21.60.10.zip",
            file_name="bedrock-server.zip",
            kind=ArchiveKind.ZIP,
        ),
        launch=LaunchCommand("./bedrock_server"),
        chat_limit=100,
    ),
    "hytale": GameDefinition(
        id="hytale",
        name="Hytale",
        family="hytale",
        port=5520,
        protocol="udp",
        # The downloader asks the operator to authorize a device code before
        # it fetches the server build.
        source=InstallSource(
            url="https://downloader.hytale.com/hytale-downloader.zip",
            file_name="hytale-downloader.zip",
            kind=ArchiveKind.DOWNLOADER,
            tool="hytale-downloader-linux-amd64",
            acquire_args=("-download-path", "hytale-server.zip"),
            acquired_archive="hytale-server.zip",
        ),
        launch=LaunchCommand(
            "java",
            ("-Xms4G", "-Xmx4G", "-jar", "Server/HytaleServer.jar", "--assets", "Assets.zip"),
        ),
        chat_limit=200,
        password=PasswordSetting(file="config.json", key="Password"),
    ),
}


def get_game(game_id: str, games: dict[str, GameDefinition] | None = None) -> GameDefinition:
    catalog = GAMES if games is None else games
    try:
        return catalog[game_id]
    except KeyError:
        raise UnknownGameError(game_id, sorted(catalog)) from None


def normalize_game_id(raw: str) -> str:
    return raw.strip().lower()
