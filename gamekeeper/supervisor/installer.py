"""Installer: fetches a game's distribution and lays it out in its instance dir."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import stat
from collections.abc import Callable
from pathlib import Path

import httpx

from gamekeeper.errors import DownloadError, ExternalProcessError, UnsupportedArchiveError
from gamekeeper.models import ArchiveKind, GameDefinition

log = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT = httpx.Timeout(30.0, read=300.0)
CHUNK_SIZE = 1 << 16


def _default_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(follow_redirects=True, timeout=DOWNLOAD_TIMEOUT)


class Installer:
    def __init__(
        self,
        downloads_dir: str | Path,
        *,
        client_factory: Callable[[], httpx.AsyncClient] | None = None,
        publish: Callable[[str], None] | None = None,
    ) -> None:
        self.downloads_dir = Path(downloads_dir)
        self._client_factory = client_factory or _default_client
        self._publish = publish or (lambda line: None)

    async def install(self, game: GameDefinition, instance_dir: Path) -> None:
        """Download, unpack, acquire (if needed) and write post-install files.

        The caller owns ``instance_dir`` and removes it if this raises.
        """
        source = game.source
        archive = self.downloads_dir / source.file_name
        self._publish(f"[{game.id}] Downloading {source.url}")
        await self.download(source.url, archive)

        if source.kind == ArchiveKind.DOWNLOADER:
            await self.acquire(game, archive, instance_dir)
        else:
            await self.unpack(source.kind, archive, instance_dir, source.file_name)

        self.write_post_install_files(game, instance_dir)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def download(self, url: str, target: Path) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            async with self._client_factory() as client:
                async with client.stream("GET", url) as response:
                    if response.status_code != 200:
                        raise DownloadError(
                            f"Download failed ({response.status_code}) for {url}"
                        )
                    with open(target, "wb") as fh:
                        async for chunk in response.aiter_bytes(CHUNK_SIZE):
                            fh.write(chunk)
        except httpx.HTTPError as exc:
            raise DownloadError(f"Download failed for {url}: {exc}") from exc
        log.info("Downloaded %s -> %s", url, target)

    async def unpack(
        self,
        kind: ArchiveKind,
        archive: Path,
        instance_dir: Path,
        file_name: str,
    ) -> None:
        if kind == ArchiveKind.JAR:
            await asyncio.to_thread(shutil.copyfile, archive, instance_dir / file_name)
        elif kind == ArchiveKind.ZIP:
            await run_command("unzip", "-o", str(archive), "-d", str(instance_dir))
        elif kind == ArchiveKind.TAR_GZ:
            await run_command("tar", "-xzf", str(archive), "-C", str(instance_dir))
        else:
            raise UnsupportedArchiveError(f"Unsupported archive format: {archive.name}")

    async def acquire(self, game: GameDefinition, tool_archive: Path, instance_dir: Path) -> None:
        """Run a multi-step acquisition tool that fetches the real server build.

        The tool may ask the operator to authorize the download; its output
        goes to the broadcast channel so the prompt reaches them.
        """
        source = game.source
        if not source.tool or not source.acquired_archive:
            raise UnsupportedArchiveError(
                f"{game.name} has no acquisition tool configured"
            )

        await run_command("unzip", "-o", str(tool_archive), "-d", str(instance_dir))
        tool = instance_dir / source.tool
        if not tool.exists():
            raise ExternalProcessError(f"Acquisition tool {source.tool} missing from {tool_archive.name}")
        tool.chmod(tool.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP)

        self._publish(f"[{game.id}] Running {source.tool}")
        await run_command(
            str(tool), *source.acquire_args,
            cwd=instance_dir,
            on_line=lambda line: self._publish(f"[{game.id}] {line}"),
        )

        acquired = instance_dir / source.acquired_archive
        if not acquired.exists():
            raise ExternalProcessError(
                f"{source.tool} finished without producing {source.acquired_archive}"
            )
        await run_command("unzip", "-o", str(acquired), "-d", str(instance_dir))
        os.remove(acquired)

    @staticmethod
    def write_post_install_files(game: GameDefinition, instance_dir: Path) -> None:
        for post_file in game.post_install_files:
            target = instance_dir / post_file.path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(post_file.content, encoding="utf-8")


async def run_command(
    *cmd: str,
    cwd: Path | None = None,
    on_line: Callable[[str], None] | None = None,
) -> None:
    """Run an external command to completion, streaming its output to ``on_line``."""
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            cwd=str(cwd) if cwd else None,
        )
    except OSError as exc:
        raise ExternalProcessError(f"Could not run {cmd[0]}: {exc}") from exc

    async for raw_line in proc.stdout:  # type: ignore[union-attr]
        line = raw_line.decode("utf-8", errors="replace").strip()
        if line and on_line is not None:
            on_line(line)

    code = await proc.wait()
    if code != 0:
        raise ExternalProcessError(f"Command failed ({code}): {' '.join(cmd)}")
