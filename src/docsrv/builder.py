"""Documentation build pipeline: download → extract → run build command.

The only component doing disk and subprocess I/O. Blocking filesystem work
runs in a worker thread; the build command runs as an asyncio subprocess so
the event loop keeps serving other requests meanwhile.
"""

from __future__ import annotations

import asyncio
import os
import shutil
import tarfile
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import httpx
import structlog

from docsrv.errors import BuildError, ExtractError, FetchError

if TYPE_CHECKING:
    from docsrv.config import BuildSettings

log = structlog.get_logger()

TEMP_DIR_PREFIX = "docsrv-"
_ARCHIVE_NAME = "source.archive"
_DOWNLOAD_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class BuildConfig:
    """Everything the build command needs to produce one version's site."""

    # URL of the source archive (.tar.gz) for the version.
    source_url: str
    # Public URL the site is served from, e.g. http://docs.example.com/v1.0.0/
    base_url: str
    # Folder the built site must be written to.
    destination: str
    # Folder holding assets shared by all builds.
    shared_folder: str
    project: str
    owner: str
    version: str
    # Host the site is served on, without port.
    host_name: str = ""

    def environment(self) -> dict[str, str]:
        return {
            "BASE_URL": self.base_url,
            "DESTINATION_PATH": self.destination,
            "SHARED_PATH": self.shared_folder,
            "REPOSITORY_NAME": self.project,
            "REPOSITORY_OWNER": self.owner,
            "VERSION_NAME": self.version,
            "HOST_NAME": self.host_name,
            "DOCSRV": "true",
        }


def extract_archive(archive: Path, target: Path) -> Path:
    """Extract ``archive`` into ``target`` and return the source root.

    Source tarballs usually wrap everything in a single top-level folder; when
    that is the case the folder is the root, otherwise ``target`` is.
    """
    try:
        with tarfile.open(archive, "r:*") as tar:
            tar.extractall(target, filter="data")
    except (tarfile.TarError, OSError) as exc:
        raise ExtractError(f"Error extracting archive: {exc}") from exc

    entries = list(target.iterdir())
    if len(entries) == 1 and entries[0].is_dir():
        return entries[0]
    return target


def remove_tree(path: Path) -> None:
    """Best-effort removal. Failures are logged, never raised."""
    try:
        shutil.rmtree(path)
    except OSError as exc:
        log.warning("build_cleanup_failed", path=str(path), error=str(exc))


class DocsBuilder:
    """Builds documentation sites with the configured external command."""

    def __init__(self, client: httpx.AsyncClient, settings: BuildSettings) -> None:
        self._client = client
        self._command = list(settings.command)
        self._download_timeout = settings.download_timeout_seconds

    async def build(self, config: BuildConfig) -> None:
        """Build the site described by ``config``.

        Raises FetchError, ExtractError or BuildError. The temporary work
        directory is always removed afterwards.
        """
        build_log = log.bind(owner=config.owner, project=config.project, version=config.version)
        start = time.monotonic()
        tmp_dir = Path(await asyncio.to_thread(tempfile.mkdtemp, prefix=TEMP_DIR_PREFIX))

        try:
            archive = tmp_dir / _ARCHIVE_NAME
            await self._download(config.source_url, archive)

            extract_dir = tmp_dir / "src"
            extract_dir.mkdir()
            source_root = await asyncio.to_thread(extract_archive, archive, extract_dir)

            build_start = time.monotonic()
            output = await self._run(source_root, config)
            build_log.info(
                "build_complete",
                destination=config.destination,
                base_url=config.base_url,
                total_seconds=round(time.monotonic() - start, 3),
                build_seconds=round(time.monotonic() - build_start, 3),
            )
            build_log.debug("build_output", output=output)
        finally:
            await asyncio.to_thread(remove_tree, tmp_dir)

    async def _download(self, url: str, dest: Path) -> None:
        try:
            async with self._client.stream("GET", url, timeout=self._download_timeout) as response:
                if not response.is_success:
                    raise FetchError(
                        f"HTTP {response.status_code} downloading {url}",
                        recoverable=response.status_code >= 500,
                    )
                with dest.open("wb") as fh:
                    async for chunk in response.aiter_bytes(_DOWNLOAD_CHUNK_SIZE):
                        fh.write(chunk)
        except FetchError:
            raise
        except httpx.HTTPError as exc:
            raise FetchError(f"Network error downloading {url}: {exc}") from exc

    async def _run(self, cwd: Path, config: BuildConfig) -> str:
        env = {**os.environ, **config.environment()}
        command = " ".join(self._command)
        try:
            proc = await asyncio.create_subprocess_exec(
                *self._command,
                cwd=str(cwd),
                env=env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as exc:
            raise BuildError(f"Unable to run `{command}`: {exc}") from exc

        stdout, _ = await proc.communicate()
        output = stdout.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            raise BuildError(
                f"`{command}` exited with status {proc.returncode} in {cwd}",
                output=output,
                returncode=proc.returncode,
            )
        return output
