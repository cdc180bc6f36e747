"""Unit tests for docsrv.builder.

Archives are built in memory and served through respx. The build command is
a small Python script shipped inside the archive, run with the current
interpreter so no external build tool is required.
"""

from __future__ import annotations

import io
import json
import sys
import tarfile
import tempfile
from typing import TYPE_CHECKING

import httpx
import pytest
import respx

from docsrv.builder import BuildConfig, DocsBuilder, extract_archive
from docsrv.config import BuildSettings
from docsrv.errors import BuildError, ExtractError, FetchError

if TYPE_CHECKING:
    from pathlib import Path

ARCHIVE_URL = "https://codeload.example.com/acme/widget/tar.gz/v1.2.3"

BUILD_SCRIPT = """\
import json, os, pathlib
keys = ["BASE_URL", "DESTINATION_PATH", "SHARED_PATH", "REPOSITORY_NAME",
        "REPOSITORY_OWNER", "VERSION_NAME", "HOST_NAME", "DOCSRV"]
out = pathlib.Path(os.environ["DESTINATION_PATH"]) / "out.json"
out.write_text(json.dumps({k: os.environ.get(k) for k in keys}))
print("built", os.getcwd())
"""

FAILING_SCRIPT = """\
import sys
print("compiling docs")
print("fatal: no docs folder", file=sys.stderr)
sys.exit(3)
"""


def _tarball(files: dict[str, str], root: str | None = "acme-widget-abc123") -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        for name, content in files.items():
            data = content.encode()
            info = tarfile.TarInfo(f"{root}/{name}" if root else name)
            info.size = len(data)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def _config(destination: Path) -> BuildConfig:
    return BuildConfig(
        source_url=ARCHIVE_URL,
        base_url="http://widget.example.com/v1.2.3/",
        destination=str(destination),
        shared_folder="/etc/shared",
        project="widget",
        owner="acme",
        version="v1.2.3",
        host_name="widget.example.com",
    )


@pytest.fixture()
def isolated_tmp(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Redirect tempfile to a private folder so leftovers can be asserted."""
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(scratch))
    return scratch


def _builder(client: httpx.AsyncClient) -> DocsBuilder:
    return DocsBuilder(client, BuildSettings(command=[sys.executable, "build.py"]))


class TestBuildConfig:
    def test_environment(self, tmp_path: Path) -> None:
        env = _config(tmp_path).environment()
        assert env == {
            "BASE_URL": "http://widget.example.com/v1.2.3/",
            "DESTINATION_PATH": str(tmp_path),
            "SHARED_PATH": "/etc/shared",
            "REPOSITORY_NAME": "widget",
            "REPOSITORY_OWNER": "acme",
            "VERSION_NAME": "v1.2.3",
            "HOST_NAME": "widget.example.com",
            "DOCSRV": "true",
        }


class TestExtractArchive:
    def test_single_top_level_folder_is_root(self, tmp_path: Path) -> None:
        archive = tmp_path / "a.tar.gz"
        archive.write_bytes(_tarball({"Makefile": "docs:\n"}))
        target = tmp_path / "out"
        target.mkdir()

        root = extract_archive(archive, target)

        assert root == target / "acme-widget-abc123"
        assert (root / "Makefile").is_file()

    def test_flat_archive_root_is_target(self, tmp_path: Path) -> None:
        archive = tmp_path / "a.tar.gz"
        archive.write_bytes(_tarball({"Makefile": "docs:\n", "README": "hi"}, root=None))
        target = tmp_path / "out"
        target.mkdir()

        assert extract_archive(archive, target) == target

    def test_garbage_raises(self, tmp_path: Path) -> None:
        archive = tmp_path / "a.tar.gz"
        archive.write_bytes(b"definitely not a tarball")
        target = tmp_path / "out"
        target.mkdir()

        with pytest.raises(ExtractError):
            extract_archive(archive, target)

    def test_path_traversal_rejected(self, tmp_path: Path) -> None:
        archive = tmp_path / "a.tar.gz"
        archive.write_bytes(_tarball({"../../escape.txt": "x"}, root=None))
        target = tmp_path / "out"
        target.mkdir()

        with pytest.raises(ExtractError):
            extract_archive(archive, target)
        assert not (tmp_path / "escape.txt").exists()


class TestDocsBuilder:
    async def test_successful_build(self, tmp_path: Path, isolated_tmp: Path) -> None:
        destination = tmp_path / "site"
        destination.mkdir()

        with respx.mock:
            respx.get(ARCHIVE_URL).mock(
                return_value=httpx.Response(200, content=_tarball({"build.py": BUILD_SCRIPT}))
            )
            async with httpx.AsyncClient() as client:
                await _builder(client).build(_config(destination))

        env = json.loads((destination / "out.json").read_text())
        assert env == {
            "BASE_URL": "http://widget.example.com/v1.2.3/",
            "DESTINATION_PATH": str(destination),
            "SHARED_PATH": "/etc/shared",
            "REPOSITORY_NAME": "widget",
            "REPOSITORY_OWNER": "acme",
            "VERSION_NAME": "v1.2.3",
            "HOST_NAME": "widget.example.com",
            "DOCSRV": "true",
        }
        assert list(isolated_tmp.iterdir()) == []

    async def test_failing_command_raises_with_output(
        self, tmp_path: Path, isolated_tmp: Path
    ) -> None:
        with respx.mock:
            respx.get(ARCHIVE_URL).mock(
                return_value=httpx.Response(200, content=_tarball({"build.py": FAILING_SCRIPT}))
            )
            async with httpx.AsyncClient() as client:
                with pytest.raises(BuildError) as exc_info:
                    await _builder(client).build(_config(tmp_path))

        assert exc_info.value.returncode == 3
        assert "compiling docs" in exc_info.value.output
        assert "fatal: no docs folder" in exc_info.value.output
        assert list(isolated_tmp.iterdir()) == []

    async def test_missing_command_raises(self, tmp_path: Path, isolated_tmp: Path) -> None:
        with respx.mock:
            respx.get(ARCHIVE_URL).mock(
                return_value=httpx.Response(200, content=_tarball({"build.py": BUILD_SCRIPT}))
            )
            async with httpx.AsyncClient() as client:
                builder = DocsBuilder(
                    client, BuildSettings(command=[str(tmp_path / "no-such-tool")])
                )
                with pytest.raises(BuildError):
                    await builder.build(_config(tmp_path))

        assert list(isolated_tmp.iterdir()) == []

    async def test_download_http_error(self, tmp_path: Path, isolated_tmp: Path) -> None:
        with respx.mock:
            respx.get(ARCHIVE_URL).mock(return_value=httpx.Response(404))
            async with httpx.AsyncClient() as client:
                with pytest.raises(FetchError) as exc_info:
                    await _builder(client).build(_config(tmp_path))

        assert exc_info.value.recoverable is False
        assert list(isolated_tmp.iterdir()) == []

    async def test_download_network_error(self, tmp_path: Path, isolated_tmp: Path) -> None:
        with respx.mock:
            respx.get(ARCHIVE_URL).mock(side_effect=httpx.ConnectError("Connection refused"))
            async with httpx.AsyncClient() as client:
                with pytest.raises(FetchError):
                    await _builder(client).build(_config(tmp_path))

        assert list(isolated_tmp.iterdir()) == []

    async def test_malformed_archive(self, tmp_path: Path, isolated_tmp: Path) -> None:
        with respx.mock:
            respx.get(ARCHIVE_URL).mock(return_value=httpx.Response(200, content=b"<html>"))
            async with httpx.AsyncClient() as client:
                with pytest.raises(ExtractError):
                    await _builder(client).build(_config(tmp_path))

        assert list(isolated_tmp.iterdir()) == []

    async def test_cleanup_failure_is_not_fatal(
        self, tmp_path: Path, isolated_tmp: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        import docsrv.builder as builder_module

        def failing_rmtree(path: object) -> None:
            raise PermissionError("read-only filesystem")

        monkeypatch.setattr(builder_module.shutil, "rmtree", failing_rmtree)
        destination = tmp_path / "site"
        destination.mkdir()

        with respx.mock:
            respx.get(ARCHIVE_URL).mock(
                return_value=httpx.Response(200, content=_tarball({"build.py": BUILD_SCRIPT}))
            )
            async with httpx.AsyncClient() as client:
                await _builder(client).build(_config(destination))

        assert (destination / "out.json").is_file()
