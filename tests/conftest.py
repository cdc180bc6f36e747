"""Shared test fixtures for the docsrv test suite."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from docsrv.config import Settings
from docsrv.errors import FetchError
from docsrv.index import ReleaseStore
from docsrv.indexer import Indexer
from docsrv.mapping import build_mapping
from docsrv.models.release import ProjectKey, Release
from docsrv.state import AppState
from docsrv.versions import sort_releases

if TYPE_CHECKING:
    from pathlib import Path

    import semver

    from docsrv.builder import BuildConfig
    from docsrv.mapping import HostMapping


class FakeFetcher:
    """In-memory release source. Records every fetch."""

    def __init__(self) -> None:
        self.projects: dict[ProjectKey, dict[str, str]] = {}
        self.calls: list[ProjectKey] = []
        self.failing: set[ProjectKey] = set()

    def add(self, owner: str, project: str, tag: str, url: str = "") -> None:
        self.projects.setdefault(ProjectKey(owner, project), {})[tag] = url

    async def releases(
        self,
        owner: str,
        project: str,
        min_version: semver.Version | None = None,
    ) -> list[Release]:
        key = ProjectKey(owner, project)
        self.calls.append(key)
        if key in self.failing:
            raise FetchError(f"cannot reach release API for {owner}/{project}")
        tags = self.projects.get(key, {})
        return sort_releases(
            [Release(tag=tag, source_url=url) for tag, url in tags.items()],
            min_version,
        )


class FakeBuilder:
    """Records build requests. Can be gated or told to fail."""

    def __init__(self) -> None:
        self.builds: list[BuildConfig] = []
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None

    async def build(self, config: BuildConfig) -> None:
        self.builds.append(config)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        paths={
            "base_folder": str(tmp_path / "www"),
            "shared_folder": "/etc/shared",
            "hosts_file": str(tmp_path / "hosts.yaml"),
        },
        refresh_token="s3cret",
    )


@pytest.fixture()
def mapping() -> HostMapping:
    return build_mapping(
        {
            "widget.example.com": {"repository": "acme/widget"},
            "gadget.example.com": {"repository": "acme/gadget", "min-version": "v1.0.0"},
        }
    )


@pytest.fixture()
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture()
def builder() -> FakeBuilder:
    return FakeBuilder()


@pytest.fixture()
def app_state(
    settings: Settings,
    mapping: HostMapping,
    fetcher: FakeFetcher,
    builder: FakeBuilder,
) -> AppState:
    releases = ReleaseStore()
    return AppState(
        settings=settings,
        mapping=mapping,
        indexer=Indexer(releases, fetcher, mapping, refresh_token=settings.refresh_token),
        builder=builder,
        releases=releases,
    )
