"""In-memory release index, install tracker and latest-version cache.

Each store owns its own ``threading.Lock``. Critical sections never perform
I/O; readers only copy a reference out of the protected map.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from docsrv.models.release import InstallKey, ProjectKey
from docsrv.versions import is_newer, sort_releases

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from docsrv.models.release import Release

LATEST_VERSION_TTL_SECONDS = 60 * 60


@dataclass(frozen=True)
class _Generation:
    """One indexing result. Replaced as a whole, never mutated."""

    releases: tuple[Release, ...]
    by_tag: dict[str, Release]


class ReleaseStore:
    """Known releases per project, plus lookup by ``(project, tag)``."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._projects: dict[ProjectKey, _Generation] = {}

    def set(self, owner: str, project: str, releases: Iterable[Release]) -> None:
        """Replace the release list for a project. No merging with the previous one."""
        ordered = tuple(sort_releases(releases))
        generation = _Generation(
            releases=ordered,
            by_tag={release.tag: release for release in ordered},
        )
        with self._lock:
            self._projects[ProjectKey(owner, project)] = generation

    def get(self, owner: str, project: str, version: str) -> Release | None:
        generation = self._generation(owner, project)
        if generation is None:
            return None
        return generation.by_tag.get(version)

    def for_project(self, owner: str, project: str) -> list[Release]:
        """Releases sorted ascending by version; empty if never indexed."""
        generation = self._generation(owner, project)
        if generation is None:
            return []
        return list(generation.releases)

    def is_indexed(self, owner: str, project: str) -> bool:
        return self._generation(owner, project) is not None

    def list_projects(self) -> list[ProjectKey]:
        with self._lock:
            return list(self._projects)

    def _generation(self, owner: str, project: str) -> _Generation | None:
        with self._lock:
            return self._projects.get(ProjectKey(owner, project))


class InstallTracker:
    """Set of ``(owner, project, version)`` whose site has been built."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._installed: set[InstallKey] = set()

    def is_installed(self, owner: str, project: str, version: str) -> bool:
        with self._lock:
            return InstallKey(owner, project, version) in self._installed

    def mark_installed(self, owner: str, project: str, version: str) -> None:
        with self._lock:
            self._installed.add(InstallKey(owner, project, version))


@dataclass(frozen=True)
class _LatestEntry:
    tag: str
    cached_at: float


class LatestVersionCache:
    """Time-bounded cache of the resolved "latest" tag per project.

    An entry is fresh while ``now < cached_at + ttl``. Stale entries stay in
    the map until overwritten but are reported as absent.
    """

    def __init__(
        self,
        ttl_seconds: float = LATEST_VERSION_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._lock = threading.Lock()
        self._entries: dict[ProjectKey, _LatestEntry] = {}
        self._ttl = ttl_seconds
        self._clock = clock

    def get(self, owner: str, project: str) -> tuple[str, bool]:
        with self._lock:
            entry = self._fresh_entry(ProjectKey(owner, project))
        if entry is None:
            return "", False
        return entry.tag, True

    def set(self, owner: str, project: str, tag: str) -> None:
        with self._lock:
            self._entries[ProjectKey(owner, project)] = _LatestEntry(tag, self._clock())

    def try_set(self, owner: str, project: str, tag: str) -> bool:
        """Advance the cached tag if ``tag`` is strictly newer.

        Never creates the first entry and never replaces a stale or equal one.
        Returns whether the cache was updated.
        """
        key = ProjectKey(owner, project)
        with self._lock:
            entry = self._fresh_entry(key)
            if entry is None or not is_newer(tag, entry.tag):
                return False
            self._entries[key] = _LatestEntry(tag, self._clock())
            return True

    def _fresh_entry(self, key: ProjectKey) -> _LatestEntry | None:
        entry = self._entries.get(key)
        if entry is None or self._clock() >= entry.cached_at + self._ttl:
            return None
        return entry
