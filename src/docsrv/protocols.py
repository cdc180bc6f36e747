"""Protocol interfaces for swappable components.

The router and indexer reference these protocols, not the concrete
implementations, so tests can plug in in-memory fakes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    import semver

    from docsrv.builder import BuildConfig
    from docsrv.models.release import Release


class ReleaseFetcherProtocol(Protocol):
    """Interface for the remote release listing."""

    async def releases(
        self,
        owner: str,
        project: str,
        min_version: semver.Version | None = None,
    ) -> list[Release]: ...


class BuilderProtocol(Protocol):
    """Interface for the fetch → extract → build pipeline."""

    async def build(self, config: BuildConfig) -> None: ...
