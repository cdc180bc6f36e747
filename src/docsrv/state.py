"""Application state container.

AppState is created once at startup and shared by the router, the indexer
and the background refresh task. The three stores are owned here and only
mutated through their own methods.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from docsrv.index import InstallTracker, LatestVersionCache, ReleaseStore

if TYPE_CHECKING:
    import httpx

    from docsrv.config import Settings
    from docsrv.indexer import Indexer
    from docsrv.mapping import HostMapping
    from docsrv.protocols import BuilderProtocol


@dataclass
class AppState:
    """Holds all shared runtime state."""

    settings: Settings
    mapping: HostMapping
    indexer: Indexer
    builder: BuilderProtocol
    releases: ReleaseStore
    installs: InstallTracker = field(default_factory=InstallTracker)
    latest: LatestVersionCache = field(default_factory=LatestVersionCache)
    http_client: httpx.AsyncClient | None = None
