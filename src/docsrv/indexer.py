"""Project indexing: fetch release lists into the ReleaseStore."""

from __future__ import annotations

import hmac
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from docsrv.index import ReleaseStore
    from docsrv.mapping import HostMapping
    from docsrv.protocols import ReleaseFetcherProtocol

log = structlog.get_logger()


class Indexer:
    """Keeps the ReleaseStore in sync with the upstream release listing.

    Concurrent refreshes of the same project are not coordinated: the last
    ``set`` wins, and every writer stores a complete upstream listing.
    """

    def __init__(
        self,
        store: ReleaseStore,
        fetcher: ReleaseFetcherProtocol,
        mapping: HostMapping,
        refresh_token: str = "",
    ) -> None:
        self._store = store
        self._fetcher = fetcher
        self._mapping = mapping
        self._refresh_token = refresh_token

    def token_matches(self, token: str | None) -> bool:
        if not token or not self._refresh_token:
            return False
        return hmac.compare_digest(token.encode(), self._refresh_token.encode())

    async def ensure_indexed(self, owner: str, project: str, token: str | None = None) -> None:
        """Index the project if it never was, or unconditionally with a valid token."""
        if token:
            if self.token_matches(token):
                log.debug("refresh_token_accepted", owner=owner, project=project)
                await self.refresh_one(owner, project)
                return
            log.warning("refresh_token_mismatch", owner=owner, project=project)

        if not self._store.is_indexed(owner, project):
            await self.refresh_one(owner, project)

    async def refresh_one(self, owner: str, project: str) -> None:
        """Re-fetch and overwrite the release list. Raises FetchError."""
        min_version = self._mapping.min_version_for(owner, project)
        releases = await self._fetcher.releases(owner, project, min_version)
        self._store.set(owner, project, releases)
        log.debug("project_indexed", owner=owner, project=project, releases=len(releases))

    async def refresh_all(self) -> int:
        """Refresh every indexed project. Returns the number of failures.

        A failing project is logged and skipped; the pass continues.
        """
        failures = 0
        for key in self._store.list_projects():
            try:
                await self.refresh_one(key.owner, key.project)
            except Exception:
                failures += 1
                log.error(
                    "project_refresh_failed",
                    owner=key.owner,
                    project=key.project,
                    exc_info=True,
                )
        return failures
