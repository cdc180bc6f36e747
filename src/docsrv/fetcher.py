"""GitHub release fetcher.

All network I/O against the release API goes through a single
``GitHubReleaseFetcher`` sharing the application's httpx.AsyncClient. The
lifespan owns the client lifecycle.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import structlog

from docsrv import __version__
from docsrv.errors import FetchError
from docsrv.models.release import Release
from docsrv.versions import sort_releases

if TYPE_CHECKING:
    import semver

    from docsrv.config import GitHubSettings

log = structlog.get_logger()


def build_http_client() -> httpx.AsyncClient:
    """Create the shared httpx client. Called once at startup."""
    return httpx.AsyncClient(
        # GitHub serves tarballs through a redirect to codeload.
        follow_redirects=True,
        timeout=httpx.Timeout(30.0),
        headers={"User-Agent": f"docsrv/{__version__}"},
        limits=httpx.Limits(
            max_connections=20,
            max_keepalive_connections=10,
        ),
    )


def release_from_payload(payload: dict) -> Release | None:
    """Convert one GitHub release object. Drafts and prereleases yield None."""
    if not isinstance(payload, dict):
        return None
    if payload.get("draft") or payload.get("prerelease"):
        return None
    tag = payload.get("tag_name") or ""
    if not tag:
        return None
    return Release(tag=tag, source_url=payload.get("tarball_url") or "")


class GitHubReleaseFetcher:
    """Lists the published releases of a repository, across all pages."""

    def __init__(self, client: httpx.AsyncClient, settings: GitHubSettings) -> None:
        self._client = client
        self._api_url = settings.api_url.rstrip("/")
        self._per_page = settings.per_page
        self._headers = {"Accept": "application/vnd.github+json"}
        if settings.api_key:
            self._headers["Authorization"] = f"Bearer {settings.api_key}"

    async def releases(
        self,
        owner: str,
        project: str,
        min_version: semver.Version | None = None,
    ) -> list[Release]:
        """Return releases sorted ascending by version.

        Tags that are not versions, and versions below ``min_version``, are
        dropped. Raises FetchError on network errors and non-2xx responses.
        """
        url: str | None = f"{self._api_url}/repos/{owner}/{project}/releases"
        params: dict[str, int] | None = {"per_page": self._per_page, "page": 1}
        collected: list[Release] = []
        pages = 0

        try:
            while url is not None:
                response = await self._client.get(url, params=params, headers=self._headers)
                if not response.is_success:
                    raise FetchError(
                        f"HTTP {response.status_code} listing releases of {owner}/{project}",
                        recoverable=response.status_code >= 500,
                    )

                for payload in response.json():
                    release = release_from_payload(payload)
                    if release is not None:
                        collected.append(release)
                pages += 1

                # The next link already carries page and per_page.
                url = response.links.get("next", {}).get("url")
                params = None
        except FetchError:
            raise
        except httpx.HTTPError as exc:
            raise FetchError(f"Network error listing releases of {owner}/{project}: {exc}") from exc
        except ValueError as exc:
            raise FetchError(f"Malformed release listing for {owner}/{project}: {exc}") from exc

        result = sort_releases(collected, min_version)
        log.info(
            "releases_fetched",
            owner=owner,
            project=project,
            pages=pages,
            releases=len(result),
        )
        return result
