"""Request router: list versions, redirect to latest, or build on demand.

Three behaviours, matched in this order:

- ``/versions.json``  → JSON list of known versions
- ``/latest/<rest>``  → 307 to ``/<latest version>/<rest>``
- ``/<version>/<rest>`` → build the version if needed, then 307 back to the
  same URL so the static server can answer the follow-up request

Failures are reported as redirects to ``/404/`` and ``/500/`` where the
static server keeps its error pages.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING

import structlog
from starlette.datastructures import Headers
from starlette.responses import JSONResponse, RedirectResponse, Response
from starlette.routing import Route

from docsrv.builder import BuildConfig
from docsrv.errors import BuildError, DocsrvError, NotFoundError
from docsrv.mapping import strip_port
from docsrv.models.release import InstallKey, VersionLink
from docsrv.versions import is_version

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from starlette.requests import Request
    from starlette.types import ASGIApp, Message, Receive, Scope, Send

    from docsrv.models.release import ProjectKey, Release
    from docsrv.state import AppState

log = structlog.get_logger()

NOT_FOUND_PATH = "/404/"
INTERNAL_ERROR_PATH = "/500/"
DESTINATION_MODE = 0o740
# Dispatch ignores the method; every request resolves to one of the outcomes.
ROUTED_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


# ---------------------------------------------------------------------------
# URL helpers
# ---------------------------------------------------------------------------


def scheme_from_headers(headers: Headers, default: str = "http") -> str:
    return headers.get("x-forwarded-proto") or default or "http"


def request_scheme(request: Request) -> str:
    return scheme_from_headers(request.headers, request.url.scheme)


def request_host(request: Request) -> str:
    return request.headers.get("host", "")


def url_for(request: Request, version: str, path: str = "") -> str:
    url = f"{request_scheme(request)}://{request_host(request)}/{version}"
    if path:
        url = f"{url}/{path.lstrip('/')}"
    return url


def raw_path(request: Request) -> str:
    """Request path still percent-encoded, as the client sent it."""
    raw = request.scope.get("raw_path")
    if raw:
        return raw.split(b"?", 1)[0].decode("latin-1")
    return request.url.path


def requested_url(request: Request) -> str:
    """Absolute URL of the request as the client sent it."""
    url = f"{request_scheme(request)}://{request_host(request)}{raw_path(request)}"
    if request.url.query:
        url = f"{url}?{request.url.query}"
    return url


def version_from_path(path: str) -> str:
    """``'/v1.0.0/guide/index.html'`` → ``'v1.0.0'``."""
    return path.lstrip("/").split("/", 1)[0]


def not_found(request: Request) -> Response:
    url = f"{request_scheme(request)}://{request_host(request)}{NOT_FOUND_PATH}"
    return RedirectResponse(url, status_code=307)


def internal_error(request: Request) -> Response:
    url = f"{request_scheme(request)}://{request_host(request)}{INTERNAL_ERROR_PATH}"
    return RedirectResponse(url, status_code=307)


def redirect_to_version(request: Request, version: str) -> Response:
    rest = raw_path(request).replace("/latest/", "", 1)
    url = url_for(request, version, rest)
    if not rest and not url.endswith("/"):
        url += "/"
    return RedirectResponse(url, status_code=307)


# ---------------------------------------------------------------------------
# Build de-duplication
# ---------------------------------------------------------------------------


class InflightBuilds:
    """At most one running build per ``(owner, project, version)``.

    Later callers for the same key await the running build instead of
    starting another one. The key is released when the build finishes, so a
    failed build is retried by the next request.
    """

    def __init__(self) -> None:
        self._tasks: dict[InstallKey, asyncio.Task[None]] = {}

    async def run(self, key: InstallKey, factory: Callable[[], Awaitable[None]]) -> None:
        task = self._tasks.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._tasks[key] = task
            task.add_done_callback(lambda t: self._release(key, t))
        else:
            log.debug("build_already_in_progress", **key._asdict())
        # A disconnecting client must not cancel a build others are waiting on.
        await asyncio.shield(task)

    def _release(self, key: InstallKey, task: asyncio.Task[None]) -> None:
        self._tasks.pop(key, None)
        if not task.cancelled():
            # Mark the exception retrieved; waiters re-raise it themselves.
            task.exception()


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------


class DocService:
    """Dispatches requests against the shared AppState."""

    def __init__(self, state: AppState) -> None:
        self.state = state
        self.inflight = InflightBuilds()

    def routes(self) -> list[Route]:
        return [
            Route("/versions.json", self.list_versions, methods=ROUTED_METHODS),
            Route("/latest/{rest:path}", self.redirect_to_latest, methods=ROUTED_METHODS),
            Route("/{path:path}", self.prepare_version, methods=ROUTED_METHODS),
        ]

    def _project_for(self, request: Request) -> ProjectKey | None:
        key = self.state.mapping.project_for_host(request_host(request))
        if key is None:
            log.debug("host_not_mapped", host=request_host(request))
        return key

    async def _ensure_indexed(self, request: Request, key: ProjectKey) -> None:
        await self.state.indexer.ensure_indexed(
            key.owner,
            key.project,
            request.query_params.get("token"),
        )

    def _latest_release(self, key: ProjectKey) -> Release:
        releases = self.state.releases.for_project(key.owner, key.project)
        if not releases:
            raise NotFoundError(f"No releases for {key.owner}/{key.project}")
        return releases[-1]

    def _release(self, key: ProjectKey, version: str) -> Release:
        release = self.state.releases.get(key.owner, key.project, version)
        if release is None:
            raise NotFoundError(f"No release {version} for {key.owner}/{key.project}")
        return release

    async def list_versions(self, request: Request) -> Response:
        key = self._project_for(request)
        if key is None:
            return not_found(request)

        req_log = log.bind(owner=key.owner, project=key.project)
        try:
            await self._ensure_indexed(request, key)
        except DocsrvError as exc:
            req_log.error("project_index_error", code=exc.code, message=exc.message)
            return internal_error(request)

        versions = [
            VersionLink(text=release.tag, url=url_for(request, release.tag)).model_dump()
            for release in self.state.releases.for_project(key.owner, key.project)
        ]
        return JSONResponse(versions)

    async def redirect_to_latest(self, request: Request) -> Response:
        key = self._project_for(request)
        if key is None:
            return not_found(request)

        req_log = log.bind(owner=key.owner, project=key.project)

        # A valid refresh token bypasses the cache.
        if not self.state.indexer.token_matches(request.query_params.get("token")):
            cached, ok = self.state.latest.get(key.owner, key.project)
            if ok:
                req_log.debug("latest_cache_hit", version=cached)
                return redirect_to_version(request, cached)

        try:
            await self._ensure_indexed(request, key)
        except DocsrvError as exc:
            req_log.error("project_index_error", code=exc.code, message=exc.message)
            return internal_error(request)

        try:
            latest = self._latest_release(key)
        except NotFoundError as exc:
            req_log.warning("no_releases_found", message=exc.message)
            return not_found(request)

        self.state.latest.set(key.owner, key.project, latest.tag)
        req_log.debug("redirect_to_latest", version=latest.tag)
        return redirect_to_version(request, latest.tag)

    async def prepare_version(self, request: Request) -> Response:
        key = self._project_for(request)
        if key is None:
            return not_found(request)

        version = version_from_path(request.url.path)
        req_log = log.bind(owner=key.owner, project=key.project, version=version)

        try:
            await self._ensure_indexed(request, key)
        except DocsrvError as exc:
            req_log.error("project_index_error", code=exc.code, message=exc.message)
            return internal_error(request)

        if self.state.installs.is_installed(key.owner, key.project, version):
            # Not a version at all: a missing static file, answer with a bare 404.
            if not is_version(version):
                return Response(status_code=404)
            # Installed, yet the static server passed the request on: the page
            # under this version does not exist.
            req_log.debug("installed_asset_missing", path=request.url.path)
            return not_found(request)

        try:
            release = self._release(key, version)
        except NotFoundError as exc:
            req_log.debug("release_not_found", message=exc.message)
            return not_found(request)

        self.state.latest.try_set(key.owner, key.project, release.tag)

        install_key = InstallKey(key.owner, key.project, version)
        try:
            await self.inflight.run(
                install_key,
                lambda: self._install(request, install_key, release),
            )
        except BuildError as exc:
            req_log.error(
                "build_failed",
                message=exc.message,
                returncode=exc.returncode,
                output=exc.output,
            )
            return internal_error(request)
        except DocsrvError as exc:
            req_log.error("build_failed", code=exc.code, message=exc.message)
            return internal_error(request)
        except OSError as exc:
            req_log.error("destination_create_failed", error=str(exc))
            return internal_error(request)

        req_log.info("version_installed")
        return RedirectResponse(requested_url(request), status_code=307)

    async def _install(self, request: Request, key: InstallKey, release: Release) -> None:
        host = strip_port(request_host(request))
        destination = Path(self.state.settings.paths.base_folder) / host / key.version
        await asyncio.to_thread(destination.mkdir, mode=DESTINATION_MODE, parents=True, exist_ok=True)

        log.debug("building_documentation_site", **key._asdict(), destination=str(destination))
        await self.state.builder.build(
            BuildConfig(
                source_url=release.source_url,
                base_url=url_for(request, key.version) + "/",
                destination=str(destination),
                shared_folder=self.state.settings.paths.shared_folder,
                project=key.project,
                owner=key.owner,
                version=key.version,
                host_name=host,
            )
        )
        self.state.installs.mark_installed(key.owner, key.project, key.version)


# ---------------------------------------------------------------------------
# Error boundary
# ---------------------------------------------------------------------------


class RecoveryMiddleware:
    """Pure ASGI middleware turning any escaped exception into the /500/ redirect.

    Sits outermost so nothing raised during dispatch reaches the server. If
    the response had already started there is nothing left to rewrite and
    the exception is only logged.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_started = False

        async def tracking_send(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, receive, tracking_send)
        except Exception:
            log.error("request_unexpected_error", path=scope.get("path", ""), exc_info=True)
            if response_started:
                return
            headers = Headers(scope=scope)
            scheme = scheme_from_headers(headers, scope.get("scheme", "http"))
            url = f"{scheme}://{headers.get('host', '')}{INTERNAL_ERROR_PATH}"
            await RedirectResponse(url, status_code=307)(scope, receive, send)
