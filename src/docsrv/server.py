"""HTTP server entrypoint.

Responsibilities (and nothing more):
- Configure structlog
- Build AppState from settings
- Start and stop the periodic index refresh around the app's lifespan
- Serve the router with uvicorn
"""

from __future__ import annotations

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING

import structlog
import uvicorn
from starlette.routing import Router

from docsrv import __version__
from docsrv.builder import DocsBuilder
from docsrv.config import Settings
from docsrv.errors import ConfigError
from docsrv.fetcher import GitHubReleaseFetcher, build_http_client
from docsrv.index import ReleaseStore
from docsrv.indexer import Indexer
from docsrv.mapping import load_mapping
from docsrv.schedulers import run_index_refresh_scheduler
from docsrv.service import DocService, RecoveryMiddleware
from docsrv.state import AppState

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from starlette.types import ASGIApp

    from docsrv.mapping import HostMapping

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def _setup_logging(settings: Settings) -> None:
    """Configure structlog. Called once at startup before any log statements."""
    log_level = logging.getLevelNamesMapping()[settings.logging.level]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.logging.format == "json":
        processors = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# State and app wiring
# ---------------------------------------------------------------------------


def build_state(settings: Settings, mapping: HostMapping) -> AppState:
    """Create the shared client, stores and collaborators."""
    http_client = build_http_client()
    releases = ReleaseStore()
    fetcher = GitHubReleaseFetcher(http_client, settings.github)
    indexer = Indexer(releases, fetcher, mapping, refresh_token=settings.refresh_token)
    return AppState(
        settings=settings,
        mapping=mapping,
        indexer=indexer,
        builder=DocsBuilder(http_client, settings.build),
        releases=releases,
        http_client=http_client,
    )


def create_app(state: AppState) -> ASGIApp:
    """Return the ASGI app serving ``state``, wrapped in the error boundary."""

    @asynccontextmanager
    async def lifespan(_app: object) -> AsyncGenerator[None, None]:
        interval_seconds = state.settings.index.refresh_interval_minutes * 60
        stop = asyncio.Event()
        refresh_task = asyncio.create_task(
            run_index_refresh_scheduler(state.indexer, interval_seconds, stop)
        )
        log.info(
            "server_started",
            version=__version__,
            hosts=len(state.mapping),
            refresh_interval_seconds=interval_seconds,
        )
        try:
            yield
        finally:
            stop.set()
            await refresh_task
            if state.http_client is not None:
                await state.http_client.aclose()
            log.info("server_stopping")

    service = DocService(state)
    return RecoveryMiddleware(Router(routes=service.routes(), lifespan=lifespan))


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main() -> None:
    settings = Settings()
    _setup_logging(settings)

    log.info("server_starting", version=__version__, port=settings.server.port)

    try:
        mapping = load_mapping(Path(settings.paths.hosts_file))
    except ConfigError as exc:
        log.error("hosts_file_invalid", message=exc.message)
        sys.exit(1)

    if not mapping:
        log.error("no_hosts_configured", path=settings.paths.hosts_file)
        sys.exit(1)

    app = create_app(build_state(settings, mapping))
    uvicorn.run(
        app,
        host=settings.server.host,
        port=settings.server.port,
        timeout_keep_alive=settings.server.timeout_keep_alive,
        log_config=None,  # Disable uvicorn's default logging; structlog handles it
    )


if __name__ == "__main__":
    main()
