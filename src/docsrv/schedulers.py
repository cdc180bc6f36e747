"""Background scheduler coroutine for periodic index refreshes."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from docsrv.indexer import Indexer

log = structlog.get_logger()


async def run_index_refresh_scheduler(
    indexer: Indexer,
    interval_seconds: float,
    stop: asyncio.Event,
) -> None:
    """Refresh every indexed project each ``interval_seconds`` until ``stop`` is set.

    Only projects already present in the store are refreshed; projects enter
    the store on first request.
    """
    log.info("index_refresh_scheduler_started", interval_seconds=interval_seconds)
    while not stop.is_set():
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval_seconds)
        except TimeoutError:
            pass
        if stop.is_set():
            break

        try:
            failures = await indexer.refresh_all()
        except Exception:
            log.warning("index_refresh_scheduler_error", exc_info=True)
            continue
        log.debug("index_refresh_pass_complete", failures=failures)

    log.info("index_refresh_scheduler_stopped")
