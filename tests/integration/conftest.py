"""Integration test fixtures.

Exercises the full ASGI app (router + error boundary) over httpx's ASGI
transport, with the in-memory fetcher and builder from tests/conftest.py.
The app lifespan is not run, so no background refresh task is started.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import pytest

from docsrv.server import create_app

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from docsrv.state import AppState

HOST = "widget.example.com"


@pytest.fixture()
async def client(app_state: AppState) -> AsyncGenerator[httpx.AsyncClient, None]:
    app = create_app(app_state)
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url=f"http://{HOST}",
    ) as client:
        yield client
