"""Integration test fixtures.

Provides a fully wired AppState over an in-memory SqliteStore. The shared
httpx client is a plain AsyncClient, so upstream calls can be intercepted
with respx. The ``store`` fixture comes from tests/conftest.py.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import pytest

from bibliomonitor.config import Settings
from bibliomonitor.server import build_state

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from bibliomonitor.state import AppState
    from bibliomonitor.store import SqliteStore

SOURCE_URL = "https://registry.example/instances.json"
API_DOMAIN = "api.example.com"


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        source={"url": SOURCE_URL},
        checks={
            "timeout_ms": 500,
            "concurrency_limit": 2,
            "whitelist": "https://whitelisted.example",
        },
        cache={"ttl_seconds": 300},
        api_check={"domain": API_DOMAIN},
        notify={"ntfy_url": ""},
    )


@pytest.fixture()
async def app_state(settings: Settings, store: SqliteStore) -> AsyncGenerator[AppState, None]:
    """Full AppState wired for integration tests."""
    async with httpx.AsyncClient() as client:
        state = build_state(settings, store, client, client)
        yield state
        await state.cache.aclose()
