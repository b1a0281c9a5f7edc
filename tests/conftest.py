"""Shared test fixtures for the bibliomonitor test suite."""

from __future__ import annotations

from typing import TYPE_CHECKING

import aiosqlite
import pytest

from bibliomonitor.cache import ReadThroughCache
from bibliomonitor.models.instance import Instance
from bibliomonitor.store import SqliteStore

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


@pytest.fixture()
async def store() -> AsyncGenerator[SqliteStore, None]:
    """SqliteStore over a fresh in-memory database."""
    async with aiosqlite.connect(":memory:") as db:
        store = SqliteStore(db)
        await store.init_db()
        yield store


@pytest.fixture()
async def cache(store: SqliteStore) -> AsyncGenerator[ReadThroughCache, None]:
    """ReadThroughCache with default (per-read) refresh behaviour."""
    cache = ReadThroughCache(store)
    yield cache
    await cache.aclose()


@pytest.fixture()
def sample_instances() -> list[Instance]:
    """Unprobed instances as the registry delivers them."""
    return [
        Instance(url="https://biblioreads.eu.org"),
        Instance(url="https://biblioreads.mooo.com"),
        Instance(url="https://bl.vern.cc"),
        Instance(url="https://biblioreads.lunar.icu"),
        Instance(url="https://read.whateveritworks.org"),
    ]
