"""Read-through cache with stale-while-revalidate.

Wraps an arbitrary async producer. A miss runs the producer inline and stores
its value; a hit returns the stored value, and when the entry is older than
``STALE_AFTER`` also launches the producer as a detached background task that
overwrites the entry on success.

``STALE_AFTER`` is a fixed policy and is not derived from the
per-call ``ttl_seconds``, which only controls how long the keyed store keeps
the entry. When ``ttl_seconds`` is shorter than ``STALE_AFTER`` the store
evicts entries before they can be observed stale, and every read after
eviction is a plain miss.

Background refresh failures are logged (``stale_refresh_failed``) and never
reach the caller; the stale entry stays in place and the next stale read
tries again.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, TypeVar

import structlog
from pydantic import ValidationError

from bibliomonitor.models.cache import CacheEntry

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from pydantic import TypeAdapter

    from bibliomonitor.protocols import KeyedStoreProtocol

log = structlog.get_logger()

T = TypeVar("T")

STALE_AFTER = timedelta(hours=24)


class ReadThroughCache:
    """Stale-aware read-through cache backed by a keyed store.

    With ``single_flight=False`` (the default) every stale read launches its
    own refresh, so concurrent stale reads of one key run the producer once
    each. ``single_flight=True`` allows at most one in-flight refresh per key;
    stale reads arriving while it runs return the cached value without
    launching another.
    """

    def __init__(self, store: KeyedStoreProtocol, *, single_flight: bool = False) -> None:
        self._store = store
        self._single_flight = single_flight
        self._refresh_tasks: set[asyncio.Task[None]] = set()
        self._in_flight: dict[str, asyncio.Task[None]] = {}

    async def get_or_compute(
        self,
        key: str,
        ttl_seconds: int,
        producer: Callable[[], Awaitable[T]],
        *,
        adapter: TypeAdapter[T],
    ) -> T:
        """Return the cached value for ``key``, computing it on a miss.

        Producer exceptions on a miss propagate to the caller unchanged and
        nothing is stored.
        """
        entry = await self._store.get(key)

        if entry is not None:
            try:
                value = adapter.validate_json(entry.value)
            except ValidationError:
                log.warning("cache_decode_error", key=key, exc_info=True)
            else:
                age = datetime.now(UTC) - entry.stored_at
                if age <= STALE_AFTER:
                    log.debug("cache_hit", key=key, stale=False)
                    return value

                log.info("cache_hit", key=key, stale=True, age_seconds=int(age.total_seconds()))
                self._schedule_refresh(key, ttl_seconds, producer, adapter)
                return value

        log.info("cache_miss", key=key)
        value = await producer()
        await self._write(key, ttl_seconds, value, adapter)
        return value

    @property
    def pending_refreshes(self) -> int:
        return len(self._refresh_tasks)

    async def wait_for_refreshes(self) -> None:
        """Block until every background refresh launched so far has finished."""
        while self._refresh_tasks:
            await asyncio.gather(*self._refresh_tasks, return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel outstanding background refreshes. Called at shutdown."""
        tasks = list(self._refresh_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _write(
        self, key: str, ttl_seconds: int, value: T, adapter: TypeAdapter[T]
    ) -> None:
        entry = CacheEntry(
            value=adapter.dump_json(value, exclude_none=True),
            stored_at=datetime.now(UTC),
        )
        await self._store.put(key, entry, ttl_seconds)

    def _schedule_refresh(
        self,
        key: str,
        ttl_seconds: int,
        producer: Callable[[], Awaitable[T]],
        adapter: TypeAdapter[T],
    ) -> None:
        if self._single_flight and key in self._in_flight:
            log.debug("stale_refresh_skipped", key=key, reason="refresh_in_flight")
            return

        task = asyncio.create_task(
            self._background_refresh(key, ttl_seconds, producer, adapter),
            name=f"stale-refresh:{key}",
        )
        # The event loop only keeps weak references to tasks
        self._refresh_tasks.add(task)
        task.add_done_callback(self._refresh_tasks.discard)

        if self._single_flight:
            self._in_flight[key] = task
            task.add_done_callback(lambda _task: self._in_flight.pop(key, None))

    async def _background_refresh(
        self,
        key: str,
        ttl_seconds: int,
        producer: Callable[[], Awaitable[T]],
        adapter: TypeAdapter[T],
    ) -> None:
        """Re-run the producer for a stale entry.

        Fire-and-forget: all exceptions are caught and logged.
        """
        log.info("stale_refresh_started", key=key)
        try:
            value = await producer()
            await self._write(key, ttl_seconds, value, adapter)
            log.info("stale_refresh_complete", key=key)
        except Exception:
            log.warning("stale_refresh_failed", key=key, exc_info=True)
