"""Protocol interfaces for swappable components.

The read-through cache and AppState reference these protocols, not the
concrete implementations. This allows:
- Tests to use lightweight in-memory implementations
- Other keyed stores (e.g. Redis) to be swapped in without changing the cache
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from bibliomonitor.models.cache import CacheEntry


class KeyedStoreProtocol(Protocol):
    """Get/put keyed store with per-entry expiration.

    Entries disappear once ``ttl_seconds`` have elapsed since the ``put``;
    expiration is the store's responsibility. No ordering or transactional
    guarantees across keys.
    """

    async def get(self, key: str) -> CacheEntry | None: ...

    async def put(self, key: str, entry: CacheEntry, ttl_seconds: int) -> None: ...
