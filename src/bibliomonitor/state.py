"""Application state container.

AppState is created once at server startup (inside the Starlette lifespan)
and attached to ``app.state``. Route handlers reach it through the request.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import httpx

    from bibliomonitor.cache import ReadThroughCache
    from bibliomonitor.config import Settings
    from bibliomonitor.monitor import Monitor
    from bibliomonitor.store import SqliteStore


@dataclass
class AppState:
    """Holds all shared runtime state."""

    settings: Settings
    monitor: Monitor
    cache: ReadThroughCache
    store: SqliteStore | None = None
    http_client: httpx.AsyncClient | None = None
    probe_client: httpx.AsyncClient | None = None
