"""Background scheduler coroutines for store maintenance."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from bibliomonitor.state import AppState


async def run_store_cleanup_scheduler(state: AppState) -> None:
    """Purge expired store entries at startup and then on the configured interval."""
    interval_hours = state.settings.cache.cleanup_interval_hours

    # Skips itself if a previous process ran it recently.
    if state.store is not None:
        await state.store.cleanup_if_due(interval_hours)

    while True:
        await asyncio.sleep(interval_hours * 3600)
        if state.store is not None:
            await state.store.cleanup_if_due(interval_hours)
