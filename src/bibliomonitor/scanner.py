"""Bounded-concurrency scan of many instances."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from collections.abc import Sequence

    from bibliomonitor.config import Settings
    from bibliomonitor.models.instance import Instance
    from bibliomonitor.prober import Prober

log = structlog.get_logger()


@dataclass(frozen=True)
class ScanConfig:
    """Per-scan parameters. Immutable for the duration of one scan."""

    concurrency_limit: int
    timeout: float  # seconds, per probe
    whitelist: frozenset[str] = frozenset()

    @classmethod
    def from_settings(cls, settings: Settings) -> ScanConfig:
        return cls(
            concurrency_limit=settings.checks.concurrency_limit,
            timeout=settings.checks.timeout_ms / 1000,
            whitelist=settings.checks.whitelist,
        )


class Scanner:
    """Fans instances out to a fixed pool of probe workers.

    Work is dispatched through an ``asyncio.Queue`` (FIFO; each item is handed
    to exactly one worker) and results are fanned back in through a second
    queue, so no worker touches a shared list. Result order follows probe
    completion, not input order.
    """

    def __init__(self, prober: Prober) -> None:
        self._prober = prober

    async def scan(self, instances: Sequence[Instance], config: ScanConfig) -> list[Instance]:
        """Probe every instance and return one result per input instance."""
        if not instances:
            return []

        started = time.perf_counter()
        pending: asyncio.Queue[Instance] = asyncio.Queue()
        for instance in instances:
            pending.put_nowait(instance)
        done: asyncio.Queue[Instance] = asyncio.Queue()

        worker_count = max(1, config.concurrency_limit)
        await asyncio.gather(
            *(self._worker(pending, done, config) for _ in range(worker_count))
        )

        results: list[Instance] = []
        while not done.empty():
            results.append(done.get_nowait())

        log.info(
            "scan_complete",
            instances=len(results),
            up=sum(1 for r in results if r.is_up),
            down=sum(1 for r in results if r.is_down),
            workers=worker_count,
            elapsed_ms=round((time.perf_counter() - started) * 1000),
        )
        return results

    async def _worker(
        self,
        pending: asyncio.Queue[Instance],
        done: asyncio.Queue[Instance],
        config: ScanConfig,
    ) -> None:
        while True:
            try:
                instance = pending.get_nowait()
            except asyncio.QueueEmpty:
                return
            # probe() never raises, so one failing instance cannot stop the others
            result = await self._prober.probe(instance, config.timeout, config.whitelist)
            done.put_nowait(result)
