"""Cached read path for instance lists and probe results.

``checks()`` reads through the cache under ``CHECKS_KEY``; its producer in
turn reads the raw list through the cache under ``INSTANCES_KEY`` before
scanning it, so a fresh scan never re-downloads an instance list that is
still cached.
"""

from __future__ import annotations

import random
from typing import TYPE_CHECKING

import structlog
from pydantic import TypeAdapter

from bibliomonitor.errors import ErrorCode, MonitorError
from bibliomonitor.models.api_check import ApiCheckReport
from bibliomonitor.models.instance import Instance
from bibliomonitor.scanner import ScanConfig

if TYPE_CHECKING:
    from bibliomonitor.api_check import ApiChecker
    from bibliomonitor.cache import ReadThroughCache
    from bibliomonitor.config import Settings
    from bibliomonitor.scanner import Scanner
    from bibliomonitor.source import InstanceSource

log = structlog.get_logger()

INSTANCES_KEY = "instances"
CHECKS_KEY = "checks"
API_CHECK_KEY = "api:check"

_INSTANCE_LIST = TypeAdapter(list[Instance])
_API_CHECK_REPORT = TypeAdapter(ApiCheckReport)


class Monitor:
    def __init__(
        self,
        cache: ReadThroughCache,
        source: InstanceSource,
        scanner: Scanner,
        api_checker: ApiChecker,
        settings: Settings,
    ) -> None:
        self._cache = cache
        self._source = source
        self._scanner = scanner
        self._api_checker = api_checker
        self._settings = settings

    @property
    def _ttl(self) -> int:
        return self._settings.cache.ttl_seconds

    async def instances(self) -> list[Instance]:
        """Raw instance list, status as delivered by the registry."""
        return await self._cache.get_or_compute(
            INSTANCES_KEY, self._ttl, self._source.fetch_all, adapter=_INSTANCE_LIST
        )

    async def checks(self) -> list[Instance]:
        """Every instance with a probed status. Order is not meaningful."""
        return await self._cache.get_or_compute(
            CHECKS_KEY, self._ttl, self._run_scan, adapter=_INSTANCE_LIST
        )

    async def up(self) -> list[Instance]:
        return [instance for instance in await self.checks() if instance.is_up]

    async def down(self) -> list[Instance]:
        return [instance for instance in await self.checks() if instance.is_down]

    async def random_up(self) -> Instance:
        up = await self.up()
        if not up:
            raise MonitorError(
                code=ErrorCode.NO_INSTANCES_UP,
                message="No instance is currently up.",
                suggestion="Try again later or pick an instance from /down.",
                recoverable=True,
            )
        return random.choice(up)

    async def api_check(self) -> ApiCheckReport:
        return await self._cache.get_or_compute(
            API_CHECK_KEY, self._ttl, self._api_checker.run, adapter=_API_CHECK_REPORT
        )

    async def _run_scan(self) -> list[Instance]:
        instances = await self.instances()
        config = ScanConfig.from_settings(self._settings)
        log.info(
            "scan_started",
            instances=len(instances),
            concurrency_limit=config.concurrency_limit,
            timeout_ms=self._settings.checks.timeout_ms,
        )
        return await self._scanner.scan(instances, config)
