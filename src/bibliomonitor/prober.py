"""Single-instance liveness probe.

Probes go through their own httpx.AsyncClient, separate from the one used
for the source fetch and the API check. Its pool holds one connection per
scanner worker, so waiting for a pool slot never eats into a probe's
deadline. Both clients are created by the lifespan and injected.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

import httpx
import structlog

from bibliomonitor.models.instance import InstanceStatus, error_status

if TYPE_CHECKING:
    from bibliomonitor.config import ChecksSettings, HttpSettings
    from bibliomonitor.models.instance import Instance

log = structlog.get_logger()

# HEAD answers that warrant a second try with GET
_RETRY_WITH_GET = frozenset({403, 405})


def build_http_client(settings: HttpSettings) -> httpx.AsyncClient:
    """Create the shared httpx client. Called once at startup."""
    return _client(
        settings,
        httpx.Limits(
            max_connections=settings.max_connections,
            max_keepalive_connections=settings.max_keepalive_connections,
        ),
    )


def build_probe_client(settings: HttpSettings, checks: ChecksSettings) -> httpx.AsyncClient:
    """Create the client used by Prober. Called once at startup.

    The pool is sized to ``checks.concurrency_limit`` regardless of
    ``settings.max_connections``: each scanner worker has at most one probe
    in flight, so every worker always finds a free connection.
    """
    return _client(
        settings,
        httpx.Limits(
            max_connections=checks.concurrency_limit,
            max_keepalive_connections=checks.concurrency_limit,
        ),
    )


def _client(settings: HttpSettings, limits: httpx.Limits) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        follow_redirects=True,
        # Upper bound only; probe deadlines are enforced by Prober itself
        timeout=httpx.Timeout(30.0),
        headers={"User-Agent": settings.user_agent},
        limits=limits,
    )


def _describe_failure(exc: BaseException, timeout: float) -> str:
    if isinstance(exc, TimeoutError):
        return f"Timed out after {round(timeout * 1000)}ms"
    return str(exc) or type(exc).__name__


def _with_status(
    instance: Instance,
    status: str,
    *,
    note: str | None = None,
    error: str | None = None,
) -> Instance:
    # Copy, never mutate: the input may be shared with other workers
    return instance.model_copy(update={"status": str(status), "note": note, "error": error})


class Prober:
    """HEAD-then-GET liveness probe with a whitelist override."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def probe(
        self,
        instance: Instance,
        timeout: float,
        whitelist: frozenset[str],
    ) -> Instance:
        """Probe ``instance.url`` and return a copy with status populated.

        ``timeout`` (seconds) is a single deadline covering both the HEAD and
        the fallback GET. Never raises: every failure becomes a status.
        """
        started = time.perf_counter()
        whitelisted = instance.url in whitelist

        try:
            async with asyncio.timeout(timeout):
                response = await self._client.head(instance.url)
                if response.status_code in _RETRY_WITH_GET:
                    response = await self._client.get(instance.url)
        except Exception as exc:
            if whitelisted:
                result = _with_status(instance, InstanceStatus.UP, note="whitelisted (fetch failed)")
            else:
                result = _with_status(
                    instance, InstanceStatus.DOWN, error=_describe_failure(exc, timeout)
                )
            self._log_result(result, started)
            return result

        if response.is_success or response.status_code == 403:
            result = _with_status(instance, InstanceStatus.UP)
        elif whitelisted:
            result = _with_status(instance, InstanceStatus.UP, note="whitelisted")
        else:
            result = _with_status(instance, error_status(response.status_code))

        self._log_result(result, started)
        return result

    @staticmethod
    def _log_result(result: Instance, started: float) -> None:
        log.debug(
            "probe_complete",
            url=result.url,
            status=result.status,
            note=result.note,
            error=result.error,
            elapsed_ms=round((time.perf_counter() - started) * 1000),
        )
