"""Health check of the scraper API behind the instances.

POSTs a known query to each API route, records which routes answered with
valid JSON and a 2xx status, and sends an ntfy notification listing the
failures. Runs behind the read-through cache like the instance checks.
"""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING

import httpx
import structlog

from bibliomonitor.errors import ErrorCode, MonitorError
from bibliomonitor.models.api_check import ApiCheckReport, ApiRouteFailure, ApiRouteResult

if TYPE_CHECKING:
    from bibliomonitor.config import Settings

log = structlog.get_logger()

API_ROUTES: list[tuple[str, str]] = [
    ("/api/search/books", "https://www.goodreads.com/search?q=harry%20potter"),
    ("/api/book-scraper", "https://www.goodreads.com/book/show/2767052-the-hunger-games"),
    ("/api/similar-scraper", "https://goodreads.com/book/similar/1540236"),
    ("/api/author/info", "https://www.goodreads.com/author/show/1077326.J_K_Rowling"),
    ("/api/works/quotes", "https://www.goodreads.com/work/quotes/1540236"),
]

SNIPPET_LENGTH = 200


class _InvalidJSON(Exception):
    def __init__(self) -> None:
        super().__init__("Invalid JSON")


def format_failure_message(failures: list[ApiRouteFailure]) -> str:
    """Plain-text notification body, one block per failed route."""
    blocks = [f"{f.url} -> {f.error or 'bad response'}\n{f.snippet or ''}" for f in failures]
    return "API check failed:\n" + "\n\n".join(blocks)


class ApiChecker:
    def __init__(self, client: httpx.AsyncClient, settings: Settings) -> None:
        self._client = client
        self._domain = settings.api_check.domain
        self._ntfy_url = settings.notify.ntfy_url

    async def run(self) -> ApiCheckReport:
        if not self._domain:
            raise MonitorError(
                code=ErrorCode.API_CHECK_NOT_CONFIGURED,
                message="No API domain configured.",
                suggestion="Set BIBLIOMONITOR__API_CHECK__DOMAIN to the API host name.",
                recoverable=False,
            )

        outcomes = await asyncio.gather(
            *(self._check_route(path, query_url) for path, query_url in API_ROUTES)
        )
        report = ApiCheckReport(
            results=[result for result, _ in outcomes],
            failures=[failure for _, failure in outcomes if failure is not None],
        )

        log.info(
            "api_check_complete",
            domain=self._domain,
            routes=len(report.results),
            failures=len(report.failures),
        )
        if report.failures:
            await self._notify(report.failures)
        return report

    async def _check_route(
        self, path: str, query_url: str
    ) -> tuple[ApiRouteResult, ApiRouteFailure | None]:
        url = f"https://{self._domain}{path}"
        try:
            response = await self._client.post(url, json={"queryURL": query_url})
            raw = response.text
            try:
                json.loads(raw)
            except ValueError:
                raise _InvalidJSON() from None
        except (httpx.HTTPError, _InvalidJSON) as exc:
            error = str(exc) or type(exc).__name__
            return (
                ApiRouteResult(url=url, passed=False, error=error),
                ApiRouteFailure(url=url, error=error),
            )

        passed = response.is_success
        result = ApiRouteResult(url=url, status=response.status_code, passed=passed)
        if passed:
            return result, None
        return result, ApiRouteFailure(
            url=url, status=response.status_code, snippet=raw[:SNIPPET_LENGTH]
        )

    async def _notify(self, failures: list[ApiRouteFailure]) -> None:
        """Send the failure summary to ntfy. Non-fatal on failure."""
        if not self._ntfy_url:
            log.debug("api_check_notify_skipped", reason="ntfy_url_not_configured")
            return
        try:
            response = await self._client.post(
                self._ntfy_url,
                content=format_failure_message(failures),
                headers={"title": "API Health Check Failure", "priority": "3"},
            )
            response.raise_for_status()
        except httpx.HTTPError:
            log.warning("api_check_notify_failed", ntfy_url=self._ntfy_url, exc_info=True)
