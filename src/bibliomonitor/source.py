"""Instance registry source: downloads the raw instance list."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import structlog
from pydantic import TypeAdapter, ValidationError

from bibliomonitor.errors import ErrorCode, MonitorError
from bibliomonitor.models.instance import Instance

if TYPE_CHECKING:
    from bibliomonitor.config import SourceSettings

log = structlog.get_logger()

INSTANCE_LIST = TypeAdapter(list[Instance])


class InstanceSource:
    """Fetches the instance list from the registry URL.

    Every failure is raised as MonitorError so that it reaches the caller of
    the read-through cache as an ordinary producer failure.
    """

    def __init__(self, client: httpx.AsyncClient, settings: SourceSettings) -> None:
        self._client = client
        self._url = settings.url

    async def fetch_all(self) -> list[Instance]:
        if not self._url:
            raise MonitorError(
                code=ErrorCode.SOURCE_NOT_CONFIGURED,
                message="No instance source URL configured.",
                suggestion="Set BIBLIOMONITOR__SOURCE__URL to the registry's JSON list.",
                recoverable=False,
            )

        try:
            response = await self._client.get(self._url)
        except httpx.HTTPError as exc:
            raise MonitorError(
                code=ErrorCode.SOURCE_FETCH_FAILED,
                message=f"Network error fetching {self._url}: {exc}",
                suggestion="The instance registry may be temporarily unavailable.",
                recoverable=True,
            ) from exc

        if not response.is_success:
            raise MonitorError(
                code=ErrorCode.SOURCE_FETCH_FAILED,
                message=f"HTTP {response.status_code} fetching {self._url}",
                suggestion="The instance registry may be temporarily unavailable.",
                recoverable=True,
            )

        try:
            instances = INSTANCE_LIST.validate_json(response.content)
        except ValidationError as exc:
            raise MonitorError(
                code=ErrorCode.SOURCE_PAYLOAD_INVALID,
                message=f"Instance registry at {self._url} returned an unexpected payload.",
                suggestion="The registry must serve a JSON array of objects with a 'url' field.",
                recoverable=False,
            ) from exc

        log.info("source_fetch_complete", url=self._url, instances=len(instances))
        return instances
