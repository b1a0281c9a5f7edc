from __future__ import annotations

from bibliomonitor.models.api_check import ApiCheckReport, ApiRouteFailure, ApiRouteResult
from bibliomonitor.models.cache import CacheEntry
from bibliomonitor.models.instance import Instance, InstanceStatus, error_status

__all__ = [
    # instances
    "Instance",
    "InstanceStatus",
    "error_status",
    # cache
    "CacheEntry",
    # api check
    "ApiRouteResult",
    "ApiRouteFailure",
    "ApiCheckReport",
]
