from __future__ import annotations

from pydantic import BaseModel


class ApiRouteResult(BaseModel):
    """Outcome of one API route probe."""

    url: str
    status: int | None = None  # None when no response was received
    passed: bool
    error: str | None = None


class ApiRouteFailure(BaseModel):
    url: str
    status: int | None = None
    error: str | None = None
    snippet: str | None = None  # First 200 chars of the response body


class ApiCheckReport(BaseModel):
    results: list[ApiRouteResult] = []
    failures: list[ApiRouteFailure] = []
