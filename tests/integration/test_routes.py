"""HTTP route tests.

The app is exercised through httpx's ASGI transport so no real server is
started. Upstream calls made by the app go through a separate client backed
by httpx.MockTransport.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import pytest

from bibliomonitor.api_check import API_ROUTES
from bibliomonitor.errors import ErrorCode
from bibliomonitor.server import build_state, create_app

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from bibliomonitor.config import Settings
    from bibliomonitor.state import AppState
    from bibliomonitor.store import SqliteStore

SOURCE_URL = "https://registry.example/instances.json"

REGISTRY = [
    {"url": "https://up.example", "country": "DE"},
    {"url": "https://broken.example"},
]


class _Upstream:
    """Routes upstream requests by (method, url); unknown URLs refuse connections."""

    def __init__(self) -> None:
        self.responses: dict[tuple[str, str], httpx.Response] = {}
        self.calls: list[tuple[str, str]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        key = (request.method, str(request.url))
        self.calls.append(key)
        if key not in self.responses:
            raise httpx.ConnectError("Connection refused", request=request)
        response = self.responses[key]
        return httpx.Response(response.status_code, content=response.content)


@pytest.fixture()
def upstream() -> _Upstream:
    upstream = _Upstream()
    upstream.responses[("GET", SOURCE_URL)] = httpx.Response(200, json=REGISTRY)
    upstream.responses[("HEAD", "https://up.example/")] = httpx.Response(200)
    upstream.responses[("HEAD", "https://broken.example/")] = httpx.Response(503)
    return upstream


@pytest.fixture()
async def route_state(
    settings: Settings, store: SqliteStore, upstream: _Upstream
) -> AsyncGenerator[AppState, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(upstream)) as upstream_client:
        state = build_state(settings, store, upstream_client, upstream_client)
        yield state
        await state.cache.aclose()


@pytest.fixture()
async def client(route_state: AppState) -> AsyncGenerator[httpx.AsyncClient, None]:
    app = create_app(state=route_state)
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://testserver"
    ) as client:
        yield client


class TestIndex:
    async def test_lists_routes(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        for path in ("/instances", "/all", "/up", "/down", "/random", "/api-check"):
            assert f'href="{path}"' in response.text


class TestInstanceRoutes:
    async def test_instances_returns_raw_list(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/instances")
        assert response.status_code == 200
        assert response.json() == REGISTRY

    async def test_instances_keeps_registry_status_unchanged(
        self, client: httpx.AsyncClient, upstream: _Upstream
    ) -> None:
        registry = [{"url": "https://up.example", "status": 1, "online": True}]
        upstream.responses[("GET", SOURCE_URL)] = httpx.Response(200, json=registry)

        first = await client.get("/instances")
        cached = await client.get("/instances")

        assert first.json() == registry
        assert cached.json() == registry

    async def test_probe_overwrites_registry_status(
        self, client: httpx.AsyncClient, upstream: _Upstream
    ) -> None:
        upstream.responses[("GET", SOURCE_URL)] = httpx.Response(
            200, json=[{"url": "https://up.example", "status": 1}]
        )

        response = await client.get("/all")

        assert response.json() == [{"url": "https://up.example", "status": "up"}]

    async def test_all_returns_checked_instances(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/all")
        assert response.status_code == 200
        by_url = {i["url"]: i for i in response.json()}
        assert by_url["https://up.example"] == {
            "url": "https://up.example",
            "status": "up",
            "country": "DE",
        }
        assert by_url["https://broken.example"] == {
            "url": "https://broken.example",
            "status": "error (503)",
        }

    async def test_up(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/up")
        assert [i["url"] for i in response.json()] == ["https://up.example"]

    async def test_down(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/down")
        assert [i["url"] for i in response.json()] == ["https://broken.example"]

    async def test_random(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/random")
        assert response.status_code == 200
        assert response.json()["url"] == "https://up.example"

    async def test_views_share_one_scan(
        self, client: httpx.AsyncClient, upstream: _Upstream
    ) -> None:
        for path in ("/all", "/up", "/down", "/random"):
            await client.get(path)
        heads = [call for call in upstream.calls if call[0] == "HEAD"]
        assert len(heads) == len(REGISTRY)


class TestErrorEnvelope:
    async def test_source_failure_returns_502(
        self, client: httpx.AsyncClient, upstream: _Upstream
    ) -> None:
        upstream.responses[("GET", SOURCE_URL)] = httpx.Response(500)

        response = await client.get("/all")

        assert response.status_code == 502
        error = response.json()["error"]
        assert error["code"] == ErrorCode.SOURCE_FETCH_FAILED
        assert error["recoverable"] is True
        assert set(error) == {"code", "message", "suggestion", "recoverable"}

    async def test_malformed_source_returns_502(
        self, client: httpx.AsyncClient, upstream: _Upstream
    ) -> None:
        upstream.responses[("GET", SOURCE_URL)] = httpx.Response(200, json={"url": "x"})

        response = await client.get("/instances")

        assert response.status_code == 502
        assert response.json()["error"]["code"] == ErrorCode.SOURCE_PAYLOAD_INVALID

    async def test_random_with_nothing_up_returns_503(
        self, client: httpx.AsyncClient, upstream: _Upstream
    ) -> None:
        upstream.responses[("HEAD", "https://up.example/")] = httpx.Response(500)

        response = await client.get("/random")

        assert response.status_code == 503
        assert response.json()["error"]["code"] == ErrorCode.NO_INSTANCES_UP


class TestApiCheckRoute:
    async def test_report(self, client: httpx.AsyncClient, upstream: _Upstream) -> None:
        for path, _ in API_ROUTES:
            upstream.responses[("POST", f"https://api.example.com{path}")] = httpx.Response(
                200, json={"ok": True}
            )

        response = await client.get("/api-check")

        assert response.status_code == 200
        body = response.json()
        assert len(body["results"]) == len(API_ROUTES)
        assert body["failures"] == []
        assert all(r["passed"] for r in body["results"])
