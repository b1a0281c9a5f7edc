"""HTTP server entrypoint.

Responsibilities (and nothing more):
- Configure structlog
- Create AppState in the Starlette lifespan
- Register routes and translate MonitorError into JSON error responses
- Run uvicorn
"""

from __future__ import annotations

import asyncio
import functools
import logging
import sys
from contextlib import asynccontextmanager, suppress
from pathlib import Path
from typing import TYPE_CHECKING

import aiosqlite
import structlog
import uvicorn
from starlette.applications import Starlette
from starlette.responses import HTMLResponse, JSONResponse
from starlette.routing import Route

from bibliomonitor import __version__
from bibliomonitor.api_check import ApiChecker
from bibliomonitor.cache import ReadThroughCache
from bibliomonitor.config import Settings
from bibliomonitor.errors import ErrorCode, MonitorError
from bibliomonitor.monitor import Monitor
from bibliomonitor.prober import Prober, build_http_client, build_probe_client
from bibliomonitor.scanner import Scanner
from bibliomonitor.schedulers import run_store_cleanup_scheduler
from bibliomonitor.source import InstanceSource
from bibliomonitor.state import AppState
from bibliomonitor.store import SqliteStore

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable, Callable

    import httpx
    from starlette.requests import Request
    from starlette.responses import Response

    from bibliomonitor.models.instance import Instance

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def _setup_logging(settings: Settings) -> None:
    """Configure structlog. Called once at startup before any log statements."""
    log_level = logging.getLevelNamesMapping()[settings.logging.level]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.logging.format == "json":
        processors = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# State wiring
# ---------------------------------------------------------------------------


def build_state(
    settings: Settings,
    store: SqliteStore,
    http_client: httpx.AsyncClient,
    probe_client: httpx.AsyncClient,
) -> AppState:
    """Wire cache, source, prober, scanner and API checker.

    Probes use ``probe_client``; the source fetch and the API check share
    ``http_client``.
    """
    cache = ReadThroughCache(store, single_flight=settings.cache.single_flight_refresh)
    monitor = Monitor(
        cache=cache,
        source=InstanceSource(http_client, settings.source),
        scanner=Scanner(Prober(probe_client)),
        api_checker=ApiChecker(http_client, settings),
        settings=settings,
    )
    return AppState(
        settings=settings,
        monitor=monitor,
        cache=cache,
        store=store,
        http_client=http_client,
        probe_client=probe_client,
    )


def _build_lifespan(settings: Settings):
    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncGenerator[None, None]:
        """Create and tear down all shared resources for the server's lifetime."""
        _setup_logging(settings)
        log.info("server_starting", version=__version__)

        http_client = build_http_client(settings.http)
        probe_client = build_probe_client(settings.http, settings.checks)

        db_path = Path(settings.cache.db_path).expanduser()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(db_path))
        store = SqliteStore(db)
        await store.init_db()

        state = build_state(settings, store, http_client, probe_client)
        app.state.app_state = state
        cleanup_task = asyncio.create_task(run_store_cleanup_scheduler(state))

        log.info(
            "server_started",
            version=__version__,
            host=settings.server.host,
            port=settings.server.port,
            ttl_seconds=settings.cache.ttl_seconds,
            concurrency_limit=settings.checks.concurrency_limit,
            timeout_ms=settings.checks.timeout_ms,
            whitelist_size=len(settings.checks.whitelist),
        )

        try:
            yield
        finally:
            cleanup_task.cancel()
            with suppress(asyncio.CancelledError):
                await cleanup_task
            await state.cache.aclose()
            await http_client.aclose()
            await probe_client.aclose()
            await db.close()
            log.info("server_stopping")

    return lifespan


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

_ERROR_STATUS: dict[ErrorCode, int] = {
    ErrorCode.SOURCE_NOT_CONFIGURED: 503,
    ErrorCode.SOURCE_FETCH_FAILED: 502,
    ErrorCode.SOURCE_PAYLOAD_INVALID: 502,
    ErrorCode.NO_INSTANCES_UP: 503,
    ErrorCode.API_CHECK_NOT_CONFIGURED: 503,
}

_INDEX_HTML = """<!DOCTYPE html>
<html lang="en">
  <head>
    <meta charset="UTF-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1.0" />
    <title>BiblioReads Monitor</title>
    <style>
      body { font-family: sans-serif; margin: 2rem; line-height: 1.6; }
      a { color: #0066cc; text-decoration: none; }
      a:hover { text-decoration: underline; }
    </style>
  </head>
  <body>
    <h1>BiblioReads Monitor</h1>
    <ul>
      <li><a href="/instances">Raw Instance List</a></li>
      <li><a href="/all">All Instances</a></li>
      <li><a href="/up">Up Instances</a></li>
      <li><a href="/down">Down Instances</a></li>
      <li><a href="/random">Random Up Instance</a></li>
      <li><a href="/api-check">API Health Check</a></li>
    </ul>
  </body>
</html>
"""


def _serialise_error(error: MonitorError) -> JSONResponse:
    return JSONResponse(error.to_dict(), status_code=_ERROR_STATUS.get(error.code, 500))


def _instances_response(instances: list[Instance]) -> JSONResponse:
    return JSONResponse([i.model_dump(mode="json", exclude_none=True) for i in instances])


def _route(
    name: str,
) -> Callable[[Callable[[Request], Awaitable[Response]]], Callable[[Request], Awaitable[Response]]]:
    """Log and serialise MonitorError; log and re-raise anything else."""

    def decorator(
        handler: Callable[[Request], Awaitable[Response]],
    ) -> Callable[[Request], Awaitable[Response]]:
        @functools.wraps(handler)
        async def wrapper(request: Request) -> Response:
            try:
                return await handler(request)
            except MonitorError as exc:
                log.warning(
                    "route_error",
                    route=name,
                    code=exc.code,
                    message=exc.message,
                    recoverable=exc.recoverable,
                )
                return _serialise_error(exc)
            except Exception:
                log.error("route_unexpected_error", route=name, exc_info=True)
                raise

        return wrapper

    return decorator


def _monitor(request: Request) -> Monitor:
    state: AppState = request.app.state.app_state
    return state.monitor


async def index(request: Request) -> Response:
    return HTMLResponse(_INDEX_HTML)


@_route("instances")
async def list_instances(request: Request) -> Response:
    return _instances_response(await _monitor(request).instances())


@_route("all")
async def list_checks(request: Request) -> Response:
    return _instances_response(await _monitor(request).checks())


@_route("up")
async def list_up(request: Request) -> Response:
    return _instances_response(await _monitor(request).up())


@_route("down")
async def list_down(request: Request) -> Response:
    return _instances_response(await _monitor(request).down())


@_route("random")
async def random_up(request: Request) -> Response:
    instance = await _monitor(request).random_up()
    return JSONResponse(instance.model_dump(mode="json", exclude_none=True))


@_route("api-check")
async def api_check(request: Request) -> Response:
    report = await _monitor(request).api_check()
    return JSONResponse(report.model_dump(mode="json", exclude_none=True))


ROUTES = [
    Route("/", index),
    Route("/instances", list_instances),
    Route("/all", list_checks),
    Route("/up", list_up),
    Route("/down", list_down),
    Route("/random", random_up),
    Route("/api-check", api_check),
]


def create_app(settings: Settings | None = None, *, state: AppState | None = None) -> Starlette:
    """Build the ASGI app.

    With ``state`` given the lifespan is skipped and the caller owns every
    resource; tests use this to run routes against in-memory components.
    """
    if state is not None:
        app = Starlette(routes=ROUTES)
        app.state.app_state = state
        return app
    return Starlette(routes=ROUTES, lifespan=_build_lifespan(settings or Settings()))


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main() -> None:
    settings = Settings()
    uvicorn.run(
        create_app(settings),
        host=settings.server.host,
        port=settings.server.port,
        log_config=None,  # Disable uvicorn's default logging; structlog handles it
    )


if __name__ == "__main__":
    main()
