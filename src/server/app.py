"""
server/app.py — FastAPI application factory and process entry point.

Startup modes:
  python -m server.app              → serve on $HOST:$PORT (default 0.0.0.0:7860)
  ditzzy serve --hot-reload         → same, watching the plugin directory
  uvicorn --factory server.app:create_app  → external ASGI server

The server owns no endpoint logic: every route under ``/api`` comes from the
plugin directory via :class:`plugins.PluginLoader`, apart from the discovery
and stats routes in ``server/routers/meta.py``.  Per request:

  rate limit  →  dispatch (meta routes, then plugin router)  →  stats tracking
"""

from __future__ import annotations

import asyncio
import sys
import threading
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass

import uvicorn
from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from core.config import API_PREFIX, STATS_EXCLUDED_PATHS, Settings, load_env
from core.logger import get_logger
from core.ratelimit import RateLimiter
from core.stats import StatsTracker
from core.storage import build_store
from plugins import UNMATCHED_ROUTE, PluginLoader
from server.routers.health import router as health_router
from server.routers.meta import router as meta_router

http_log = get_logger("http")
stats_log = get_logger("stats")
shutdown_log = get_logger("shutdown")


@dataclass
class Services:
    """Process-wide collaborators, owned by the app and reachable via ``app.state``."""

    settings: Settings
    tracker: StatsTracker
    limiter: RateLimiter
    loader: PluginLoader


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _under_prefix(path: str, prefix: str = API_PREFIX) -> bool:
    return path == prefix or path.startswith(prefix + "/")


# ── Middleware ─────────────────────────────────────────────────────────────────


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Fixed-window gate for everything under ``/api``; 429 once over the limit."""

    def __init__(self, app, limiter: RateLimiter, prefix: str = API_PREFIX) -> None:
        super().__init__(app)
        self.limiter = limiter
        self.prefix = prefix

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not _under_prefix(request.url.path, self.prefix):
            return await call_next(request)

        decision = self.limiter.check(client_ip(request))
        if not decision.allowed:
            return JSONResponse(decision.body(), status_code=429, headers=decision.headers())

        response = await call_next(request)
        response.headers.update(decision.headers())
        return response


class RequestStatsMiddleware(BaseHTTPMiddleware):
    """Log ``/api`` requests and feed their outcome to the stats tracker."""

    def __init__(
        self,
        app,
        tracker: StatsTracker,
        prefix: str = API_PREFIX,
        excluded: tuple[str, ...] = STATS_EXCLUDED_PATHS,
    ) -> None:
        super().__init__(app)
        self.tracker = tracker
        self.prefix = prefix
        self.excluded = excluded

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if not _under_prefix(path, self.prefix):
            return await call_next(request)

        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            self._record(request, path, 500, start)
            raise
        self._record(request, path, response.status_code, start)
        return response

    def _record(self, request: Request, path: str, status_code: int, start: float) -> None:
        duration_ms = int((time.perf_counter() - start) * 1000)
        http_log.info("%s %s %d in %dms", request.method, path, status_code, duration_ms)
        if path.startswith(self.excluded):
            return
        ip = client_ip(request)
        endpoint = None if request.scope.get(UNMATCHED_ROUTE) else path
        if not self.tracker.track_request(endpoint, status_code, ip):
            stats_log.info("Failed request from %s not tracked (limit exceeded)", ip)


# ── Error handlers ─────────────────────────────────────────────────────────────


async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    path = request.url.path
    if exc.status_code == 404 and _under_prefix(path):
        body = {"message": "API endpoint not found", "path": path}
    else:
        body = {"message": exc.detail}
    return JSONResponse(body, status_code=exc.status_code, headers=getattr(exc, "headers", None))


async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        {"message": "Invalid request", "errors": jsonable_encoder(exc.errors())},
        status_code=400,
    )


async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    http_log.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"message": "Internal Server Error"}, status_code=500)


# ── Crash flush ────────────────────────────────────────────────────────────────


def install_crash_handlers(tracker: StatsTracker) -> None:
    """Flush stats before the default handling of uncaught exceptions runs."""
    previous_hook = sys.excepthook
    previous_thread_hook = threading.excepthook

    def _excepthook(exc_type, exc, tb):
        shutdown_log.error("Uncaught exception: %s", exc)
        tracker.save_stats()
        previous_hook(exc_type, exc, tb)

    def _thread_excepthook(args):
        name = args.thread.name if args.thread else "?"
        shutdown_log.error("Uncaught exception in thread %s: %s", name, args.exc_value)
        tracker.save_stats()
        previous_thread_hook(args)

    sys.excepthook = _excepthook
    threading.excepthook = _thread_excepthook


def _loop_exception_handler(tracker: StatsTracker):
    def handler(loop: asyncio.AbstractEventLoop, context: dict) -> None:
        shutdown_log.error("Unhandled error in event loop: %s", context.get("message"))
        tracker.save_stats()
        loop.default_exception_handler(context)

    return handler


# ── Application factory ────────────────────────────────────────────────────────


@asynccontextmanager
async def _lifespan(app: FastAPI):
    services: Services = app.state.services
    services.tracker.load_stats()
    services.loader.load_plugins(app, enable_hot_reload=services.settings.hot_reload)
    services.limiter.start_sweeper()
    services.tracker.start_sweeper()
    asyncio.get_running_loop().set_exception_handler(_loop_exception_handler(services.tracker))
    try:
        yield
    finally:
        shutdown_log.info("Shutting down, saving stats...")
        services.loader.stop_hot_reload()
        services.limiter.stop_sweeper()
        services.tracker.shutdown()


def build_services(
    settings: Settings,
    tracker: StatsTracker | None = None,
    limiter: RateLimiter | None = None,
    loader: PluginLoader | None = None,
) -> Services:
    """Construct whichever collaborators were not supplied, from ``settings``."""
    if tracker is None:
        tracker = StatsTracker(
            build_store(settings),
            max_fails_per_ip=settings.stats_max_fails_per_ip,
            granularity=settings.stats_granularity,
        )
    if limiter is None:
        limiter = RateLimiter(limit=settings.rate_limit, window=settings.rate_limit_window_ms / 1000)
    if loader is None:
        loader = PluginLoader(settings.plugins_dir, require_description=settings.require_description)
    return Services(settings=settings, tracker=tracker, limiter=limiter, loader=loader)


def create_app(
    settings: Settings | None = None,
    *,
    tracker: StatsTracker | None = None,
    limiter: RateLimiter | None = None,
    loader: PluginLoader | None = None,
) -> FastAPI:
    """Build and return the configured FastAPI application."""
    if settings is None:
        load_env()
        settings = Settings.from_env()
    services = build_services(settings, tracker, limiter, loader)

    application = FastAPI(title="Ditzzy API", docs_url="/docs", redoc_url=None, lifespan=_lifespan)
    application.state.services = services

    application.add_exception_handler(StarletteHTTPException, _http_error)
    application.add_exception_handler(RequestValidationError, _validation_error)
    application.add_exception_handler(Exception, _unhandled_error)

    # Last added runs first: rate limiting wraps stats tracking.
    application.add_middleware(RequestStatsMiddleware, tracker=services.tracker)
    application.add_middleware(RateLimitMiddleware, limiter=services.limiter)

    application.include_router(health_router)
    application.include_router(meta_router)
    # Plugin routes are mounted at /api by the loader during startup.
    return application


# ── Entry point ────────────────────────────────────────────────────────────────


def serve(settings: Settings | None = None) -> None:
    if settings is None:
        load_env()
        settings = Settings.from_env()
    application = create_app(settings)
    install_crash_handlers(application.state.services.tracker)
    http_log.info(
        "Serving on http://%s:%d (hot reload %s)",
        settings.host, settings.port, "on" if settings.hot_reload else "off",
    )
    uvicorn.run(application, host=settings.host, port=settings.port, log_level="warning")


def main() -> None:
    serve()


if __name__ == "__main__":
    main()
