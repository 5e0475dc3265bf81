"""Health check router — /health endpoint for load balancers and uptime probes."""

from __future__ import annotations

from fastapi import APIRouter, Request

from server import __version__

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request) -> dict:
    """Return service health.

    Always returns 200.  Not under ``/api``, so neither rate limited nor
    counted by the stats tracker.
    """
    services = request.app.state.services
    tracker = services.tracker
    registry = services.loader.get_plugin_registry()
    return {
        "status": "ok",
        "service": "ditzzy-api",
        "version": __version__,
        "components": {
            "plugins": {
                "state": services.loader.state,
                "routed": len(registry),
                "documented": sum(1 for e in registry.values() if e.documented),
                "hot_reload": services.settings.hot_reload,
            },
            "stats": {
                "persistence": tracker.store.name if tracker.store is not None else "memory",
                "uptime": tracker.get_global_stats()["uptime"]["formatted"],
            },
        },
        "docs": "/docs",
    }


@router.get("/ready")
async def ready() -> dict:
    """Readiness probe. Returns 200 when the server is up."""
    return {"ready": True}
