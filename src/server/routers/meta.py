"""Discovery and statistics routes.

Endpoints:
    GET /api/plugins                       — documented plugins
    GET /api/plugins/category/{category}   — documented plugins in one category
    GET /api/categories                    — plugin count per category
    GET /api/stats                         — global stats + top endpoints
    GET /api/stats/visitors?days=N         — distinct visitors per period

None of these are counted by the stats tracker.
"""

from __future__ import annotations

from fastapi import APIRouter, Request

from core.config import API_PREFIX, STATS_TOP_ENDPOINTS, VISITOR_CHART_DEFAULT_DAYS, VISITOR_CHART_MAX_DAYS

router = APIRouter(prefix=API_PREFIX, tags=["meta"])


def _services(request: Request):
    return request.app.state.services


def parse_days(raw: str | None) -> int:
    """Chart length from the query string; junk or non-positive → default."""
    try:
        days = int(raw) if raw is not None else 0
    except ValueError:
        days = 0
    if days <= 0:
        return VISITOR_CHART_DEFAULT_DAYS
    return min(days, VISITOR_CHART_MAX_DAYS)


@router.get("/plugins")
async def list_plugins(request: Request) -> dict:
    metadata = _services(request).loader.get_plugin_metadata()
    return {
        "success": True,
        "count": len(metadata),
        "plugins": [m.to_json() for m in metadata],
    }


@router.get("/plugins/category/{category}")
async def list_plugins_by_category(category: str, request: Request) -> dict:
    metadata = [m for m in _services(request).loader.get_plugin_metadata() if category in m.category]
    return {
        "success": True,
        "category": category,
        "count": len(metadata),
        "plugins": [m.to_json() for m in metadata],
    }


@router.get("/categories")
async def list_categories(request: Request) -> dict:
    counts: dict[str, int] = {}
    for meta in _services(request).loader.get_plugin_metadata():
        for cat in meta.category:
            counts[cat] = counts.get(cat, 0) + 1
    return {
        "success": True,
        "categories": [{"name": name, "count": count} for name, count in counts.items()],
    }


@router.get("/stats")
async def get_stats(request: Request) -> dict:
    tracker = _services(request).tracker
    return {
        "success": True,
        "stats": {
            "global": tracker.get_global_stats(),
            "topEndpoints": tracker.get_top_endpoints(STATS_TOP_ENDPOINTS),
        },
    }


@router.get("/stats/visitors")
async def get_visitor_stats(request: Request, days: str | None = None) -> dict:
    tracker = _services(request).tracker
    return {"success": True, "data": tracker.get_visitor_chart_data(parse_days(days))}
