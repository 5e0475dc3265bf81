"""Integration test fixtures — the full FastAPI app over a temporary plugin tree.

Every app is built by ``server.app.create_app`` and driven through
``TestClient`` as a context manager, so the lifespan (stats load, plugin
mount, sweepers, shutdown flush) runs exactly as in production.
Run standalone: pytest tests/integration/ -v
"""

import sys
import textwrap
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

_SRC = Path(__file__).parents[2] / "src"
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))

from core.config import Settings  # noqa: E402
from server.app import create_app  # noqa: E402

PLUGINS = {
    "tools/ping.py": """
        from plugins.base import PluginHandler

        async def ping(request):
            return {"ok": True}

        handler = PluginHandler(
            name="Ping",
            description="Liveness check",
            category=["tools"],
            method="GET",
            aliases=["ping"],
            exec=ping,
        )
    """,
    "tools/echo.py": """
        from core.responses import send_success

        async def echo(request):
            return send_success(await request.json())

        handler = {"name": "Echo", "description": "Echo the body", "category": ["tools"],
                   "method": "POST", "alias": ["echo"], "exec": echo}
    """,
    "tools/boom.py": """
        def boom(request):
            raise RuntimeError("upstream exploded")

        handler = {"name": "Boom", "category": ["tools"], "method": "GET", "alias": ["boom"], "exec": boom}
    """,
    "tools/off.py": """
        handler = {"name": "Off", "category": ["tools"], "method": "GET", "alias": ["off"],
                   "disabled": True, "disabledReason": "Maintenance", "exec": lambda r: {}}
    """,
    "media/legacy.py": """
        handler = {"name": "Legacy", "category": ["media"], "method": "GET", "alias": ["legacy"],
                   "deprecated": True, "deprecatedReason": "Use v2", "exec": lambda r: {"legacy": True}}
    """,
    "hello.py": """
        handler = {"name": "Hello", "category": [], "method": "GET", "alias": ["hello"],
                   "exec": lambda r: {"message": "hi"}}
    """,
}


@pytest.fixture
def plugin_dir(tmp_path):
    root = tmp_path / "endpoints"
    for rel, source in PLUGINS.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(source).lstrip(), encoding="utf-8")
    return root


@pytest.fixture
def make_app(plugin_dir):
    """Build an app over the temporary plugin tree; keyword args override Settings."""

    def _make(**overrides):
        overrides.setdefault("plugins_dir", plugin_dir)
        overrides.setdefault("stats_file", None)
        return create_app(Settings(**overrides))

    return _make


@pytest.fixture
def client(make_app):
    """Client with a rate limit high enough to stay out of the way."""
    with TestClient(make_app(rate_limit=1000)) as c:
        yield c


@pytest.fixture
def services(client):
    return client.app.state.services
