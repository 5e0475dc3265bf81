"""
conftest.py — Shared pytest fixtures for the unit test suite.
"""

import sys
import textwrap
from pathlib import Path

import pytest

# src/ is the Python root for all packages (core, plugins, server, cli)
_SRC = Path(__file__).parent.parent.parent / "src"
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))


_ENV_VARS = (
    "HOST",
    "PORT",
    "APP_ENV",
    "PLUGINS_HOT_RELOAD",
    "PLUGINS_DIR",
    "PLUGINS_REQUIRE_DESCRIPTION",
    "RATE_LIMIT",
    "RATE_LIMIT_WINDOW_MS",
    "STATS_FILE",
    "STATS_MAX_FAILS_PER_IP",
    "STATS_GRANULARITY",
    "UPSTASH_REDIS_REST_URL",
    "UPSTASH_REDIS_REST_TOKEN",
)


@pytest.fixture
def clean_env(monkeypatch):
    """Environment with none of the server's variables set.

    Each variable is set before being deleted so monkeypatch also undoes
    anything ``load_env()`` writes during the test.
    """
    for name in _ENV_VARS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    return monkeypatch


@pytest.fixture
def plugin_dir(tmp_path):
    """Empty plugin root directory."""
    d = tmp_path / "endpoints"
    d.mkdir()
    return d


@pytest.fixture
def write_plugin(plugin_dir):
    """Write an endpoint module under the plugin root; returns its path."""

    def _write(rel: str, source: str) -> Path:
        path = plugin_dir / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(source).lstrip(), encoding="utf-8")
        return path

    return _write


PING_PLUGIN = """
from plugins.base import PluginHandler

async def ping(request):
    return {"ok": True}

handler = PluginHandler(
    name="Ping",
    description="Liveness check",
    category=["tools"],
    method="GET",
    aliases=["ping", "p"],
    exec=ping,
)
"""

ECHO_PLUGIN = """
from plugins.base import PluginHandler

async def echo(request):
    return {"echo": await request.json()}

handler = PluginHandler(
    name="Echo",
    description="Echo the JSON body",
    category=["tools"],
    method="POST",
    aliases=["echo"],
    exec=echo,
)
"""

HIDDEN_PLUGIN = """
handler = {
    "name": "Greet user",
    "description": "Greet the user",
    "method": "GET",
    "category": [],
    "alias": ["hello"],
    "exec": lambda request: {"message": "hi"},
}
"""

NO_EXEC_PLUGIN = """
handler = {
    "name": "Broken",
    "category": ["tools"],
    "method": "GET",
    "alias": ["broken"],
}
"""


@pytest.fixture
def sample_plugins(write_plugin):
    """Two documented tools endpoints plus one hidden root endpoint."""
    write_plugin("tools/ping.py", PING_PLUGIN)
    write_plugin("tools/echo.py", ECHO_PLUGIN)
    write_plugin("greet.py", HIDDEN_PLUGIN)
