"""
test_cli.py — Unit tests for cli/main.py

Commands run through Typer's CliRunner; the server-facing commands talk to an
httpx.MockTransport instead of a live process.
"""

import httpx
import pytest
from typer.testing import CliRunner

import cli.main as cli_main
from cli import __version__
from cli.client import Client
from core.stats import StatsTracker
from core.storage import FileStatsStore

runner = CliRunner()

NOW = 1_700_000_000_000


@pytest.fixture
def mock_server(monkeypatch):
    """Point every CLI Client at a MockTransport answering /ready, /health and /api/stats."""

    def handler(request):
        if request.url.path == "/ready":
            return httpx.Response(200, json={"ready": True})
        if request.url.path == "/health":
            return httpx.Response(
                200,
                json={
                    "status": "ok",
                    "service": "ditzzy-api",
                    "version": "1.0.0",
                    "components": {"plugins": {"state": "loaded", "routed": 4}},
                },
            )
        if request.url.path == "/api/stats":
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "stats": {
                        "global": {"totalRequests": 42, "totalSuccess": 40, "totalFailed": 2},
                        "topEndpoints": [{"endpoint": "/api/tools/ping", "totalRequests": 42}],
                    },
                },
            )
        return httpx.Response(404, json={"message": "API endpoint not found"})

    monkeypatch.setattr(
        cli_main, "Client", lambda base_url: Client(base_url, transport=httpx.MockTransport(handler))
    )


class TestRoot:
    def test_version(self):
        result = runner.invoke(cli_main.app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_no_command_prints_help(self):
        result = runner.invoke(cli_main.app, [])
        assert result.exit_code == 0
        assert "serve" in result.output
        assert "plugins" in result.output


class TestPluginsCommand:
    def test_lists_routed_endpoints_including_hidden(self, clean_env, plugin_dir, sample_plugins):
        result = runner.invoke(cli_main.app, ["plugins", "--dir", str(plugin_dir)])
        assert result.exit_code == 0, result.output
        assert "/api/tools/ping" in result.output
        assert "/api/tools/echo" in result.output
        assert "/api/hello" in result.output
        assert "hidden" in result.output

    def test_documented_only(self, clean_env, plugin_dir, sample_plugins):
        result = runner.invoke(cli_main.app, ["plugins", "--dir", str(plugin_dir), "--documented"])
        assert result.exit_code == 0
        assert "/api/tools/ping" in result.output
        assert "/api/hello" not in result.output

    def test_missing_directory_fails(self, clean_env, tmp_path):
        result = runner.invoke(cli_main.app, ["plugins", "--dir", str(tmp_path / "missing")])
        assert result.exit_code == 1
        assert "plugin directory not found" in result.output


class TestStatsCommand:
    def test_summarises_stats_file(self, clean_env, tmp_path):
        path = tmp_path / "stats.json"
        tracker = StatsTracker()
        for i in range(3):
            tracker.track_request("/api/x", 200, f"10.0.0.{i}", now=NOW)
        FileStatsStore(path).save(tracker.to_record())

        result = runner.invoke(cli_main.app, ["stats", "--file", str(path)])
        assert result.exit_code == 0, result.output
        assert "API Stats" in result.output
        assert "100.00%" in result.output
        assert "/api/x" in result.output

    def test_missing_file_fails(self, clean_env, tmp_path):
        result = runner.invoke(cli_main.app, ["stats", "--file", str(tmp_path / "none.json")])
        assert result.exit_code == 1
        assert "No stats file" in result.output

    def test_corrupt_file_fails(self, clean_env, tmp_path):
        path = tmp_path / "stats.json"
        path.write_text("{oops")
        result = runner.invoke(cli_main.app, ["stats", "--file", str(path)])
        assert result.exit_code == 1

    def test_live_stats_from_server(self, mock_server):
        result = runner.invoke(cli_main.app, ["stats", "--url", "http://api.test"])
        assert result.exit_code == 0, result.output
        assert "42" in result.output
        assert "/api/tools/ping" in result.output


class TestHealthCommand:
    def test_prints_component_health(self, mock_server):
        result = runner.invoke(cli_main.app, ["health", "--url", "http://api.test"])
        assert result.exit_code == 0, result.output
        assert "OK" in result.output
        assert "plugins.state" in result.output

    def test_unreachable_server_fails(self, monkeypatch):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        monkeypatch.setattr(
            cli_main, "Client", lambda base_url: Client(base_url, transport=httpx.MockTransport(refuse))
        )
        result = runner.invoke(cli_main.app, ["health", "--url", "http://api.test"])
        assert result.exit_code == 1
        assert "not reachable" in result.output


class TestServeCommand:
    def test_flags_override_environment(self, clean_env, monkeypatch, tmp_path):
        captured = []
        monkeypatch.setattr("server.app.serve", captured.append)
        clean_env.setenv("PORT", "9000")

        result = runner.invoke(
            cli_main.app, ["serve", "--port", "9999", "--hot-reload", "--dir", str(tmp_path)]
        )
        assert result.exit_code == 0, result.output
        settings = captured[0]
        assert settings.port == 9999
        assert settings.hot_reload is True
        assert settings.plugins_dir == tmp_path

    def test_environment_used_without_flags(self, clean_env, monkeypatch):
        captured = []
        monkeypatch.setattr("server.app.serve", captured.append)
        clean_env.setenv("PORT", "9000")

        result = runner.invoke(cli_main.app, ["serve"])
        assert result.exit_code == 0, result.output
        assert captured[0].port == 9000
        assert captured[0].hot_reload is False
