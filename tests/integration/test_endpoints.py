"""Integration: the endpoint modules shipped in src/endpoints.

The TikTok upstream is never contacted: the fetcher is exercised against an
httpx.MockTransport and replaced inside the loaded module for route tests.
"""

import asyncio
from urllib.parse import parse_qs

import httpx
import pytest
from fastapi.testclient import TestClient

from core.config import PLUGINS_DIR


@pytest.fixture
def bundled(make_app):
    with TestClient(make_app(plugins_dir=PLUGINS_DIR, rate_limit=1000)) as c:
        yield c


def _tiktok_module_globals(client):
    entry = client.app.state.services.loader.get_plugin_registry()["/downloader/tiktok"]
    return entry.handler.exec.__globals__


class TestGreeting:
    def test_data_route_greets(self, bundled):
        body = bundled.get("/api/data").json()
        assert body["status"] == 200
        assert body["message"].startswith("Welcome to DitzzyAPI")

    def test_greeting_is_hidden_from_listing(self, bundled):
        names = [p["name"] for p in bundled.get("/api/plugins").json()["plugins"]]
        assert "TikTok Downloader" in names
        assert "Greet user" not in names


class TestTikTokRoute:
    def test_missing_url(self, bundled):
        r = bundled.get("/api/downloader/tiktok")
        assert r.status_code == 400
        assert r.json() == {"status": 400, "message": "Missing required parameter: url"}

    def test_non_tiktok_url(self, bundled):
        r = bundled.get("/api/downloader/tt", params={"url": "https://example.com/video"})
        assert r.status_code == 400
        assert "TikTok" in r.json()["message"]

    def test_success_envelope(self, bundled, monkeypatch):
        async def fake_fetch(url):
            return {"id": "123", "play": "https://cdn.example/v.mp4"}

        monkeypatch.setitem(_tiktok_module_globals(bundled), "fetch_tiktok_video", fake_fetch)
        r = bundled.get("/api/downloader/tiktok", params={"url": "https://vm.tiktok.com/abc"})
        assert r.status_code == 200
        body = r.json()
        assert body["results"]["id"] == "123"
        assert body["note"] == "Thank you for using this API!"

    def test_upstream_failure_is_500(self, bundled, monkeypatch):
        async def failing_fetch(url):
            raise httpx.ConnectTimeout("timed out")

        monkeypatch.setitem(_tiktok_module_globals(bundled), "fetch_tiktok_video", failing_fetch)
        r = bundled.get("/api/downloader/tiktok", params={"url": "https://www.tiktok.com/@u/video/1"})
        assert r.status_code == 500
        assert r.json()["message"] == "An error occurred, please try again later."

    def test_metadata_documents_parameters(self, bundled):
        plugins = bundled.get("/api/plugins/category/downloader").json()["plugins"]
        tiktok = plugins[0]
        assert tiktok["aliases"] == ["tiktok", "tt"]
        assert tiktok["parameters"]["query"][0]["name"] == "url"
        assert tiktok["parameters"]["query"][0]["acceptUrl"] is True
        assert set(tiktok["responses"]) == {"200", "400", "500"}


class TestTikTokFetcher:
    def test_posts_form_and_returns_data(self, bundled):
        fetch = _tiktok_module_globals(bundled)["fetch_tiktok_video"]
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"code": 0, "data": {"id": "42"}})

        async def run():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                return await fetch("https://www.tiktok.com/@u/video/42", client=client)

        assert asyncio.run(run()) == {"id": "42"}
        form = parse_qs(seen[0].content.decode())
        assert form == {"url": ["https://www.tiktok.com/@u/video/42"], "hd": ["1"]}
        assert str(seen[0].url) == "https://tikwm.com/api/"

    def test_missing_data_raises(self, bundled):
        module_globals = _tiktok_module_globals(bundled)
        fetch = module_globals["fetch_tiktok_video"]

        async def run():
            transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"code": -1, "msg": "bad"}))
            async with httpx.AsyncClient(transport=transport) as client:
                return await fetch("https://www.tiktok.com/@u/video/42", client=client)

        with pytest.raises(module_globals["TikTokError"]):
            asyncio.run(run())
