"""TikTok video / slideshow downloader backed by the tikwm.com API."""

from __future__ import annotations

import re

import httpx
from starlette.requests import Request

from core.config import UPSTREAM_TIMEOUT
from core.logger import get_logger
from core.responses import invalid_url, missing_parameter, send_success, server_error
from plugins.base import PluginHandler

log = get_logger("plugins.tiktok")

TIKWM_API = "https://tikwm.com/api/"
USER_AGENT = (
    "Mozilla/5.0 (Linux; Android 10; K) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/116.0.0.0 Mobile Safari/537.36"
)
URL_RE = re.compile(r"tiktok", re.IGNORECASE)


class TikTokError(Exception):
    """Raised when tikwm.com answers without video data."""


async def fetch_tiktok_video(url: str, client: httpx.AsyncClient | None = None) -> dict:
    own_client = client is None
    client = client or httpx.AsyncClient(timeout=UPSTREAM_TIMEOUT)
    try:
        r = await client.post(
            TIKWM_API,
            data={"url": url, "hd": "1"},
            headers={
                "Content-Type": "application/x-www-form-urlencoded; charset=UTF-8",
                "Cookie": "current_language=en",
                "User-Agent": USER_AGENT,
            },
        )
        r.raise_for_status()
        payload = r.json()
    finally:
        if own_client:
            await client.aclose()

    if not isinstance(payload, dict) or not payload.get("data"):
        raise TikTokError("Invalid response from TikTok API")
    return payload["data"]


async def download(request: Request):
    url = request.query_params.get("url")
    if not url:
        return missing_parameter("url")
    if not URL_RE.search(url):
        return invalid_url("Invalid URL - must be a valid TikTok URL")

    try:
        video = await fetch_tiktok_video(url)
    except (httpx.HTTPError, ValueError, TikTokError) as exc:
        log.error("TikTok download error: %s", exc)
        return server_error()
    return send_success(video)


handler = PluginHandler(
    name="TikTok Downloader",
    description=(
        "Download videos or slide photos from TikTok URLs. "
        "Supports both standard and HD quality downloads."
    ),
    version="1.0.0",
    method="GET",
    category=["downloader"],
    aliases=["tiktok", "tt"],
    tags=["social-media", "video", "downloader"],
    parameters={
        "query": [
            {
                "name": "url",
                "type": "string",
                "required": True,
                "description": "TikTok video URL to download",
                "example": "https://www.tiktok.com/@username/video/1234567890",
                "pattern": r"^https?:\/\/(www\.|vm\.)?tiktok\.com\/.+$",
                "acceptUrl": True,
            }
        ],
    },
    responses={
        200: {
            "description": "Successfully retrieved TikTok video data",
            "example": {
                "status": 200,
                "author": "Ditzzy",
                "note": "Thank you for using this API!",
                "results": {
                    "id": "1234567890",
                    "title": "Video Title",
                    "play": "https://video-url.com/video.mp4",
                    "hdplay": "https://video-url.com/video-hd.mp4",
                    "music": "https://music-url.com/audio.mp3",
                    "duration": 15,
                },
            },
        },
        400: {
            "description": "Missing or invalid TikTok URL",
            "example": {"status": 400, "message": "Invalid URL - must be a valid TikTok URL"},
        },
        500: {
            "description": "Server error or TikTok API unavailable",
            "example": {"status": 500, "message": "An error occurred, please try again later."},
        },
    },
    exec=download,
)
