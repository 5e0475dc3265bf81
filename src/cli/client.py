"""Thin httpx client for a running Ditzzy API server."""

from __future__ import annotations

import httpx

DEFAULT_URL = "http://localhost:7860"


class DitzzyAPIError(Exception):
    """Raised when the server answers with an error status."""


class Client:
    """Read-only access to the health and stats routes."""

    def __init__(
        self,
        base_url: str = DEFAULT_URL,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._http = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)

    # ── Connectivity ──────────────────────────────────────────────────────────

    def is_alive(self) -> bool:
        """Return True if the server answers ``/ready``."""
        try:
            r = self._http.get("/ready", timeout=3)
            return r.status_code < 500
        except httpx.HTTPError:
            return False

    # ── Routes ────────────────────────────────────────────────────────────────

    def health(self) -> dict:
        return self._get("/health")

    def stats(self) -> dict:
        return self._get("/api/stats").get("stats", {})

    def _get(self, path: str) -> dict:
        r = self._http.get(path)
        if not r.is_success:
            raise DitzzyAPIError(f"GET {path} failed ({r.status_code}): {r.text[:200]}")
        return r.json()

    # ── Context manager ───────────────────────────────────────────────────────

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> Client:
        return self

    def __exit__(self, *_) -> None:
        self.close()
