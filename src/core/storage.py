"""
core/storage.py — Persistence for the aggregate request statistics.

Handles:
  - The versioned record schema (sets → lists, maps → plain dicts)
  - JSON file store   (stats-data.json in the repo root by default)
  - Upstash Redis     (REST API over httpx, when credentials are configured)

Stores only move plain dicts; :mod:`core.stats` owns the in-memory shape.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

import httpx

from core.config import STATS_REDIS_KEY, UPSTREAM_TIMEOUT, Settings
from core.logger import get_logger

log = get_logger("storage")

SCHEMA_VERSION = 1

__all__ = [
    "SCHEMA_VERSION",
    "StatsStore", "FileStatsStore", "UpstashStatsStore", "StorageError",
    "build_store", "migrate_record",
]


class StorageError(Exception):
    """Raised when a stats record cannot be read or written."""


class StatsStore(Protocol):
    name: str

    def load(self) -> dict | None: ...

    def save(self, record: dict) -> None: ...


# Stores holding a connection also define ``close()``; the tracker calls it on shutdown.


# ── Schema ─────────────────────────────────────────────────────────────────────


def migrate_record(record: Any) -> dict:
    """Bring a persisted record up to :data:`SCHEMA_VERSION`.

    Records written before versioning carry no ``schemaVersion`` and already
    have the version 1 layout.
    """
    if not isinstance(record, dict):
        raise StorageError(f"stats record must be an object, got {type(record).__name__}")
    version = record.get("schemaVersion", 1)
    if not isinstance(version, int) or version < 1:
        raise StorageError(f"invalid schemaVersion {version!r}")
    if version > SCHEMA_VERSION:
        raise StorageError(f"stats record schemaVersion {version} is newer than supported {SCHEMA_VERSION}")
    migrated = dict(record)
    migrated["schemaVersion"] = SCHEMA_VERSION
    return migrated


# ── JSON file ──────────────────────────────────────────────────────────────────


class FileStatsStore:
    """Stats record kept as a JSON document on local disk."""

    name = "file"

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def __repr__(self) -> str:
        return f"FileStatsStore(path={str(self.path)!r})"

    def load(self) -> dict | None:
        """Return the stored record, or ``None`` when no file exists yet."""
        if not self.path.exists():
            return None
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise StorageError(f"cannot read {self.path}: {exc}") from exc

    def save(self, record: dict) -> None:
        """Write atomically: temp file in the same directory, then replace."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(record, fh, indent=2)
                os.replace(tmp, self.path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise StorageError(f"cannot write {self.path}: {exc}") from exc


# ── Upstash Redis (REST) ───────────────────────────────────────────────────────


class UpstashStatsStore:
    """Stats record kept under one key in Upstash Redis, via its REST API."""

    name = "upstash"

    def __init__(
        self,
        url: str,
        token: str,
        key: str = STATS_REDIS_KEY,
        timeout: float = UPSTREAM_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.key = key
        self._http = httpx.Client(
            base_url=url.rstrip("/"),
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
            transport=transport,
        )

    def __repr__(self) -> str:
        return f"UpstashStatsStore(url={str(self._http.base_url)!r}, key={self.key!r})"

    def _command(self, *args: str) -> Any:
        try:
            r = self._http.post("/", json=list(args))
            r.raise_for_status()
            payload = r.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise StorageError(f"Upstash {args[0]} failed: {exc}") from exc
        if isinstance(payload, dict) and payload.get("error"):
            raise StorageError(f"Upstash {args[0]} failed: {payload['error']}")
        return payload.get("result") if isinstance(payload, dict) else None

    def load(self) -> dict | None:
        raw = self._command("GET", self.key)
        if raw is None:
            return None
        if isinstance(raw, dict):
            return raw
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise StorageError(f"Upstash value under {self.key!r} is not JSON: {exc}") from exc

    def save(self, record: dict) -> None:
        self._command("SET", self.key, json.dumps(record))

    def close(self) -> None:
        self._http.close()


def build_store(settings: Settings) -> StatsStore | None:
    """Pick the persistence backend: Upstash when configured, else the stats file."""
    if settings.upstash_url and settings.upstash_token:
        log.info("Redis initialized for persistent stats")
        return UpstashStatsStore(settings.upstash_url, settings.upstash_token)
    if settings.stats_file is not None:
        log.info("Stats will be persisted to %s", settings.stats_file)
        return FileStatsStore(settings.stats_file)
    log.warning("No stats persistence configured - stats will be in-memory only")
    return None
