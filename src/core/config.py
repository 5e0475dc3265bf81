"""
core/config.py — Centralised path constants and environment defaults.

All other modules import paths and defaults from here rather than computing
them from __file__.  Runtime values come from :class:`Settings`, which reads
the environment once ``load_env()`` has merged the optional ``.env`` file.

Usage::

    from core.config import Settings, load_env

    load_env()
    settings = Settings.from_env()
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

# ── Repository layout ──────────────────────────────────────────────────────────

SRC_DIR: Path = Path(__file__).parent.parent       # …/ditzzy-api/src/
REPO_ROOT: Path = SRC_DIR.parent                   # …/ditzzy-api/

# Endpoint modules scanned by the plugin loader (sub-directories = categories)
PLUGINS_DIR: Path = SRC_DIR / "endpoints"

# Aggregate request statistics written by the file store (gitignored)
STATS_FILE: Path = REPO_ROOT / "stats-data.json"

ENV_FILE: Path = REPO_ROOT / ".env"

# ── Server defaults (overridable via env) ─────────────────────────────────────

DEFAULT_HOST: str = "0.0.0.0"
DEFAULT_PORT: int = 7860
API_PREFIX: str = "/api"

# ── Rate limiting ─────────────────────────────────────────────────────────────

RATE_LIMIT: int = 25
RATE_LIMIT_WINDOW_MS: int = 60 * 1000
RATE_LIMIT_SWEEP_INTERVAL: float = 5 * 60.0

# ── Stats tracking ────────────────────────────────────────────────────────────

STATS_MAX_FAILS_PER_IP: int = 1
STATS_FAIL_WINDOW_MS: int = 12 * 60 * 60 * 1000
STATS_FAILURE_STATUS: int = 500
STATS_SAVE_DELAY: float = 5.0
STATS_SWEEP_INTERVAL: float = 5 * 60.0
STATS_TOP_ENDPOINTS: int = 5
STATS_REDIS_KEY: str = "api-stats:global"

# Meta endpoints are never tracked, they would only count themselves.
STATS_EXCLUDED_PATHS: tuple[str, ...] = (
    "/api/plugins",
    "/api/stats",
    "/api/categories",
    "/docs",
)

VISITOR_CHART_DEFAULT_DAYS: int = 30
VISITOR_CHART_MAX_DAYS: int = 365

# ── Hot reload ────────────────────────────────────────────────────────────────

HOT_RELOAD_DEBOUNCE: float = 0.2
HOT_RELOAD_STABILITY: float = 0.5
HOT_RELOAD_POLL_INTERVAL: float = 0.1

UPSTREAM_TIMEOUT: float = 10.0


def load_env(env_file: Path | None = None) -> None:
    """Merge KEY=VALUE lines from ``.env`` into ``os.environ`` without overriding."""
    env_file = env_file or ENV_FILE
    if not env_file.exists():
        return
    for line in env_file.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if line and not line.startswith("#") and "=" in line:
            k, _, v = line.partition("=")
            os.environ.setdefault(k.strip(), v.strip().strip('"').strip("'"))


def env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    if raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """Runtime settings for one server process."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    environment: str = "production"
    hot_reload: bool = False
    plugins_dir: Path = PLUGINS_DIR
    require_description: bool = False
    rate_limit: int = RATE_LIMIT
    rate_limit_window_ms: int = RATE_LIMIT_WINDOW_MS
    stats_file: Path | None = STATS_FILE
    stats_max_fails_per_ip: int = STATS_MAX_FAILS_PER_IP
    stats_granularity: str = "day"
    upstash_url: str = ""
    upstash_token: str = ""

    @classmethod
    def from_env(cls) -> Settings:
        environment = os.environ.get("APP_ENV", "production").strip() or "production"
        stats_file_raw = os.environ.get("STATS_FILE")
        if stats_file_raw is None:
            stats_file: Path | None = STATS_FILE
        else:
            stats_file = Path(stats_file_raw) if stats_file_raw.strip() else None

        granularity = os.environ.get("STATS_GRANULARITY", "day").strip().lower()
        if granularity not in ("day", "hour"):
            granularity = "day"

        return cls(
            host=os.environ.get("HOST", DEFAULT_HOST),
            port=env_int("PORT", DEFAULT_PORT),
            environment=environment,
            hot_reload=env_bool("PLUGINS_HOT_RELOAD", environment == "development"),
            plugins_dir=Path(os.environ.get("PLUGINS_DIR") or PLUGINS_DIR),
            require_description=env_bool("PLUGINS_REQUIRE_DESCRIPTION", False),
            rate_limit=env_int("RATE_LIMIT", RATE_LIMIT),
            rate_limit_window_ms=env_int("RATE_LIMIT_WINDOW_MS", RATE_LIMIT_WINDOW_MS),
            stats_file=stats_file,
            stats_max_fails_per_ip=env_int("STATS_MAX_FAILS_PER_IP", STATS_MAX_FAILS_PER_IP),
            stats_granularity=granularity,
            upstash_url=os.environ.get("UPSTASH_REDIS_REST_URL", ""),
            upstash_token=os.environ.get("UPSTASH_REDIS_REST_TOKEN", ""),
        )

    @property
    def is_development(self) -> bool:
        return self.environment == "development"
