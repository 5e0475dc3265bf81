"""
core/stats.py — Request accounting for plugin endpoints.

One :class:`StatsTracker` per process, built by the server composition root.
Every completed ``/api`` response (meta endpoints excepted) is passed to
:meth:`StatsTracker.track_request`, which updates:

  - global totals (requests / success / failed)
  - the unique visitor set and per-period visitor buckets
  - per-endpoint counters and last access time

A failure-penalty gate keeps a single broken or hammering client from skewing
the aggregates: once an IP has produced ``max_fails_per_ip`` failures inside
``fail_window_ms`` its further failures are not tracked at all.

State is persisted through an optional :class:`core.storage.StatsStore`; saves
are debounced so a burst of requests costs one write.  Persistence errors are
logged and never interrupt tracking.

All timestamps are epoch milliseconds.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone

from core.config import (
    STATS_FAIL_WINDOW_MS,
    STATS_FAILURE_STATUS,
    STATS_MAX_FAILS_PER_IP,
    STATS_SAVE_DELAY,
    STATS_SWEEP_INTERVAL,
    VISITOR_CHART_DEFAULT_DAYS,
)
from core.logger import get_logger
from core.scheduler import PeriodicTask
from core.storage import SCHEMA_VERSION, StatsStore, StorageError, migrate_record

log = get_logger("stats")

DAY_MS = 24 * 60 * 60 * 1000
HOUR_MS = 60 * 60 * 1000
HOURLY_RETENTION = 24

GRANULARITIES = ("day", "hour")


def _now_ms() -> int:
    return int(time.time() * 1000)


def day_key(ts_ms: int) -> str:
    """UTC calendar date of ``ts_ms`` as ``YYYY-MM-DD``."""
    return datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d")


def hour_key(ts_ms: int) -> str:
    """Index of the hour containing ``ts_ms`` since the epoch."""
    return str(ts_ms // HOUR_MS)


@dataclass
class EndpointStats:
    total_requests: int = 0
    success_requests: int = 0
    failed_requests: int = 0
    last_accessed: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> EndpointStats:
        return cls(
            total_requests=int(data.get("totalRequests", 0)),
            success_requests=int(data.get("successRequests", 0)),
            failed_requests=int(data.get("failedRequests", 0)),
            last_accessed=int(data.get("lastAccessed", 0)),
        )

    def to_dict(self) -> dict:
        return {
            "totalRequests": self.total_requests,
            "successRequests": self.success_requests,
            "failedRequests": self.failed_requests,
            "lastAccessed": self.last_accessed,
        }


@dataclass
class IPFailureRecord:
    count: int
    reset_time: int


class StatsTracker:
    """Global and per-endpoint request statistics with visitor buckets."""

    def __init__(
        self,
        store: StatsStore | None = None,
        *,
        max_fails_per_ip: int = STATS_MAX_FAILS_PER_IP,
        fail_window_ms: int = STATS_FAIL_WINDOW_MS,
        failure_status: int = STATS_FAILURE_STATUS,
        save_delay: float = STATS_SAVE_DELAY,
        sweep_interval: float = STATS_SWEEP_INTERVAL,
        granularity: str = "day",
        retention_days: int | None = None,
    ) -> None:
        if granularity not in GRANULARITIES:
            raise ValueError(f"granularity must be one of {GRANULARITIES}, got {granularity!r}")
        self.store = store
        self.max_fails_per_ip = max_fails_per_ip
        self.fail_window_ms = fail_window_ms
        self.failure_status = failure_status
        self.save_delay = save_delay
        self.granularity = granularity
        self.retention_days = retention_days

        self._lock = threading.RLock()
        self._save_timer: threading.Timer | None = None
        self._save_lock = threading.Lock()
        self._sweeper = PeriodicTask(sweep_interval, self.sweep, name="stats-sweeper")
        self.ip_failures: dict[str, IPFailureRecord] = {}
        self._init_state(_now_ms())

    def _init_state(self, start_time: int) -> None:
        self.total_requests = 0
        self.total_success = 0
        self.total_failed = 0
        self.unique_visitors: set[str] = set()
        self.endpoints: dict[str, EndpointStats] = {}
        self.visitors: dict[str, set[str]] = {}
        self.start_time = start_time

    @property
    def persistence_enabled(self) -> bool:
        return self.store is not None

    @property
    def _visitors_field(self) -> str:
        return "visitorsByDay" if self.granularity == "day" else "visitorsByHour"

    def _bucket_key(self, ts_ms: int) -> str:
        return day_key(ts_ms) if self.granularity == "day" else hour_key(ts_ms)

    def is_failure(self, status_code: int) -> bool:
        return status_code >= self.failure_status

    @staticmethod
    def is_success(status_code: int) -> bool:
        return 200 <= status_code < 400

    # ── Tracking ───────────────────────────────────────────────────────────────

    def track_request(self, endpoint: str | None, status_code: int, client_ip: str, now: int | None = None) -> bool:
        """Record one completed response.  Returns False when the IP is penalised.

        ``endpoint=None`` counts the request globally without a per-endpoint row,
        for paths that matched no route.
        """
        now = _now_ms() if now is None else now
        failed = self.is_failure(status_code)

        with self._lock:
            if not self._pass_failure_gate(client_ip, failed, now):
                return False

            self.total_requests += 1
            self.unique_visitors.add(client_ip)
            self.visitors.setdefault(self._bucket_key(now), set()).add(client_ip)
            self._prune_buckets(now)

            ep = None
            if endpoint is not None:
                ep = self.endpoints.get(endpoint)
                if ep is None:
                    ep = self.endpoints[endpoint] = EndpointStats(last_accessed=now)
                ep.total_requests += 1
                ep.last_accessed = now

            if self.is_success(status_code):
                self.total_success += 1
                if ep is not None:
                    ep.success_requests += 1
            elif failed:
                self.total_failed += 1
                if ep is not None:
                    ep.failed_requests += 1

        self.schedule_save()
        return True

    def _pass_failure_gate(self, client_ip: str, failed: bool, now: int) -> bool:
        record = self.ip_failures.get(client_ip)
        if not failed:
            if record is not None and record.count > 0:
                record.count -= 1
            return True

        if record is None:
            self.ip_failures[client_ip] = IPFailureRecord(count=1, reset_time=now + self.fail_window_ms)
        elif now > record.reset_time:
            record.count = 1
            record.reset_time = now + self.fail_window_ms
        elif record.count >= self.max_fails_per_ip:
            return False
        else:
            record.count += 1
        return True

    def _prune_buckets(self, now: int) -> None:
        if self.granularity == "hour":
            oldest = now // HOUR_MS - HOURLY_RETENTION
            for key in [k for k in self.visitors if int(k) <= oldest]:
                del self.visitors[key]
        elif self.retention_days is not None:
            oldest = day_key(now - self.retention_days * DAY_MS)
            for key in [k for k in self.visitors if k < oldest]:
                del self.visitors[key]

    def sweep(self, now: int | None = None) -> int:
        """Drop expired IP failure records; return how many were removed."""
        now = _now_ms() if now is None else now
        with self._lock:
            expired = [ip for ip, rec in self.ip_failures.items() if now > rec.reset_time]
            for ip in expired:
                del self.ip_failures[ip]
        return len(expired)

    # ── Queries ────────────────────────────────────────────────────────────────

    def get_global_stats(self, now: int | None = None) -> dict:
        now = _now_ms() if now is None else now
        with self._lock:
            uptime = max(0, now - self.start_time)
            hours = uptime // HOUR_MS
            days = hours // 24
            if self.total_requests > 0:
                success_rate = f"{self.total_success / self.total_requests * 100:.2f}"
            else:
                success_rate = "0.00"
            return {
                "totalRequests": self.total_requests,
                "totalSuccess": self.total_success,
                "totalFailed": self.total_failed,
                "uniqueVisitors": len(self.unique_visitors),
                "successRate": success_rate,
                "uptime": {
                    "ms": uptime,
                    "hours": hours,
                    "days": days,
                    "formatted": f"{days}d {hours % 24}h" if days > 0 else f"{hours}h",
                },
                "persistenceEnabled": self.persistence_enabled,
            }

    def get_top_endpoints(self, limit: int = 10) -> list[dict]:
        with self._lock:
            rows = [{"endpoint": path, **ep.to_dict()} for path, ep in self.endpoints.items()]
        rows.sort(key=lambda r: r["totalRequests"], reverse=True)
        return rows[: max(0, limit)]

    def get_endpoint_stats(self, endpoint: str) -> dict | None:
        with self._lock:
            ep = self.endpoints.get(endpoint)
            return ep.to_dict() if ep else None

    def get_all_endpoint_stats(self) -> dict[str, dict]:
        with self._lock:
            return {path: ep.to_dict() for path, ep in self.endpoints.items()}

    def get_visitor_chart_data(self, periods: int | None = None, now: int | None = None) -> list[dict]:
        """Distinct visitors per period, oldest first, zero-filled.

        Daily mode covers the last ``periods`` calendar days (default 30),
        hourly mode the last ``periods`` hours (default 24).
        """
        now = _now_ms() if now is None else now
        if periods is None:
            periods = VISITOR_CHART_DEFAULT_DAYS if self.granularity == "day" else HOURLY_RETENTION
        data = []
        with self._lock:
            for i in range(periods - 1, -1, -1):
                if self.granularity == "day":
                    timestamp = now - i * DAY_MS
                    bucket = self.visitors.get(day_key(timestamp))
                else:
                    index = now // HOUR_MS - i
                    timestamp = index * HOUR_MS
                    bucket = self.visitors.get(str(index))
                data.append({"timestamp": timestamp, "count": len(bucket) if bucket else 0})
        return data

    # ── Persistence ────────────────────────────────────────────────────────────

    def to_record(self) -> dict:
        with self._lock:
            return {
                "schemaVersion": SCHEMA_VERSION,
                "totalRequests": self.total_requests,
                "totalSuccess": self.total_success,
                "totalFailed": self.total_failed,
                "uniqueVisitors": sorted(self.unique_visitors),
                "startTime": self.start_time,
                "endpoints": {path: ep.to_dict() for path, ep in self.endpoints.items()},
                self._visitors_field: {key: sorted(ips) for key, ips in self.visitors.items()},
            }

    def apply_record(self, record: dict) -> None:
        record = migrate_record(record)
        with self._lock:
            self.total_requests = int(record.get("totalRequests") or 0)
            self.total_success = int(record.get("totalSuccess") or 0)
            self.total_failed = int(record.get("totalFailed") or 0)
            self.unique_visitors = set(record.get("uniqueVisitors") or [])
            self.start_time = int(record.get("startTime") or _now_ms())
            self.endpoints = {
                path: EndpointStats.from_dict(data) for path, data in (record.get("endpoints") or {}).items()
            }
            self.visitors = {
                key: set(ips) for key, ips in (record.get(self._visitors_field) or {}).items()
            }

    def load_stats(self) -> bool:
        """Restore state from the store.  Returns True when prior state was applied."""
        if self.store is None:
            log.info("No persistence configured, starting with fresh stats")
            return False
        try:
            record = self.store.load()
            if not record:
                log.info("No existing stats found in %s store, starting fresh", self.store.name)
                return False
            self.apply_record(record)
        except (StorageError, TypeError, ValueError, AttributeError) as exc:
            log.error("Error loading stats from %s store: %s", self.store.name, exc)
            return False
        log.info("Stats loaded from %s store: %d total requests", self.store.name, self.total_requests)
        return True

    def save_stats(self) -> bool:
        if self.store is None:
            return False
        try:
            with self._save_lock:
                self.store.save(self.to_record())
        except StorageError as exc:
            log.error("Error saving stats to %s store: %s", self.store.name, exc)
            return False
        return True

    def schedule_save(self) -> None:
        """Coalesce saves: restart the ``save_delay`` timer on every call."""
        if self.store is None:
            return
        with self._lock:
            if self._save_timer is not None:
                self._save_timer.cancel()
            timer = threading.Timer(self.save_delay, self.save_stats)
            timer.daemon = True
            self._save_timer = timer
        timer.start()

    @property
    def save_pending(self) -> bool:
        timer = self._save_timer
        return timer is not None and timer.is_alive()

    def cancel_pending_save(self, wait: bool = False) -> None:
        """Drop the pending save; with ``wait`` also block until one already running ends."""
        with self._lock:
            timer, self._save_timer = self._save_timer, None
        if timer is None:
            return
        timer.cancel()
        if wait and timer is not threading.current_thread():
            timer.join()

    def reset(self) -> None:
        with self._lock:
            self._init_state(_now_ms())
            self.ip_failures.clear()
        self.cancel_pending_save()
        self.save_stats()

    def start_sweeper(self) -> None:
        self._sweeper.start()

    def shutdown(self) -> None:
        """Stop background work and flush synchronously."""
        self._sweeper.stop()
        self.cancel_pending_save(wait=True)
        if self.save_stats():
            log.info("Stats saved on shutdown")
        close = getattr(self.store, "close", None)
        if close is not None:
            close()
