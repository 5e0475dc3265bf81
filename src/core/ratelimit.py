"""
core/ratelimit.py — Fixed-window per-client request limiter for ``/api`` traffic.

Each client IP gets a record ``{count, reset_time}``.  The first request of a
window opens it; every further request in the window increments the count and
is rejected once the count exceeds the limit.  After ``reset_time`` passes the
next request opens a new window.  Expired records are swept periodically so
memory is bounded by the set of recently active clients.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass

from core.config import RATE_LIMIT, RATE_LIMIT_SWEEP_INTERVAL, RATE_LIMIT_WINDOW_MS
from core.logger import get_logger
from core.scheduler import PeriodicTask

log = get_logger("rate-limit")

LIMIT_EXCEEDED_MESSAGE = "Too many requests, please try again later."


@dataclass
class RateLimitRecord:
    count: int
    reset_time: float


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one :meth:`RateLimiter.check` call."""

    allowed: bool
    limit: int
    remaining: int
    reset_in: int
    """Whole seconds until the current window closes (rounded up)."""

    @property
    def retry_after(self) -> int:
        return self.reset_in if not self.allowed else 0

    def headers(self) -> dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_in),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.reset_in)
        return headers

    def body(self) -> dict:
        return {"message": LIMIT_EXCEEDED_MESSAGE, "retryAfter": self.retry_after}


class RateLimiter:
    """Fixed-window counter keyed by client identifier.

    ``window`` and ``sweep_interval`` are in seconds.  ``now`` arguments are
    epoch seconds and default to :func:`time.time`.
    """

    def __init__(
        self,
        limit: int = RATE_LIMIT,
        window: float = RATE_LIMIT_WINDOW_MS / 1000,
        sweep_interval: float = RATE_LIMIT_SWEEP_INTERVAL,
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if window <= 0:
            raise ValueError("window must be positive")
        self.limit = limit
        self.window = window
        self._records: dict[str, RateLimitRecord] = {}
        self._lock = threading.Lock()
        self._sweeper = PeriodicTask(sweep_interval, self.sweep, name="rate-limit-sweeper")

    def __len__(self) -> int:
        return len(self._records)

    def check(self, client_ip: str, now: float | None = None) -> RateLimitDecision:
        """Count one request from ``client_ip`` and decide whether to admit it."""
        now = time.time() if now is None else now
        with self._lock:
            record = self._records.get(client_ip)
            if record is None or now > record.reset_time:
                record = RateLimitRecord(count=1, reset_time=now + self.window)
                self._records[client_ip] = record
            else:
                record.count += 1
            count, reset_time = record.count, record.reset_time

        decision = RateLimitDecision(
            allowed=count <= self.limit,
            limit=self.limit,
            remaining=max(0, self.limit - count),
            reset_in=max(1, math.ceil(reset_time - now)),
        )
        if not decision.allowed:
            log.warning("Rate limit exceeded for IP: %s", client_ip)
        return decision

    def get(self, client_ip: str) -> RateLimitRecord | None:
        with self._lock:
            record = self._records.get(client_ip)
            return RateLimitRecord(record.count, record.reset_time) if record else None

    def sweep(self, now: float | None = None) -> int:
        """Delete records whose window has closed; return how many were removed."""
        now = time.time() if now is None else now
        with self._lock:
            expired = [ip for ip, rec in self._records.items() if rec.reset_time < now]
            for ip in expired:
                del self._records[ip]
        if expired:
            log.debug("Swept %d expired rate-limit records", len(expired))
        return len(expired)

    def reset(self) -> None:
        with self._lock:
            self._records.clear()

    def start_sweeper(self) -> None:
        self._sweeper.start()

    def stop_sweeper(self) -> None:
        self._sweeper.stop()
