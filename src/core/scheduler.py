"""Background periodic task on a daemon thread (used by the sweeps)."""

from __future__ import annotations

import threading
from collections.abc import Callable

from core.logger import get_logger

log = get_logger("scheduler")


class PeriodicTask:
    """Call ``fn`` every ``interval`` seconds until :meth:`stop` is called."""

    def __init__(self, interval: float, fn: Callable[[], object], name: str) -> None:
        self.interval = interval
        self.fn = fn
        self.name = name
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name=self.name)
        self._thread.start()

    def stop(self, timeout: float = 1.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.fn()
            except Exception:
                log.exception("Periodic task %s failed", self.name)
