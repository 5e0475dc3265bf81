"""Background file watcher that triggers plugin reloads.

Polls ``(mtime, size)`` of every non-hidden ``*.py`` file under the plugin
root.  A reload fires once the tree has stopped changing for
``stability + debounce`` seconds, so a burst of saves (or a file still being
written) results in a single reload.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from pathlib import Path

from core.config import HOT_RELOAD_DEBOUNCE, HOT_RELOAD_POLL_INTERVAL, HOT_RELOAD_STABILITY
from core.logger import get_logger

log = get_logger("plugins")

Snapshot = dict[str, tuple[float, int]]


def scan_tree(root: Path) -> Snapshot:
    result: Snapshot = {}
    if not root.is_dir():
        return result
    for p in root.rglob("*.py"):
        rel = p.relative_to(root)
        if any(part.startswith(".") or part == "__pycache__" for part in rel.parts):
            continue
        try:
            st = p.stat()
        except OSError:
            continue
        result[str(rel)] = (st.st_mtime, st.st_size)
    return result


def diff_snapshots(old: Snapshot, new: Snapshot) -> list[tuple[str, str]]:
    """Return ``(event, relative_path)`` pairs: added / changed / removed."""
    events = [("added", p) for p in new.keys() - old.keys()]
    events += [("changed", p) for p in new.keys() & old.keys() if new[p] != old[p]]
    events += [("removed", p) for p in old.keys() - new.keys()]
    return sorted(events, key=lambda e: e[1])


class PluginWatcher:
    def __init__(
        self,
        root: Path,
        on_change: Callable[[], object],
        debounce: float = HOT_RELOAD_DEBOUNCE,
        stability: float = HOT_RELOAD_STABILITY,
        poll_interval: float = HOT_RELOAD_POLL_INTERVAL,
    ) -> None:
        self.root = Path(root)
        self.on_change = on_change
        self.debounce = debounce
        self.stability = stability
        self.poll_interval = poll_interval
        self._snapshot: Snapshot = scan_tree(self.root)
        self._last_change: float | None = None
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def pending(self) -> bool:
        return self._last_change is not None

    def poll(self, now: float | None = None) -> bool:
        """Take one snapshot; fire ``on_change`` when a settled change is due.

        Returns True when a reload was triggered by this call.
        """
        now = time.monotonic() if now is None else now
        current = scan_tree(self.root)
        if current != self._snapshot:
            for event, path in diff_snapshots(self._snapshot, current):
                log.info("Plugin %s: %s", event, path)
            self._snapshot = current
            self._last_change = now
            return False

        if self._last_change is not None and now - self._last_change >= self.stability + self.debounce:
            self._last_change = None
            try:
                self.on_change()
            except Exception:
                log.exception("Plugin reload callback failed")
            return True
        return False

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name="plugin-watcher")
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=2)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.poll_interval):
            self.poll()
