"""
test_watcher.py — Unit tests for plugins/watcher.py

Polls are driven with explicit timestamps so the debounce is deterministic.
"""

import logging
import os

from plugins.watcher import PluginWatcher, diff_snapshots, scan_tree


def _watcher(root, calls, **kwargs):
    kwargs.setdefault("debounce", 0.2)
    kwargs.setdefault("stability", 0.5)
    return PluginWatcher(root, lambda: calls.append(1), **kwargs)


# ── Snapshots ──────────────────────────────────────────────────────────────────


class TestScanTree:
    def test_only_python_files_outside_hidden_dirs(self, plugin_dir, write_plugin):
        write_plugin("tools/ping.py", "x = 1\n")
        write_plugin(".git/hook.py", "x = 1\n")
        write_plugin("tools/__pycache__/ping.cpython-312.py", "x = 1\n")
        (plugin_dir / "README.md").write_text("docs")
        assert set(scan_tree(plugin_dir)) == {os.path.join("tools", "ping.py")}

    def test_missing_root_is_empty(self, tmp_path):
        assert scan_tree(tmp_path / "missing") == {}

    def test_diff_reports_each_kind_of_event(self):
        old = {"a.py": (1.0, 10), "b.py": (1.0, 10)}
        new = {"b.py": (2.0, 10), "c.py": (1.0, 5)}
        assert diff_snapshots(old, new) == [("removed", "a.py"), ("changed", "b.py"), ("added", "c.py")]


# ── Debounced polling ──────────────────────────────────────────────────────────


class TestPoll:
    def test_reload_fires_once_after_tree_settles(self, plugin_dir, write_plugin):
        calls = []
        watcher = _watcher(plugin_dir, calls)
        write_plugin("tools/new.py", "x = 1\n")

        assert watcher.poll(now=10.0) is False
        assert watcher.pending
        assert watcher.poll(now=10.3) is False
        assert watcher.poll(now=10.8) is True
        assert calls == [1]
        assert not watcher.pending
        assert watcher.poll(now=20.0) is False
        assert calls == [1]

    def test_burst_of_changes_restarts_the_timer(self, plugin_dir, write_plugin):
        calls = []
        watcher = _watcher(plugin_dir, calls)
        write_plugin("a.py", "x = 1\n")
        watcher.poll(now=10.0)
        write_plugin("b.py", "x = 1\n")
        watcher.poll(now=10.5)

        assert watcher.poll(now=11.0) is False
        assert watcher.poll(now=11.3) is True
        assert calls == [1]

    def test_no_change_never_fires(self, plugin_dir, write_plugin):
        write_plugin("a.py", "x = 1\n")
        calls = []
        watcher = _watcher(plugin_dir, calls)
        assert not any(watcher.poll(now=t) for t in (1.0, 5.0, 50.0))
        assert calls == []

    def test_removed_file_triggers_reload(self, plugin_dir, write_plugin):
        path = write_plugin("a.py", "x = 1\n")
        calls = []
        watcher = _watcher(plugin_dir, calls)
        path.unlink()
        watcher.poll(now=1.0)
        assert watcher.poll(now=2.0) is True

    def test_callback_errors_are_logged(self, plugin_dir, write_plugin, caplog):
        def explode():
            raise RuntimeError("reload broke")

        watcher = PluginWatcher(plugin_dir, explode, debounce=0, stability=0)
        write_plugin("a.py", "x = 1\n")
        watcher.poll(now=1.0)
        with caplog.at_level(logging.ERROR, logger="ditzzy"):
            assert watcher.poll(now=1.0) is True
        assert "Plugin reload callback failed" in caplog.text


class TestThread:
    def test_start_and_stop(self, plugin_dir):
        watcher = PluginWatcher(plugin_dir, lambda: None, poll_interval=0.01)
        watcher.start()
        assert watcher._thread is not None and watcher._thread.is_alive()
        watcher.stop()
        assert watcher._thread is None
