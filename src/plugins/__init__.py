"""
plugins/__init__.py — Endpoint plugin loader and registry with hot reload.

:meth:`PluginLoader.load_plugins` scans the plugin root once at startup and
mounts the resulting router under ``/api``.  Thereafter
:meth:`PluginLoader.get_plugin_metadata` returns the documented endpoints and
:meth:`PluginLoader.get_plugin_registry` every routed endpoint.

Adding a new endpoint
---------------------
1. Create ``src/endpoints/<category>/<name>.py`` (sub-directories nest).
2. Define ``handler = PluginHandler(...)`` (see ``plugins/base.py``).
3. That's it — the next load (or hot reload) routes
   ``/api/<category>/<alias>`` for every alias.

Files and directories starting with ``_`` or ``.`` are never loaded, so
shared helpers can live next to the endpoints as ``_utils.py``.

Reloading builds a brand-new router and registry from a fresh scan and swaps
both in at once; if the scan raises, the previous router and registry stay in
service untouched.
"""

from __future__ import annotations

import importlib.util
import inspect
import itertools
import sys
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from types import ModuleType
from typing import Any

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Route, Router
from starlette.types import Receive, Scope, Send

from core.config import API_PREFIX
from core.logger import get_logger
from core.responses import send_error
from plugins.base import PluginHandler, PluginMetadata

log = get_logger("plugins")

_MODULE_PREFIX = "_ditzzy_endpoints"
_load_counter = itertools.count()

# Scope flag set when no plugin route claimed the request.
UNMATCHED_ROUTE = "ditzzy.unmatched_route"


@dataclass
class RegistryEntry:
    handler: PluginHandler
    metadata: PluginMetadata
    documented: bool
    source: Path


class PluginLoadError(Exception):
    """Raised when an endpoint module cannot be imported or is malformed."""


async def api_not_found(scope: Scope, receive: Receive, send: Send) -> None:
    """Fallback ASGI app for paths under the prefix that no plugin claims."""
    scope[UNMATCHED_ROUTE] = True
    path = Request(scope).url.path
    response = JSONResponse({"message": "API endpoint not found", "path": path}, status_code=404)
    await response(scope, receive, send)


class RouterSlot:
    """ASGI app mounted once at ``/api`` that forwards to the current router.

    Replacing :attr:`router` is a single reference assignment, so every
    request is dispatched either entirely by the old router or entirely by
    the new one.
    """

    def __init__(self, router: Router | None = None) -> None:
        self.router = router or Router(default=api_not_found)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        await self.router(scope, receive, send)


def _coerce_response(result: Any) -> Response:
    if isinstance(result, Response):
        return result
    return JSONResponse(result)


def wrap_exec(handler: PluginHandler):
    """Build the route endpoint enforcing disabled / deprecated / error handling."""
    plugin_name = handler.name or "unknown"

    async def endpoint(request: Request) -> Response:
        if handler.disabled:
            return JSONResponse(
                {
                    "success": False,
                    "message": "Plugin is disabled",
                    "reason": handler.effective_disabled_reason,
                    "plugin": plugin_name,
                },
                status_code=403,
            )

        try:
            if inspect.iscoroutinefunction(handler.exec):
                result = await handler.exec(request)
            else:
                result = await run_in_threadpool(handler.exec, request)
                if inspect.isawaitable(result):
                    result = await result
            response = _coerce_response(result)
        except HTTPException as exc:
            response = send_error(exc.status_code, str(exc.detail))
        except Exception as exc:
            log.exception("Error in plugin %s", plugin_name)
            response = JSONResponse(
                {
                    "success": False,
                    "message": "Plugin execution error",
                    "plugin": plugin_name,
                    "error": str(exc) or type(exc).__name__,
                },
                status_code=500,
            )

        if handler.deprecated:
            response.headers["X-Plugin-Deprecated"] = "true"
            response.headers["X-Deprecation-Reason"] = handler.effective_deprecated_reason
        return response

    endpoint.__name__ = f"plugin_{plugin_name}"
    return endpoint


def _is_private(path: Path) -> bool:
    return path.name.startswith((".", "_"))


class PluginLoader:
    """Directory-driven route table for endpoint plugins."""

    def __init__(self, plugins_dir: Path, prefix: str = API_PREFIX, require_description: bool = False) -> None:
        self.plugins_dir = Path(plugins_dir)
        self.prefix = prefix
        self.require_description = require_description
        self.slot = RouterSlot()
        self._registry: dict[str, RegistryEntry] = {}
        self._app: FastAPI | None = None
        self._reload_lock = threading.Lock()
        self._watcher = None

    @property
    def state(self) -> str:
        if self._app is None:
            return "unloaded"
        return "reloading" if self._reload_lock.locked() else "loaded"

    @property
    def router(self) -> Router:
        return self.slot.router

    # ── Public API ─────────────────────────────────────────────────────────────

    def load_plugins(self, app: FastAPI, enable_hot_reload: bool = False) -> dict[str, RegistryEntry]:
        """Scan the plugin root, mount the router at the prefix and optionally watch."""
        with self._reload_lock:
            try:
                router, registry = self.build()
            except Exception:
                log.exception("Error scanning plugins in %s, starting with none", self.plugins_dir)
                router, registry = Router(default=api_not_found), {}
            self.slot.router = router
            self._registry = registry

        if self._app is None:
            app.mount(self.prefix, self.slot, name="plugins")
            self._app = app
        log.info("Loaded %d plugins", len(self._registry))

        if enable_hot_reload:
            self.enable_hot_reload()
        return self.get_plugin_registry()

    def reload_plugins(self) -> bool:
        """Rebuild routes from the files on disk; keep the old set if that fails."""
        with self._reload_lock:
            log.info("Reloading plugins...")
            try:
                router, registry = self.build()
            except Exception:
                log.exception("Error scanning plugins, rolling back")
                log.warning("Keeping previous plugin configuration (%d plugins)", len(self._registry))
                return False
            self.slot.router = router
            self._registry = registry
        log.info("Successfully reloaded %d plugins", len(registry))
        return True

    def get_plugin_metadata(self) -> list[PluginMetadata]:
        return [entry.metadata for entry in self._registry.values() if entry.documented]

    def get_plugin_registry(self) -> dict[str, RegistryEntry]:
        return dict(self._registry)

    def enable_hot_reload(self) -> None:
        if self._watcher is not None:
            log.info("Hot reload already enabled")
            return
        from plugins.watcher import PluginWatcher

        self._watcher = PluginWatcher(self.plugins_dir, self.reload_plugins)
        self._watcher.start()
        log.info("Hot reload enabled for plugins in %s", self.plugins_dir)

    def stop_hot_reload(self) -> None:
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None
            log.info("Hot reload stopped")

    # ── Scan ───────────────────────────────────────────────────────────────────

    def build(self) -> tuple[Router, dict[str, RegistryEntry]]:
        """Scan the plugin root into a fresh router and registry.

        Per-file problems are logged and skipped.  Failing to list a directory
        raises, so a reload can roll back instead of serving a partial tree.
        """
        if not self.plugins_dir.is_dir():
            raise FileNotFoundError(f"plugin directory not found: {self.plugins_dir}")
        routes: list[Route] = []
        registry: dict[str, RegistryEntry] = {}
        generation = next(_load_counter)
        self._scan_directory(self.plugins_dir, [], routes, registry, generation)
        return Router(routes=routes, default=api_not_found), registry

    def _scan_directory(
        self,
        directory: Path,
        category_path: list[str],
        routes: list[Route],
        registry: dict[str, RegistryEntry],
        generation: int,
    ) -> None:
        for item in sorted(directory.iterdir()):
            if _is_private(item) or item.name == "__pycache__":
                continue
            if item.is_dir():
                self._scan_directory(item, [*category_path, item.name], routes, registry, generation)
            elif item.is_file() and item.suffix == ".py":
                self._load_plugin(item, routes, registry, generation)

    def _import(self, path: Path, generation: int) -> ModuleType:
        rel = path.relative_to(self.plugins_dir).with_suffix("")
        module_name = ".".join([_MODULE_PREFIX, f"g{generation}", *rel.parts])
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise PluginLoadError(f"cannot import {path}")
        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except BaseException:
            sys.modules.pop(module_name, None)
            raise
        # Earlier generations of this file are unreachable once the swap happens.
        dotted = ".".join(rel.parts)
        stale = [
            n for n in sys.modules
            if n.startswith(f"{_MODULE_PREFIX}.") and n.split(".", 2)[-1] == dotted and n != module_name
        ]
        for name in stale:
            sys.modules.pop(name, None)
        return module

    def _resolve_handler(self, module: ModuleType) -> PluginHandler | None:
        raw = getattr(module, "handler", None)
        if isinstance(raw, PluginHandler):
            return raw
        if isinstance(raw, Mapping):
            return PluginHandler.from_mapping(raw)
        return None

    def _load_plugin(
        self,
        path: Path,
        routes: list[Route],
        registry: dict[str, RegistryEntry],
        generation: int,
    ) -> None:
        file_name = str(path.relative_to(self.plugins_dir))
        try:
            module = self._import(path, generation)
        except Exception as exc:
            log.error("Failed to load plugin '%s': %s", file_name, exc)
            return

        handler = self._resolve_handler(module)
        if handler is None:
            log.warning("Skipping plugin '%s': missing handler or exec function", file_name)
            return
        problem = handler.validate()
        if problem:
            log.warning("Skipping plugin '%s': %s", file_name, problem)
            return

        category = [str(c) for c in handler.category] if isinstance(handler.category, list) else []
        base_path = "/" + "/".join(category) if category else ""
        method = handler.method.upper()
        primary_endpoint = f"{base_path}/{handler.primary_alias.strip('/')}"

        gap = handler.documentation_gap(self.require_description)
        try:
            metadata = handler.build_metadata(primary_endpoint)
        except ValueError as exc:
            gap = f"invalid metadata: {exc}"
            metadata = handler.build_minimal_metadata(primary_endpoint)
        if gap:
            log.warning("Plugin '%s' will be hidden from docs: %s", file_name, gap)

        if handler.disabled:
            log.info("Plugin '%s' is disabled: %s", handler.name, handler.effective_disabled_reason)
        if handler.deprecated:
            log.warning("Plugin '%s' is deprecated: %s", handler.name, handler.effective_deprecated_reason)

        taken = {(r.path, m) for r in routes for m in (r.methods or ())}
        endpoint = wrap_exec(handler)
        for alias in handler.aliases:
            path_str = f"{base_path}/{alias.strip('/')}"
            if (path_str, method) in taken:
                log.warning("Skipping route [%s] %s from '%s': already registered", method, path_str, file_name)
                continue
            routes.append(Route(path_str, endpoint, methods=[method], name=path_str))
            taken.add((path_str, method))
            icon = "disabled" if handler.disabled else "deprecated" if handler.deprecated else "ok"
            log.info("%s [%s] %s%s -> %s", icon, method, self.prefix, path_str, handler.name or "unnamed")

        # Routes are per (method, path); the registry keeps the first handler per endpoint.
        if primary_endpoint in registry:
            log.warning(
                "Endpoint %s from '%s' already registered by %s, keeping the first registry entry",
                primary_endpoint, file_name, registry[primary_endpoint].source.name,
            )
            return
        registry[primary_endpoint] = RegistryEntry(
            handler=handler,
            metadata=metadata,
            documented=gap is None,
            source=path,
        )


_loader: PluginLoader | None = None


def init_plugin_loader(plugins_dir: Path, **kwargs) -> PluginLoader:
    global _loader
    _loader = PluginLoader(plugins_dir, **kwargs)
    return _loader


def get_plugin_loader() -> PluginLoader:
    if _loader is None:
        raise RuntimeError("PluginLoader not initialized. Call init_plugin_loader() first.")
    return _loader
