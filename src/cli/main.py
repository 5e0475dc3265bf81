"""
ditzzy — CLI entry point.

Usage:
  ditzzy serve [--host 0.0.0.0] [--port 7860] [--hot-reload]
  ditzzy plugins [--dir src/endpoints] [--documented]
  ditzzy stats [--file stats-data.json] [--top 5]
  ditzzy stats --url http://localhost:7860
  ditzzy health [--url http://localhost:7860]
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import typer

from core.config import API_PREFIX, STATS_FILE, STATS_TOP_ENDPOINTS, Settings, load_env
from core.stats import StatsTracker
from core.storage import FileStatsStore, StorageError
from plugins import PluginLoader

from . import __version__
from .client import DEFAULT_URL, Client, DitzzyAPIError
from .display import console, err, info, print_health, print_plugins, print_stats, warn

# ── App ───────────────────────────────────────────────────────────────────────

app = typer.Typer(
    name="ditzzy",
    help="Ditzzy API server CLI",
    add_completion=False,
    rich_markup_mode="rich",
    invoke_without_command=True,
)

# ── Shared options ────────────────────────────────────────────────────────────

URL_OPT = typer.Option(DEFAULT_URL, "--url", "-u", help="Running server URL", envvar="DITZZY_URL")


@app.callback(invoke_without_command=True)
def root(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", "-V", help="Print version and exit", is_eager=True),
) -> None:
    """[bold]Ditzzy API[/bold] — plugin-driven REST API server"""
    if version:
        console.print(f"Ditzzy CLI [bold]v{__version__}[/bold]")
        raise typer.Exit()
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit()


def _settings() -> Settings:
    load_env()
    return Settings.from_env()


# ── Subcommands ───────────────────────────────────────────────────────────────


@app.command()
def serve(
    host: Annotated[Optional[str], typer.Option("--host", help="Bind address (default $HOST)")] = None,
    port: Annotated[Optional[int], typer.Option("--port", "-p", help="Port (default $PORT or 7860)")] = None,
    hot_reload: Annotated[
        Optional[bool], typer.Option("--hot-reload/--no-hot-reload", help="Watch the plugin directory")
    ] = None,
    plugins_dir: Annotated[Optional[Path], typer.Option("--dir", "-d", help="Plugin root directory")] = None,
) -> None:
    """Start the API server.  Flags override the environment."""
    from server.app import serve as run_server

    settings = _settings()
    if host is not None:
        settings.host = host
    if port is not None:
        settings.port = port
    if hot_reload is not None:
        settings.hot_reload = hot_reload
    if plugins_dir is not None:
        settings.plugins_dir = plugins_dir
    run_server(settings)


@app.command()
def plugins(
    plugins_dir: Annotated[Optional[Path], typer.Option("--dir", "-d", help="Plugin root directory")] = None,
    documented: bool = typer.Option(False, "--documented", help="Only list endpoints shown in the docs"),
) -> None:
    """
    Scan the plugin directory and print the routes it would serve.

    Hidden endpoints (no category or name) are included unless
    [bold]--documented[/bold] is given.
    """
    settings = _settings()
    loader = PluginLoader(plugins_dir or settings.plugins_dir, require_description=settings.require_description)
    try:
        _, registry = loader.build()
    except FileNotFoundError as exc:
        err(str(exc))
        raise typer.Exit(1)

    if documented:
        registry = {endpoint: entry for endpoint, entry in registry.items() if entry.documented}
    print_plugins(registry, prefix=API_PREFIX)


@app.command()
def stats(
    file: Annotated[Optional[Path], typer.Option("--file", "-f", help="Persisted stats file")] = None,
    url: Annotated[Optional[str], typer.Option("--url", "-u", help="Query a running server instead")] = None,
    top: int = typer.Option(STATS_TOP_ENDPOINTS, "--top", "-n", help="Number of top endpoints to show"),
) -> None:
    """Summarise request statistics from the stats file or a running server."""
    if url:
        with Client(base_url=url) as client:
            _require_alive(client, url)
            try:
                data = client.stats()
            except DitzzyAPIError as exc:
                err(str(exc))
                raise typer.Exit(1)
        print_stats(data.get("global", {}), data.get("topEndpoints", [])[:top])
        return

    path = file or _settings().stats_file or STATS_FILE
    tracker = StatsTracker()
    try:
        record = FileStatsStore(path).load()
        if record is None:
            warn(f"No stats file at [bold]{path}[/bold]")
            raise typer.Exit(1)
        tracker.apply_record(record)
    except (StorageError, TypeError, ValueError) as exc:
        err(str(exc))
        raise typer.Exit(1)

    info(f"Stats from [bold]{path}[/bold]")
    print_stats(tracker.get_global_stats(), tracker.get_top_endpoints(top))


@app.command()
def health(url: str = URL_OPT) -> None:
    """Check a running server's health."""
    with Client(base_url=url) as client:
        _require_alive(client, url)
        data = client.health()
    print_health(data)


# ── Helpers ───────────────────────────────────────────────────────────────────


def _require_alive(client: Client, url: str) -> None:
    if not client.is_alive():
        err(f"Ditzzy API not reachable at [bold]{url}[/bold]")
        info("Start it with: [bold]ditzzy serve[/bold]")
        raise typer.Exit(1)


# ── Entry ─────────────────────────────────────────────────────────────────────


def main() -> None:
    app()


if __name__ == "__main__":
    main()
