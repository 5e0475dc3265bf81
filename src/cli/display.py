"""Rich display helpers — route tables, stats and health panels."""

from __future__ import annotations

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.theme import Theme

# ── Ditzzy colour palette ─────────────────────────────────────────────────────
THEME = Theme(
    {
        "ditzzy.accent": "#7C5CFF",
        "ditzzy.accent2": "#A08CFF",
        "ditzzy.text": "#C9D1E0",
        "ditzzy.muted": "#5A6278",
        "ditzzy.ok": "#3d9e5a",
        "ditzzy.warn": "#d4a017",
        "ditzzy.err": "#e05555",
    }
)

console = Console(theme=THEME, highlight=False)

METHOD_STYLES = {
    "GET": "ditzzy.ok",
    "POST": "ditzzy.accent",
    "PUT": "ditzzy.warn",
    "PATCH": "ditzzy.warn",
    "DELETE": "ditzzy.err",
}


# ── Plugins ───────────────────────────────────────────────────────────────────


def _plugin_status(entry) -> str:
    handler = entry.handler
    if handler.disabled:
        return "[ditzzy.err]disabled[/ditzzy.err]"
    if handler.deprecated:
        return "[ditzzy.warn]deprecated[/ditzzy.warn]"
    if not entry.documented:
        return "[ditzzy.muted]hidden[/ditzzy.muted]"
    return "[ditzzy.ok]ok[/ditzzy.ok]"


def print_plugins(registry: dict, prefix: str = "/api") -> None:
    """Print one row per routed endpoint, keyed by primary endpoint."""
    if not registry:
        console.print("  [ditzzy.muted]No plugins found.[/ditzzy.muted]")
        return

    table = Table(box=box.SIMPLE, show_header=True, header_style="ditzzy.accent2", padding=(0, 1))
    table.add_column("Method", no_wrap=True)
    table.add_column("Endpoint", style="ditzzy.text", no_wrap=True)
    table.add_column("Name", style="ditzzy.muted")
    table.add_column("Status", no_wrap=True)

    for endpoint, entry in sorted(registry.items()):
        method = entry.metadata.method
        style = METHOD_STYLES.get(method, "ditzzy.text")
        table.add_row(f"[{style}]{method}[/{style}]", f"{prefix}{endpoint}", entry.metadata.name, _plugin_status(entry))

    documented = sum(1 for e in registry.values() if e.documented)
    console.print(
        Panel(
            table,
            title=f"[ditzzy.accent]{len(registry)} routed[/ditzzy.accent]  [ditzzy.muted]{documented} documented[/ditzzy.muted]",
            border_style="ditzzy.accent",
            padding=(0, 1),
        )
    )


# ── Stats ─────────────────────────────────────────────────────────────────────


def print_stats(global_stats: dict, top_endpoints: list[dict]) -> None:
    table = Table(box=box.SIMPLE, show_header=False, padding=(0, 2))
    table.add_column(style="ditzzy.muted", no_wrap=True, width=16)
    table.add_column(style="ditzzy.text")
    table.add_row("Requests", f"[ditzzy.accent]{global_stats.get('totalRequests', 0)}[/ditzzy.accent]")
    table.add_row("Success", f"[ditzzy.ok]{global_stats.get('totalSuccess', 0)}[/ditzzy.ok]")
    table.add_row("Failed", f"[ditzzy.err]{global_stats.get('totalFailed', 0)}[/ditzzy.err]")
    table.add_row("Success rate", f"{global_stats.get('successRate', '0.00')}%")
    table.add_row("Visitors", str(global_stats.get("uniqueVisitors", 0)))
    uptime = global_stats.get("uptime") or {}
    table.add_row("Uptime", str(uptime.get("formatted", "—")))

    console.print(Panel(table, title="[ditzzy.accent]API Stats[/ditzzy.accent]", border_style="ditzzy.accent", padding=(1, 2)))

    if not top_endpoints:
        console.print("  [ditzzy.muted]No endpoint traffic recorded yet.[/ditzzy.muted]")
        return

    ep_table = Table(box=box.SIMPLE, show_header=True, header_style="ditzzy.accent2", padding=(0, 1))
    ep_table.add_column("Endpoint", style="ditzzy.text", no_wrap=True)
    ep_table.add_column("Total", justify="right", style="ditzzy.accent")
    ep_table.add_column("OK", justify="right", style="ditzzy.ok")
    ep_table.add_column("Fail", justify="right", style="ditzzy.err")
    for row in top_endpoints:
        ep_table.add_row(
            row.get("endpoint", "?"),
            str(row.get("totalRequests", 0)),
            str(row.get("successRequests", 0)),
            str(row.get("failedRequests", 0)),
        )
    console.print(Panel(ep_table, title="[ditzzy.muted]Top endpoints[/ditzzy.muted]", border_style="ditzzy.muted"))


# ── Health ────────────────────────────────────────────────────────────────────


def print_health(data: dict) -> None:
    status = data.get("status", "unknown")
    color = "ditzzy.ok" if status == "ok" else "ditzzy.err"
    icon = "✓" if status == "ok" else "✗"

    table = Table(box=box.SIMPLE, show_header=False, padding=(0, 2))
    table.add_column(style="ditzzy.muted", no_wrap=True)
    table.add_column(style="ditzzy.text")
    table.add_row("version", str(data.get("version", "?")))
    for component, values in (data.get("components") or {}).items():
        if isinstance(values, dict):
            for key, val in values.items():
                table.add_row(f"{component}.{key}", str(val))
        else:
            table.add_row(component, str(values))

    console.print(
        Panel(
            table,
            title=f"[{color}]{icon} {data.get('service', 'ditzzy-api')} — {status.upper()}[/{color}]",
            border_style=color,
            padding=(1, 2),
        )
    )


# ── Utility ───────────────────────────────────────────────────────────────────


def warn(message: str) -> None:
    console.print(f"  [ditzzy.warn]⚠[/ditzzy.warn]  {message}")


def err(message: str) -> None:
    console.print(f"  [ditzzy.err]✗[/ditzzy.err]  [ditzzy.err]{message}[/ditzzy.err]")


def info(message: str) -> None:
    console.print(f"  [ditzzy.muted]·[/ditzzy.muted]  [ditzzy.text]{message}[/ditzzy.text]")
