"""
CLI utility helpers — output formatting and dispatcher wiring.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from siteagents.agents.data import InMemoryDomainStore
from siteagents.core.settings import get_settings
from siteagents.execution.dispatcher import AgentDispatcher
from siteagents.execution.ledger import SqliteAuditStore
from siteagents.execution.registry import build_default_registry

console = Console()
err_console = Console(stderr=True)


# ── Wiring ───────────────────────────────────────────────────────────────


def open_dispatcher(
    database: str | None = None,
    data: str | None = None,
) -> tuple[AgentDispatcher, SqliteAuditStore]:
    """Build a dispatcher over the SQLite ledger.

    Args:
        database: Ledger path; defaults to ``settings.database_path``
        data: Optional JSON file ``{collection: [rows]}`` seeding the
            domain store agents read from
    """
    settings = get_settings()
    seed = load_seed_file(data) if data else None
    store = SqliteAuditStore.open(database or settings.database_path)
    registry = build_default_registry(InMemoryDomainStore(seed), settings.review)
    return AgentDispatcher(registry, store, settings=settings), store


def load_seed_file(path: str) -> dict[str, Any]:
    """Read a ``--data`` seed file, exiting on a missing or malformed file."""
    try:
        seed = json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as e:
        err_console.print(f"[red]Error: Cannot read --data file {path}: {e.strerror or e}[/red]")
        raise typer.Exit(1) from e
    except json.JSONDecodeError as e:
        err_console.print(f"[red]Error: Invalid JSON in --data file {path}: {e}[/red]")
        raise typer.Exit(1) from e
    if not isinstance(seed, dict):
        err_console.print("[red]Error: --data must hold a JSON object of collections[/red]")
        raise typer.Exit(1)
    return seed


def parse_json_option(value: str | None, option: str) -> dict[str, Any]:
    """Parse a ``--input``/``--context`` JSON object, exiting on bad input."""
    if not value:
        return {}
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as e:
        err_console.print(f"[red]Error: Invalid JSON for {option}: {e}[/red]")
        raise typer.Exit(1) from e
    if not isinstance(parsed, dict):
        err_console.print(f"[red]Error: {option} must be a JSON object[/red]")
        raise typer.Exit(1)
    return parsed


def fail(message: str) -> None:
    err_console.print(f"[bold red]Error[/bold red]: {message}")
    raise typer.Exit(code=1)


# ── Output helpers ───────────────────────────────────────────────────────


def output_json(payload: Any) -> None:
    console.print_json(json.dumps(payload, default=str))


def output_table(rows: list[dict[str, Any]], *, title: str = "") -> None:
    """Render a list of dicts as a Rich table."""
    if not rows:
        console.print("[dim]No items.[/dim]")
        return
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in rows[0]:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*("" if v is None else str(v) for v in row.values()))
    console.print(table)


def output_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        if isinstance(v, dict | list):
            v = json.dumps(v, default=str)
        console.print(f"  [cyan]{k}[/cyan]: {v}")
