"""
CLI utility helpers: output formatting and context construction.
"""

from __future__ import annotations

import json
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from usage_spine.core.settings import get_settings
from usage_spine.ops.context import OperationContext
from usage_spine.ops.context import make_context as _make_ops_context
from usage_spine.ops.result import OperationResult
from usage_spine.push.error_codes import tip_for

console = Console()
err_console = Console(stderr=True)


# ── Context helper ───────────────────────────────────────────────────────


def database_url(database: str | None) -> str | None:
    """Accept a SQLAlchemy URL or a bare SQLite file path."""
    if not database:
        return None
    if "://" in database:
        return database
    return f"sqlite:///{database}"


def make_context(database: str | None = None, *, dry_run: bool = False) -> OperationContext:
    """Create an ``OperationContext`` for CLI commands."""
    return _make_ops_context(
        get_settings(),
        database_url=database_url(database),
        caller="cli",
        dry_run=dry_run,
    )


# ── Output helpers ───────────────────────────────────────────────────────


def print_error(code: str, message: str) -> None:
    """Print an error line plus the actionable tip for *code*, if any."""
    err_console.print(f"[bold red]Error[/bold red] ({code}): {message}")
    tip = tip_for(code)
    if tip:
        err_console.print(f"[dim]Tip: {tip}[/dim]")


def print_json(payload: Any) -> None:
    console.print_json(json.dumps(payload, default=str))


def output_result(
    result: OperationResult,
    *,
    as_json: bool = False,
    title: str = "",
) -> None:
    """Render an ``OperationResult`` to the terminal; exit 1 on failure."""
    if as_json:
        print_json(result.to_dict())
        if not result.success:
            raise typer.Exit(code=1)
        return

    if not result.success:
        err = result.error
        print_error(err.code if err else "ERROR", err.message if err else "Unknown error")
        raise typer.Exit(code=1)

    data = result.data
    payload = data.to_dict() if hasattr(data, "to_dict") else data
    if isinstance(payload, dict):
        print_dict(payload, title=title)
    else:
        console.print(payload)
    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")


def print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")


def kv_table(rows: list[tuple[str, Any]], *, headers: tuple[str, str] = ("Metric", "Count"), title: str = "") -> Table:
    """Two-column Rich table."""
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    table.add_column(headers[0])
    table.add_column(headers[1], justify="right")
    for key, value in rows:
        table.add_row(key, str(value))
    return table
