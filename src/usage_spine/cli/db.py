"""
CLI: ``usage-spine db`` - local database management.
"""

from __future__ import annotations

import typer

from usage_spine.cli.utils import make_context, output_result

app = typer.Typer(no_args_is_help=True)


@app.command()
def init(
    database: str | None = typer.Option(None, "--database", help="Database path or URL"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Initialise database schema (create tables)."""
    from usage_spine.ops.database import initialize_database

    ctx = make_context(database)
    result = initialize_database(ctx)
    output_result(result, as_json=json_out, title="Database Init")


@app.command("reset-retries")
def reset_retries_cmd(
    message_ids: list[str] | None = typer.Argument(None, help="Limit to these local message ids"),
    database: str | None = typer.Option(None, "--database", help="Database path or URL"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Preview without changes"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Clear retry counts of unsynchronized messages."""
    from usage_spine.ops.requests import ResetRetriesRequest
    from usage_spine.ops.status import reset_retries

    ctx = make_context(database, dry_run=dry_run)
    request = ResetRetriesRequest(message_ids=tuple(message_ids) if message_ids else None)
    result = reset_retries(ctx, request)
    output_result(result, as_json=json_out, title="Reset Retries")
