"""
CLI: ``usage-spine push-status`` - synchronization statistics.
"""

from __future__ import annotations

import typer
from rich.table import Table

from usage_spine.cli.utils import console, kv_table, make_context, print_error, print_json
from usage_spine.ops.requests import PushStatusRequest
from usage_spine.ops.responses import PushStatusSummary
from usage_spine.ops.status import get_push_status
from usage_spine.push.error_codes import parse_response_tag, tip_for


def _retry_color(retry_count: int, summary: PushStatusSummary) -> str:
    if retry_count >= summary.max_retries:
        return "red"
    if retry_count >= summary.retry_warning_threshold:
        return "yellow"
    return "white"


def _render(summary: PushStatusSummary, verbose: bool) -> None:
    stats = summary.stats
    rate = f"{stats.success_rate:.1f}%" if stats.success_rate is not None else "N/A"
    console.print(
        kv_table(
            [
                ("Total Messages", stats.total),
                ("Synced", f"[green]{stats.synced}[/green]"),
                ("Unsynced", f"[yellow]{stats.unsynced}[/yellow]"),
                ("Eligible", stats.eligible),
                ("Success Rate", rate),
            ],
            title="Push Status",
        )
    )

    if stats.retry_histogram:
        table = Table(title="Retry Distribution", pad_edge=False)
        table.add_column("Retry Count", justify="right")
        table.add_column("Messages", justify="right")
        for retry_count, count in stats.retry_histogram.items():
            color = _retry_color(retry_count, summary)
            table.add_row(str(retry_count), f"[{color}]{count}[/{color}]")
        console.print(table)

    if stats.maxed_out:
        console.print(
            f"\n[red]{stats.maxed_out} message(s) have reached max retries ({summary.max_retries})[/red]"
        )
        console.print("[dim]Run 'usage-spine push --force' to reset retry counts[/dim]")

    if verbose:
        if summary.recent_batches:
            table = Table(title="Recent Push Activity", pad_edge=False)
            table.add_column("Batch ID")
            table.add_column("Response")
            table.add_column("Count", justify="right")
            for row in summary.recent_batches:
                table.add_row((row.sync_batch_id or "N/A")[:36], row.sync_response or "unknown", str(row.count))
            console.print(table)
        else:
            console.print("[dim]No recent push activity[/dim]")

        if summary.failure_samples:
            console.print("\n[bold]Sample Failed Messages[/bold]")
            for sample in summary.failure_samples:
                console.print(f"Message: {sample.message_id}")
                console.print(f"  Retries: {sample.retry_count}")
                console.print(f"  Error: [red]{sample.sync_response or 'Unknown error'}[/red]")
                code, _ = parse_response_tag(sample.sync_response)
                tip = tip_for(code)
                if tip:
                    console.print(f"  [dim]Tip: {tip}[/dim]")

    console.print("\n[bold]Configuration[/bold]")
    console.print(f"  Endpoint: {summary.endpoint}")
    token = "[green]Configured[/green]" if summary.token_configured else "[red]Not configured[/red]"
    console.print(f"  API Token: {token}")
    console.print(f"  Batch Size: {summary.batch_size}")
    console.print(f"  Max Retries: {summary.max_retries}")
    console.print(f"  Timeout: {summary.timeout_seconds:g}s")

    if stats.unsynced:
        console.print("\n[bold]Next Steps[/bold]")
        step = 1
        if not summary.token_configured:
            console.print(f"  {step}. Log in to obtain an API token")
            step += 1
        console.print(f"  {step}. Run 'usage-spine push' to sync {stats.unsynced} message(s)")
        step += 1
        if summary.needs_force:
            console.print(f"  {step}. Use 'usage-spine push --force' to retry failed messages")


def push_status(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show history and failure samples"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
    database: str | None = typer.Option(None, "--database", help="Database path or URL"),
) -> None:
    """Show push synchronization status."""
    ctx = make_context(database)
    result = get_push_status(ctx, PushStatusRequest(verbose=verbose))

    if json_out:
        print_json(result.to_dict())
        if not result.success:
            raise typer.Exit(code=1)
        return

    if not result.success:
        err = result.error
        print_error(err.code, err.message)
        raise typer.Exit(code=1)

    _render(result.data, verbose)
