"""
CLI: ``usage-spine push`` - upload unsynchronized usage records.
"""

from __future__ import annotations

import typer

from usage_spine.cli.utils import console, err_console, kv_table, make_context, print_error, print_json
from usage_spine.core.errors import AuthError, DatabaseError, is_connectivity_error
from usage_spine.ops.push import run_push
from usage_spine.ops.requests import RunPushRequest
from usage_spine.push.controller import BatchResult, PushReport
from usage_spine.push.error_codes import describe, tip_for


def _render_batch(verbose: bool):
    def on_batch(result: BatchResult) -> None:
        if result.ok:
            line = (
                f"  Batch {result.batch_number}: [green]{result.pushed} pushed[/green]"
                f" ({result.persisted} new, {result.deduplicated} duplicates)"
            )
            if result.failed:
                line += f", [red]{result.failed} failed[/red]"
            console.print(line)
        else:
            err = result.error
            console.print(
                f"  Batch {result.batch_number}: [red]failed[/red] ({err.code}): {err.message}"
            )
        if verbose:
            models = ", ".join(f"{m}={n}" for m, n in sorted(result.model_counts.items()))
            roles = ", ".join(f"{r}={n}" for r, n in sorted(result.role_counts.items()))
            console.print(f"    [dim]models: {models or '-'} | roles: {roles or '-'} | {result.duration_ms:.0f} ms[/dim]")

    return on_batch


def _render_dry_run(report: PushReport, batch_size: int, force: bool) -> None:
    console.print("[bold]Dry run[/bold] - nothing will be sent or changed\n")
    rows = [
        ("Eligible messages", report.eligible_before),
        ("Batch size", batch_size),
        ("Batches required", report.planned_batches),
    ]
    if force:
        rows.append(("Retry counts to reset", report.force_reset_count))
    elif report.maxed_out:
        rows.append(("Maxed out (need --force)", report.maxed_out))
    console.print(kv_table(rows, headers=("", "")))


def _render_summary(report: PushReport) -> None:
    if report.force_reset_count:
        console.print(f"Reset retry counts for {report.force_reset_count} message(s)")

    reason = report.empty_reason
    if reason == "all_synced":
        console.print("[green]All messages are already synced.[/green]")
        return
    if reason == "maxed_out":
        console.print(
            f"[yellow]No eligible messages: {report.maxed_out} message(s) reached the retry limit.[/yellow]"
        )
        console.print("[dim]Run 'usage-spine push --force' to retry them.[/dim]")
        return

    console.print()
    console.print(
        kv_table(
            [
                ("Batches sent", report.batches_sent),
                ("Batches failed", report.batches_failed),
                ("Batches skipped", report.batches_skipped),
                ("Pushed", report.pushed),
                ("  persisted", report.persisted),
                ("  deduplicated", report.deduplicated),
                ("Failed", report.failed),
                ("Still eligible", report.eligible_after),
            ],
            title="Push Summary",
        )
    )

    if report.failures:
        console.print("\n[bold]Sample failures[/bold]")
        for failure in report.failures:
            console.print(f"  {failure.message_id}: [red]{failure.code}[/red] {describe(failure.code, failure.message)}")
            tip = tip_for(failure.code)
            if tip:
                console.print(f"    [dim]Tip: {tip}[/dim]")
        hidden = report.failed - len(report.failures)
        if hidden > 0:
            console.print(f"  [dim]... and {hidden} more[/dim]")

    if report.stopped_early and report.fatal_error is None:
        console.print("\n[yellow]Stopped early; remaining messages stay queued for the next push.[/yellow]")


def _next_step(report: PushReport) -> str:
    err = report.fatal_error
    if isinstance(err, AuthError):
        return "Log in again to refresh your credential, then re-run 'usage-spine push'."
    if isinstance(err, DatabaseError):
        return "Check the local database (path, permissions, disk space) and re-run the push."
    if err is not None and is_connectivity_error(err):
        return "Check your network connection and --api-url, then re-run the push."
    return "Re-run 'usage-spine push' once the problem is resolved."


def push(
    batch_size: int | None = typer.Option(None, "--batch-size", "-b", min=1, help="Messages per batch"),
    dry_run: bool = typer.Option(False, "--dry-run", "-d", help="Show what would be pushed"),
    force: bool = typer.Option(False, "--force", "-f", help="Reset retry counts and retry failed messages"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Per-batch details"),
    database: str | None = typer.Option(None, "--database", help="Database path or URL"),
    api_url: str | None = typer.Option(None, "--api-url", help="Override the service base URL"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Push unsynchronized usage records to the server."""
    ctx = make_context(database)
    request = RunPushRequest(batch_size=batch_size, dry_run=dry_run, force=force, api_url=api_url)
    effective_batch = batch_size or ctx.settings.batch_size

    if not json_out and not dry_run:
        console.print(f"[bold]Pushing to[/bold] {api_url or ctx.settings.api_base_url} (batch size {effective_batch})")

    result = run_push(ctx, request, on_batch=None if json_out else _render_batch(verbose))
    report = result.data

    if json_out:
        print_json(result.to_dict())
        if not result.success:
            raise typer.Exit(code=1)
        return

    if report is not None and report.dry_run and result.success:
        _render_dry_run(report, effective_batch, force)
        return

    if report is not None:
        _render_summary(report)

    if not result.success:
        err = result.error
        err_console.print()
        print_error(err.code, err.message)
        if report is not None:
            err_console.print(f"[dim]Next step: {_next_step(report)}[/dim]")
        raise typer.Exit(code=1)

    if report is not None and report.empty_reason is None:
        for warning in result.warnings:
            console.print(f"[yellow]Warning:[/yellow] {warning}")
