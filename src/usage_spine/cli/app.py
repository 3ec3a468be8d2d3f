"""
Root Typer application for the usage-spine CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from usage_spine import __version__
from usage_spine.core.logging import configure_logging
from usage_spine.core.settings import get_settings

app = Typer(
    name="usage-spine",
    help="usage-spine - local usage tracking with reliable push synchronization.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"usage-spine {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Override log level (DEBUG, INFO, ...)."),
) -> None:
    """usage-spine CLI - push usage records and inspect sync state."""
    settings = get_settings()
    configure_logging(
        level=log_level or settings.log_level,
        json_format=settings.log_format == "json",
    )


# ── Sub-command registration ─────────────────────────────────────────────

from usage_spine.cli.config import app as config_app  # noqa: E402
from usage_spine.cli.db import app as db_app  # noqa: E402
from usage_spine.cli.push import push  # noqa: E402
from usage_spine.cli.status import push_status  # noqa: E402

app.command("push")(push)
app.command("push-status")(push_status)
app.add_typer(config_app, name="config", help="Configuration inspection.")
app.add_typer(db_app, name="db", help="Local database operations.")
