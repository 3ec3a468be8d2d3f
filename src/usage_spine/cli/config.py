"""
CLI: ``usage-spine config`` - configuration inspection.
"""

from __future__ import annotations

import typer

from usage_spine.cli.utils import console, print_json
from usage_spine.core.errors import ConfigError
from usage_spine.core.settings import get_settings

app = typer.Typer(no_args_is_help=True)


@app.command("show")
def show_config(
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Show the effective configuration (credentials redacted)."""
    from usage_spine.auth.credentials import FileCredentialProvider

    settings = get_settings()
    values = settings.model_dump(mode="json")
    try:
        token = FileCredentialProvider(settings.credentials_file).get_token()
    except ConfigError:
        token = None
    values["api_token"] = "********" if token else None

    if json_out:
        print_json(values)
        return

    from rich.table import Table

    table = Table(title="usage-spine settings", pad_edge=False)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for key, value in sorted(values.items()):
        table.add_row(key, "-" if value is None else str(value))
    console.print(table)
    console.print(f"\n[dim]Push endpoint: {settings.push_url}[/dim]")
