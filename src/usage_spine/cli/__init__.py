"""usage-spine command-line interface (typer + rich)."""
