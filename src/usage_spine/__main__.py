"""Allow ``python -m usage_spine``."""

from usage_spine.cli.app import app

app()
