"""
CLI: ``regops config`` - configuration inspection.
"""

from __future__ import annotations

import typer
from pydantic import ValidationError as SettingsValidationError
from rich.table import Table

from regops.cli.utils import console
from regops.core.settings import get_settings

app = typer.Typer(no_args_is_help=True)


@app.command("show")
def show_config(
    format: str = typer.Option("table", "--format", "-f", help="Output format: table, json, env"),
) -> None:
    """Show current configuration."""
    settings = get_settings()

    if format == "json":
        console.print_json(settings.model_dump_json())
        return

    if format == "env":
        for key, value in sorted(settings.model_dump().items()):
            console.print(f"REGOPS_{key.upper()}={value}")
        return

    table = Table(title="regops settings")
    table.add_column("Setting")
    table.add_column("Value")
    for key, value in settings.model_dump().items():
        table.add_row(key, str(value))
    console.print(table)


@app.command("validate")
def validate_config() -> None:
    """Load settings from the environment and report errors."""
    try:
        settings = get_settings(_force_reload=True)
    except SettingsValidationError as e:
        console.print(f"[red]Configuration Error:[/red] {e}")
        raise typer.Exit(1) from e
    console.print(
        f"[green]✓[/green] settings ok "
        f"(max_concurrent_jobs={settings.max_concurrent_jobs}, "
        f"max_missed_schedules={settings.max_missed_schedules})"
    )
