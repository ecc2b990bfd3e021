"""
CLI utility helpers - consoles and argument parsing.
"""

from __future__ import annotations

from datetime import datetime

import typer
from rich.console import Console

from regops.core.timestamps import from_iso8601, utc_now

console = Console()
err_console = Console(stderr=True)


def parse_time(value: str | None, option: str) -> datetime:
    """Parse an ISO-8601 option value; ``None`` means now."""
    if value is None:
        return utc_now()
    try:
        parsed = from_iso8601(value)
    except ValueError as e:
        err_console.print(f"[bold red]Error[/bold red]: {option} is not an ISO-8601 time: {value}")
        raise typer.Exit(code=2) from e
    return parsed or utc_now()
