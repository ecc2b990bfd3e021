"""
Root Typer application for the regops CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from regops import __version__
from regops.core.logging import configure_logging

app = Typer(
    name="regops",
    help="regops - asynchronous job subsystem for a container-registry operator.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"regops-core {__version__}")
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
    log_level: str = typer.Option(
        "WARNING", "--log-level", envvar="REGOPS_LOG_LEVEL", help="DEBUG, INFO, WARNING or ERROR."
    ),
) -> None:
    """regops CLI - inspect configuration and cron schedules."""
    configure_logging(level=log_level, json_format=False, service="regops-cli")


# ── Sub-command registration ─────────────────────────────────────────────

from regops.cli.config import app as config_app  # noqa: E402
from regops.cli.cron import app as cron_app  # noqa: E402

app.add_typer(config_app, name="config", help="Configuration management.")
app.add_typer(cron_app, name="cron", help="Cron schedule inspection.")
