"""
CLI: ``regops cron`` - inspect what the catch-up scheduler would do.
"""

from __future__ import annotations

import typer
from rich.table import Table

from regops.cli.utils import console, err_console, parse_time
from regops.core.errors import InvalidScheduleError, TooManyMissedSchedulesError
from regops.core.models import CronJob, CronJobSpec, CronJobStatus, JobSpec, ObjectMeta
from regops.core.settings import get_settings
from regops.core.timestamps import to_iso8601
from regops.scheduling.cron import get_recent_schedule_time, job_name_for, next_fire_times

app = typer.Typer(no_args_is_help=True)


@app.command("preview")
def preview(
    schedule: str = typer.Argument(..., help="5-field cron expression"),
    last: str = typer.Option(None, "--last", help="Last scheduled time (ISO-8601)"),
    now: str = typer.Option(None, "--now", help="Evaluation time (ISO-8601), default now"),
    name: str = typer.Option("preview", "--name", help="CronJob name used for the job name"),
) -> None:
    """Show the firing one sync pass would materialize."""
    now_dt = parse_time(now, "--now")
    last_dt = parse_time(last, "--last") if last else now_dt
    cronjob = CronJob(
        metadata=ObjectMeta(name=name, creation_timestamp=last_dt),
        spec=CronJobSpec(schedule=schedule, job_spec=JobSpec()),
        status=CronJobStatus(last_scheduled_time=last_dt),
    )
    cap = get_settings().max_missed_schedules
    try:
        scheduled = get_recent_schedule_time(cronjob, now_dt, cap)
    except InvalidScheduleError as e:
        err_console.print(f"[bold red]Invalid schedule[/bold red]: {e.message}")
        raise typer.Exit(code=2) from e
    except TooManyMissedSchedulesError as e:
        err_console.print(f"[bold red]Refused[/bold red]: {e.message}")
        raise typer.Exit(code=1) from e

    if scheduled is None:
        console.print("[yellow]nothing due[/yellow]")
        return
    console.print(f"[green]due[/green] {to_iso8601(scheduled)} → job {job_name_for(cronjob, scheduled)}")


@app.command("next")
def next_times(
    schedule: str = typer.Argument(..., help="5-field cron expression"),
    count: int = typer.Option(5, "--count", "-n", min=1, help="Number of firings"),
    after: str = typer.Option(None, "--after", help="Start time (ISO-8601), default now"),
) -> None:
    """List upcoming firings of a schedule."""
    start = parse_time(after, "--after")
    try:
        times = next_fire_times(schedule, start, count)
    except InvalidScheduleError as e:
        err_console.print(f"[bold red]Invalid schedule[/bold red]: {e.message}")
        raise typer.Exit(code=2) from e

    table = Table()
    table.add_column("#", justify="right")
    table.add_column("Fires at (UTC)")
    for i, t in enumerate(times, 1):
        table.add_row(str(i), to_iso8601(t))
    console.print(table)
