"""
CLI: ``harvest schedule``: cron preview and the scheduler loop.
"""

from __future__ import annotations

from pathlib import Path

import typer

from harvest.cli.utils import ConfigOption, DatabaseOption, JsonOption, console, fail, load_settings, print_json
from harvest.core.errors import HarvestError
from harvest.orchestration.factory import build_orchestrator
from harvest.scheduling.service import CronSchedule, SchedulerService

app = typer.Typer(no_args_is_help=True)


@app.command("next")
def next_fire_times(
    cron: str | None = typer.Option(None, "--cron", help="Cron expression (defaults to HARVEST_SCHEDULE_CRON)."),
    count: int = typer.Option(5, "--count", "-n", min=1),
    config: Path | None = ConfigOption,
    json_out: bool = JsonOption,
) -> None:
    """Preview the next fire times of the timer trigger."""
    expression = cron or load_settings(config).schedule_cron
    try:
        times = CronSchedule(expression).next_fire_times(count)
    except HarvestError as e:
        fail(e)

    if json_out:
        print_json({"cron": expression, "next": [t.isoformat() for t in times]})
        return
    console.print(f"[bold]{expression}[/bold]")
    for t in times:
        console.print(f"  {t.isoformat()}")


@app.command("start")
def start(
    config: Path | None = ConfigOption,
    database: Path | None = DatabaseOption,
) -> None:
    """Run the scheduler in the foreground until interrupted."""
    settings = load_settings(config, database)
    try:
        orchestrator = build_orchestrator(settings)
    except HarvestError as e:
        fail(e)
    try:
        service = SchedulerService(
            orchestrator,
            settings.schedule_cron,
            interval_seconds=settings.scheduler_interval_seconds,
        )
    except HarvestError as e:
        orchestrator.close()
        fail(e)

    service.start()
    console.print(
        f"Scheduler started for [bold]{settings.pipeline_name}[/bold] "
        f"({settings.schedule_cron}, next fire {service.next_fire.isoformat()}). Ctrl+C to stop."
    )
    try:
        service.wait()
    except KeyboardInterrupt:
        console.print("Stopping scheduler...")
    finally:
        service.stop()
        orchestrator.close()
