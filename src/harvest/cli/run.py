"""
CLI: ``harvest run``: trigger one Run and report its outcome.

Exit codes: 0 succeeded, 1 failed, 75 already running (EX_TEMPFAIL).
"""

from __future__ import annotations

from pathlib import Path

import typer

from harvest.cli.utils import ConfigOption, DatabaseOption, JsonOption, console, fail, load_settings, print_json
from harvest.core.errors import HarvestError
from harvest.core.models import RunOutcome, TriggerKind
from harvest.orchestration.factory import build_orchestrator


def run_pipeline(
    kind: str = typer.Option("manual", "--kind", "-k", help="Trigger kind: timer, manual or event."),
    config: Path | None = ConfigOption,
    database: Path | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """Run the pipeline once: fetch, aggregate, publish, merge."""
    try:
        trigger = TriggerKind.parse(kind)
    except ValueError as e:
        raise typer.BadParameter(f"unknown trigger kind: {kind}", param_hint="--kind") from e

    settings = load_settings(config, database)
    try:
        orchestrator = build_orchestrator(settings)
    except HarvestError as e:
        fail(e)

    with orchestrator:
        outcome = orchestrator.execute(trigger)
        run = orchestrator.status(outcome.run_id) if outcome.status == RunOutcome.SUCCEEDED else None

    if json_out:
        print_json(outcome)
    elif run is not None:
        console.print(
            f"[green]succeeded[/green] run {outcome.run_id} "
            f"({run.stats.get('records', 0)} records, {run.stats.get('fetch_failures', 0)} fetch failures)"
        )
    elif outcome.status == RunOutcome.ALREADY_RUNNING:
        console.print(f"[yellow]alreadyRunning[/yellow] {outcome.reason}")
    else:
        console.print(f"[red]failed[/red] run {outcome.run_id}: {outcome.reason}")

    raise typer.Exit(code=outcome.exit_code)
