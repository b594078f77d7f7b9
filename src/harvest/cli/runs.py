"""
CLI: ``harvest runs``: run history, events and cancellation.
"""

from __future__ import annotations

from pathlib import Path

import typer

from harvest.cli.utils import (
    ConfigOption,
    DatabaseOption,
    JsonOption,
    console,
    print_dict,
    print_json,
    print_table,
    state_for,
)
from harvest.core.models import RunStatus
from harvest.execution.events import EventType, RunEvent

app = typer.Typer(no_args_is_help=True)


def _row(run) -> dict:
    return {
        "run_id": run.run_id,
        "trigger": run.trigger.value,
        "status": run.status.value,
        "created_at": run.created_at.isoformat(timespec="seconds"),
        "duration_s": f"{run.duration_seconds:.1f}" if run.duration_seconds is not None else None,
        "failure": run.failure.reason if run.failure else None,
    }


@app.command("list")
def list_runs(
    status: str | None = typer.Option(None, "--status", "-s", help="pending, running, succeeded or failed."),
    limit: int = typer.Option(20, "--limit", "-n"),
    config: Path | None = ConfigOption,
    database: Path | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """List recent runs, newest first."""
    if status is not None and status not in {s.value for s in RunStatus}:
        raise typer.BadParameter(f"unknown status: {status}", param_hint="--status")

    with state_for(config, database) as (settings, state):
        runs = state.ledger.list_runs(pipeline=settings.pipeline_name, status=status, limit=limit)

    if json_out:
        print_json(runs)
        return
    print_table([_row(r) for r in runs], title=f"Runs: {settings.pipeline_name}")


@app.command("show")
def show_run(
    run_id: str = typer.Argument(..., help="Run ID"),
    config: Path | None = ConfigOption,
    database: Path | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """Show the latest state of a run."""
    with state_for(config, database) as (_, state):
        run = state.ledger.get(run_id)

    if json_out:
        print_json(run)
        return
    data = run.to_dict()
    stats = data.pop("stats")
    failure = data.pop("failure")
    print_dict(data, title=f"Run: {run_id}")
    if failure:
        print_dict(failure, title="Failure")
    if stats:
        print_dict(stats, title="Stats")


@app.command()
def cancel(
    run_id: str = typer.Argument(..., help="Run ID"),
    reason: str = typer.Option("", "--reason", "-r"),
    config: Path | None = ConfigOption,
    database: Path | None = DatabaseOption,
) -> None:
    """Request soft cancellation of an active run."""
    with state_for(config, database) as (_, state):
        accepted = state.ledger.request_cancel(run_id, reason)
        if accepted:
            state.ledger.emit(
                RunEvent(run_id=run_id, event_type=EventType.RUN_CANCEL_REQUESTED.value, data={"reason": reason})
            )

    if not accepted:
        console.print(f"[yellow]Run {run_id} already finished; nothing to cancel.[/yellow]")
        raise typer.Exit(code=1)
    console.print(f"Cancellation requested for run {run_id}; it stops at the next phase boundary.")


@app.command()
def events(
    run_id: str = typer.Argument(..., help="Run ID"),
    limit: int = typer.Option(200, "--limit", "-n"),
    config: Path | None = ConfigOption,
    database: Path | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """Show the event log of a run."""
    with state_for(config, database) as (_, state):
        state.ledger.get(run_id)
        items = state.ledger.events(run_id, limit=limit)

    if json_out:
        print_json(items)
        return
    print_table(
        [
            {
                "timestamp": e.timestamp.isoformat(timespec="milliseconds"),
                "event": e.event_type,
                "phase": e.data.get("phase"),
                "detail": e.data.get("reason") or e.data.get("error") or "",
            }
            for e in items
        ],
        title=f"Events: {run_id}",
    )
