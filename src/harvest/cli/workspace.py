"""
CLI: ``harvest workspace``: inspect and clear stale workspaces.

A workspace left behind by a crashed process makes every later Run fail
with ``WorkspaceCollision``; ``abandon`` is the manual clean-up.
"""

from __future__ import annotations

from pathlib import Path

import typer

from harvest.cli.utils import ConfigOption, DatabaseOption, JsonOption, console, print_json, print_table, state_for

app = typer.Typer(no_args_is_help=True)


@app.command("list")
def list_workspaces(
    config: Path | None = ConfigOption,
    database: Path | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """List open workspaces."""
    with state_for(config, database) as (_, state):
        workspaces = state.isolation.list_workspaces()

    rows = [
        {
            "name": ws.name,
            "run_id": ws.run_id,
            "base_commit": ws.base_commit,
            "created_at": ws.created_at.isoformat(timespec="seconds"),
        }
        for ws in workspaces
    ]
    if json_out:
        print_json(rows)
        return
    print_table(rows, title="Workspaces")


@app.command()
def abandon(
    name: str = typer.Argument(..., help="Workspace name, e.g. scrape/products"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
    config: Path | None = ConfigOption,
    database: Path | None = DatabaseOption,
) -> None:
    """Delete a workspace and its unmerged commits. The main line is untouched."""
    if not yes:
        typer.confirm(f"Abandon workspace '{name}'?", abort=True)
    with state_for(config, database) as (_, state):
        workspace = state.isolation.abandon_by_name(name)
    console.print(f"Abandoned workspace [bold]{workspace.name}[/bold] (run {workspace.run_id}).")
