"""
CLI: ``harvest mainline``: read the versioned main line.
"""

from __future__ import annotations

from pathlib import Path

import typer

from harvest.cli.utils import (
    ConfigOption,
    DatabaseOption,
    JsonOption,
    console,
    err_console,
    print_json,
    print_table,
    state_for,
)

app = typer.Typer(no_args_is_help=True)


@app.command("log")
def log(
    limit: int = typer.Option(20, "--limit", "-n"),
    config: Path | None = ConfigOption,
    database: Path | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """Main-line history, newest first."""
    with state_for(config, database) as (_, state):
        commits = state.isolation.history(limit)

    rows = [
        {
            "commit": c.commit_id,
            "parents": ",".join(str(p) for p in (c.parent_id, c.merge_parent_id) if p is not None),
            "run_id": c.run_id,
            "created_at": c.created_at.isoformat(timespec="seconds"),
            "message": c.message,
        }
        for c in commits
    ]
    if json_out:
        print_json(rows)
        return
    print_table(rows, title="Main line")


@app.command("show")
def show(
    path: str | None = typer.Argument(None, help="File path; defaults to the pipeline's dataset."),
    config: Path | None = ConfigOption,
    database: Path | None = DatabaseOption,
) -> None:
    """Print a file from the main-line head."""
    with state_for(config, database) as (_, state):
        path = path or state.isolation.dataset_path
        content = state.isolation.read_main(path)

    if content is None:
        err_console.print(f"[bold red]Error[/bold red]: {path} is not on the main line")
        raise typer.Exit(code=1)
    if path.endswith(".json"):
        console.print_json(content)
    else:
        console.print(content, markup=False)
