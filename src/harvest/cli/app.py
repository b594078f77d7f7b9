"""
Root Typer application for the harvest CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from harvest import __version__

app = Typer(
    name="harvest",
    help="harvest: scheduled, branch-isolated scrape-and-publish pipeline.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"harvest {__version__}")
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
) -> None:
    """harvest CLI: trigger runs, inspect history, manage workspaces."""


# ── Sub-command registration ─────────────────────────────────────────────

from harvest.cli.mainline import app as mainline_app  # noqa: E402
from harvest.cli.run import run_pipeline  # noqa: E402
from harvest.cli.runs import app as runs_app  # noqa: E402
from harvest.cli.schedule import app as sched_app  # noqa: E402
from harvest.cli.workspace import app as workspace_app  # noqa: E402

app.command("run")(run_pipeline)
app.add_typer(runs_app, name="runs", help="Run history, events and cancellation.")
app.add_typer(sched_app, name="schedule", help="Timer schedule.")
app.add_typer(workspace_app, name="workspace", help="Workspace inspection and clean-up.")
app.add_typer(mainline_app, name="mainline", help="Versioned main line.")
