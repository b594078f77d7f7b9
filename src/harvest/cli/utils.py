"""
CLI utility helpers: settings loading and output formatting.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict
from pathlib import Path
from typing import Any

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from harvest.core.errors import HarvestError
from harvest.core.logging import configure_logging
from harvest.core.settings import HarvestSettings
from harvest.orchestration.factory import HarvestState, open_state

console = Console()
err_console = Console(stderr=True)

ConfigOption = typer.Option(None, "--config", "-c", help="YAML settings file.")
DatabaseOption = typer.Option(None, "--database", "-d", help="State database (overrides HARVEST_STATE_DB).")
JsonOption = typer.Option(False, "--json", help="Machine-readable output.")


# ── Settings / state ─────────────────────────────────────────────────────


def load_settings(config: Path | None = None, database: Path | None = None) -> HarvestSettings:
    """Build settings from env (and *config*), then set up logging."""
    overrides: dict[str, Any] = {}
    if database is not None:
        overrides["state_db"] = database
    try:
        settings = HarvestSettings.from_yaml(config, **overrides) if config else HarvestSettings(**overrides)
    except HarvestError as e:
        fail(e)
    except ValidationError as e:
        fail(f"invalid settings: {e}")
    configure_logging(level=settings.log_level, json_format=settings.json_logs)
    return settings


@contextmanager
def state_for(config: Path | None, database: Path | None) -> Iterator[tuple[HarvestSettings, HarvestState]]:
    """Open the state database for one command; domain errors exit with code 1."""
    settings = load_settings(config, database)
    state = open_state(settings)
    try:
        yield settings, state
    except HarvestError as e:
        fail(e)
    finally:
        state.close()


def fail(error: HarvestError | str, code: int = 1) -> None:
    """Print an error to stderr and exit."""
    if isinstance(error, HarvestError):
        err_console.print(f"[bold red]Error[/bold red] ({error.kind}): {error.message}")
    else:
        err_console.print(f"[bold red]Error[/bold red]: {error}")
    raise typer.Exit(code=code)


# ── Output helpers ───────────────────────────────────────────────────────


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert a record / dataclass / pydantic model / dict to a plain dict."""
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    if hasattr(obj, "__dataclass_fields__"):
        return asdict(obj)
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def print_json(payload: Any) -> None:
    if isinstance(payload, list | tuple):
        payload = [_to_dict(p) for p in payload]
    elif not isinstance(payload, str | int | float | bool) and payload is not None:
        payload = _to_dict(payload)
    console.print_json(json.dumps(payload, default=str))


def print_table(rows: list[dict[str, Any]], *, title: str = "") -> None:
    """Render rows of plain dicts as a Rich table."""
    if not rows:
        console.print("[dim]No items.[/dim]")
        return
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in rows[0]:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*("" if v is None else str(v) for v in row.values()))
    console.print(table)


def print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")
