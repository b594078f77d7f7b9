"""Harvest settings - environment-driven pipeline configuration.

All options read from ``HARVEST_*`` environment variables and ``.env``;
optionally seeded from a YAML file where real environment variables still
win.

Fields
──────
source_list                    : Scrape targets (URLs or ``{id, url}`` mappings)
rate_limit_delay_ms            : Delay between two fetches
max_consecutive_fetch_failures : Abort threshold for the fetch phase
upload_retry_count             : Publish attempts in total (default 3)
workspace_name_prefix          : Prefix of the per-pipeline workspace name
pipeline_name                  : Logical pipeline (one active Run at a time)
max_skip_ratio                 : Malformed-artifact ratio tolerated by the aggregator
schedule_cron                  : Cron expression for timer triggers
state_db                       : SQLite file holding run ledger and main line
publish_url                    : HTTP endpoint of the destination store
secrets_dir                    : Optional directory of mounted secret files

Examples:
    >>> settings = HarvestSettings(source_list=["https://example.com/p/1.json"])
    >>> settings.sources()[0].id
    'https://example.com/p/1.json'
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from harvest.core.errors import ConfigError

ENV_PREFIX = "HARVEST_"


class SourceSpec(BaseModel):
    """One enumerated scrape target."""

    id: str
    url: str

    model_config = {"frozen": True}


class HarvestSettings(BaseSettings):
    """Pipeline configuration."""

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Pipeline ─────────────────────────────────────────────────
    pipeline_name: str = "products"
    source_list: list[SourceSpec | str] = Field(default_factory=list)
    rate_limit_delay_ms: int = Field(default=1000, ge=0)
    max_consecutive_fetch_failures: int = Field(default=3, ge=1)
    fetch_timeout_seconds: float = Field(default=30.0, gt=0)
    user_agent: str = "harvest-spine/0.1 (+scheduled scraper)"
    max_skip_ratio: float = Field(default=0.5, ge=0.0, le=1.0)
    upload_retry_count: int = Field(default=3, ge=1)
    upload_backoff_seconds: float = Field(default=1.0, ge=0.0)
    workspace_name_prefix: str = "scrape/"

    # ── Scheduling ───────────────────────────────────────────────
    schedule_cron: str = "0 * * * *"
    scheduler_interval_seconds: float = Field(default=10.0, gt=0)

    # ── Destinations / state ────────────────────────────────────
    state_db: Path = Path(".harvest/state.db")
    publish_url: str | None = None
    secrets_dir: Path | None = None
    run_lock_ttl_seconds: int = Field(default=6 * 3600, gt=0)

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None

    @field_validator("workspace_name_prefix")
    @classmethod
    def _prefix_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("workspace_name_prefix must not be blank")
        return value

    def sources(self) -> list[SourceSpec]:
        """Normalized source list; bare URLs use the URL as id."""
        specs = [SourceSpec(id=s, url=s) if isinstance(s, str) else s for s in self.source_list]
        seen: set[str] = set()
        for spec in specs:
            if spec.id in seen:
                raise ConfigError(f"duplicate source id in source_list: {spec.id}")
            seen.add(spec.id)
        return specs

    @property
    def workspace_name(self) -> str:
        return f"{self.workspace_name_prefix}{self.pipeline_name}"

    @property
    def rate_limit_delay_seconds(self) -> float:
        return self.rate_limit_delay_ms / 1000.0

    @classmethod
    def from_yaml(cls, path: str | Path, **overrides: Any) -> HarvestSettings:
        """Load settings from a YAML mapping; ``HARVEST_*`` env vars still win.

        Raises:
            ConfigError: If the file is missing or not a mapping
        """
        path = Path(path)
        if not path.is_file():
            raise ConfigError(f"config file not found: {path}")
        with path.open(encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
        if not isinstance(data, dict):
            raise ConfigError(f"config file must contain a mapping: {path}")

        values = {
            key: value
            for key, value in data.items()
            if f"{ENV_PREFIX}{key}".upper() not in os.environ
        }
        values.update(overrides)
        return cls(**values)
