"""Wire settings into a ready-to-run orchestrator.

``open_state`` gives read access to the state database (run ledger and main
line) without touching the network; ``build_orchestrator`` adds the fetcher,
aggregator and publisher on top of it.
"""

from __future__ import annotations

import time
from dataclasses import dataclass

from harvest.core.connection import SqliteConnection
from harvest.core.errors import ConfigError
from harvest.core.secrets import PUBLISH_SECRET_KEY, SecretRef, SecretsResolver, default_resolver
from harvest.core.settings import HarvestSettings
from harvest.execution.events import EventSink
from harvest.execution.rate_limit import SleepFn
from harvest.isolation.manager import IsolationManager
from harvest.isolation.store import BranchStore
from harvest.orchestration.ledger import RunLedger
from harvest.orchestration.orchestrator import Orchestrator
from harvest.pipeline.aggregator import Aggregator
from harvest.pipeline.fetcher import Fetcher, HttpSourceClient, SourceClient
from harvest.pipeline.publisher import Publisher
from harvest.pipeline.stores import DatasetStore, HttpDatasetStore


@dataclass
class HarvestState:
    conn: SqliteConnection
    ledger: RunLedger
    isolation: IsolationManager

    def close(self) -> None:
        self.conn.close()


def open_state(settings: HarvestSettings, conn: SqliteConnection | None = None) -> HarvestState:
    """Open (and create if needed) the state database."""
    conn = conn or SqliteConnection(settings.state_db)
    return HarvestState(
        conn=conn,
        ledger=RunLedger(conn),
        isolation=IsolationManager(BranchStore(conn), settings.pipeline_name, prefix=settings.workspace_name_prefix),
    )


def build_orchestrator(
    settings: HarvestSettings,
    *,
    store: DatasetStore | None = None,
    client: SourceClient | None = None,
    state: HarvestState | None = None,
    resolver: SecretsResolver | None = None,
    events: EventSink | None = None,
    sleep: SleepFn = time.sleep,
) -> Orchestrator:
    """Build an :class:`Orchestrator` from settings.

    Whatever is created here rather than passed in (state database, HTTP
    clients) is closed by ``Orchestrator.close()``.

    Raises:
        ConfigError: No destination store and no ``publish_url``
    """
    if store is None and not settings.publish_url:
        raise ConfigError("publish_url is not set (HARVEST_PUBLISH_URL)")

    owned: list[HarvestState | HttpDatasetStore | HttpSourceClient] = []
    if state is None:
        state = open_state(settings)
        owned.append(state)
    if store is None:
        store = HttpDatasetStore(settings.publish_url, timeout=settings.fetch_timeout_seconds)
        owned.append(store)
    if client is None:
        client = HttpSourceClient(timeout=settings.fetch_timeout_seconds, user_agent=settings.user_agent)
        owned.append(client)

    fetcher = Fetcher(
        client,
        rate_limit_delay=settings.rate_limit_delay_seconds,
        max_consecutive_failures=settings.max_consecutive_fetch_failures,
        sleep=sleep,
    )
    publisher = Publisher(
        store,
        max_attempts=settings.upload_retry_count,
        base_delay=settings.upload_backoff_seconds,
        sleep=sleep,
    )
    return Orchestrator(
        pipeline=settings.pipeline_name,
        sources=settings.sources(),
        isolation=state.isolation,
        fetcher=fetcher,
        aggregator=Aggregator(max_skip_ratio=settings.max_skip_ratio),
        publisher=publisher,
        ledger=state.ledger,
        secret=SecretRef(PUBLISH_SECRET_KEY, resolver=resolver or default_resolver(settings.secrets_dir)),
        events=events,
        lock_ttl_seconds=settings.run_lock_ttl_seconds,
        resources=owned,
    )
