"""
Shared pytest fixtures for harvest tests.

Provides:
- Structured logging configured per test (no logger caching)
- In-memory state database, ledger and isolation manager
- A fully wired orchestrator backed by an in-memory destination store

Builders (artifacts, products, scripted clients) live in
``tests._support.builders``.
"""

from __future__ import annotations

from typing import Any

import pytest

from harvest.core.connection import SqliteConnection
from harvest.core.logging import clear_context, configure_logging
from harvest.core.secrets import PUBLISH_SECRET_KEY, DictSecretBackend, SecretRef, SecretsResolver
from harvest.core.settings import SourceSpec
from harvest.execution.events import InMemoryEventSink
from harvest.isolation.manager import IsolationManager
from harvest.isolation.store import BranchStore
from harvest.orchestration.ledger import RunLedger
from harvest.orchestration.orchestrator import Orchestrator
from harvest.pipeline.aggregator import Aggregator
from harvest.pipeline.fetcher import Fetcher
from harvest.pipeline.publisher import Publisher
from harvest.pipeline.stores import InMemoryDatasetStore
from tests._support.builders import SECRET, ScriptedClient, SleepRecorder, product


@pytest.fixture(autouse=True)
def _structured_logging():
    configure_logging(level="DEBUG", json_format=True, cache_loggers=False)
    yield
    clear_context()


@pytest.fixture
def conn():
    connection = SqliteConnection(":memory:")
    yield connection
    connection.close()


@pytest.fixture
def ledger(conn) -> RunLedger:
    return RunLedger(conn)


@pytest.fixture
def branch_store(conn) -> BranchStore:
    return BranchStore(conn)


@pytest.fixture
def isolation(branch_store) -> IsolationManager:
    return IsolationManager(branch_store, "products")


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def sources() -> list[SourceSpec]:
    return [SourceSpec(id=f"p{i}", url=f"https://shop.test/p{i}.json") for i in range(1, 4)]


@pytest.fixture
def client(sources) -> ScriptedClient:
    return ScriptedClient({s.id: product(f"SKU-{s.id[1:]}") for s in sources})


@pytest.fixture
def store() -> InMemoryDatasetStore:
    return InMemoryDatasetStore(accepted_secrets={SECRET})


@pytest.fixture
def secret_backend() -> DictSecretBackend:
    return DictSecretBackend({PUBLISH_SECRET_KEY: SECRET})


@pytest.fixture
def secret(secret_backend) -> SecretRef:
    return SecretRef(PUBLISH_SECRET_KEY, resolver=SecretsResolver([secret_backend]))


@pytest.fixture
def events() -> InMemoryEventSink:
    return InMemoryEventSink()


@pytest.fixture
def make_orchestrator(sources, client, store, secret, isolation, ledger, events, sleeper):
    """Factory building an orchestrator; keyword overrides replace parts.

    ``client``, ``store`` and ``max_consecutive_failures`` are routed into the
    fetcher and publisher; any other keyword replaces an ``Orchestrator``
    argument.
    """

    def _make(**overrides: Any) -> Orchestrator:
        fetcher = Fetcher(
            overrides.pop("client", client),
            rate_limit_delay=0.5,
            max_consecutive_failures=overrides.pop("max_consecutive_failures", 3),
            sleep=sleeper,
        )
        publisher = Publisher(overrides.pop("store", store), max_attempts=3, base_delay=0.1, sleep=sleeper)
        parts: dict[str, Any] = {
            "pipeline": "products",
            "sources": sources,
            "isolation": isolation,
            "fetcher": fetcher,
            "aggregator": Aggregator(),
            "publisher": publisher,
            "ledger": ledger,
            "secret": secret,
            "events": events,
        }
        parts.update(overrides)
        return Orchestrator(**parts)

    return _make


@pytest.fixture
def orchestrator(make_orchestrator) -> Orchestrator:
    return make_orchestrator()
