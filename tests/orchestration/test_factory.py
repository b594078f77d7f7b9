"""Tests for wiring settings into an orchestrator."""

import sqlite3

import pytest

from harvest.core.errors import ConfigError
from harvest.core.models import RunOutcome
from harvest.core.secrets import PUBLISH_SECRET_KEY, DictSecretBackend, SecretsResolver
from harvest.core.settings import HarvestSettings
from harvest.orchestration.factory import build_orchestrator, open_state
from tests._support.builders import SECRET, ScriptedClient, SleepRecorder, product


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    monkeypatch.delenv("HARVEST_PUBLISH_URL", raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def settings(tmp_path) -> HarvestSettings:
    return HarvestSettings(
        source_list=[{"id": "a", "url": "https://shop.test/a.json"}, {"id": "b", "url": "https://shop.test/b.json"}],
        state_db=tmp_path / "state" / "harvest.db",
        rate_limit_delay_ms=250,
        upload_retry_count=5,
        run_lock_ttl_seconds=60,
    )


class TestOpenState:
    def test_creates_database(self, settings):
        state = open_state(settings)
        try:
            assert settings.state_db.exists()
            assert state.isolation.workspace_name == "scrape/products"
            assert state.ledger.list_runs() == []
        finally:
            state.close()


class TestBuildOrchestrator:
    """Test settings flowing into the parts."""

    def test_requires_publish_url(self, settings):
        with pytest.raises(ConfigError, match="publish_url"):
            build_orchestrator(settings)

    def test_http_store_from_url(self, settings):
        settings.publish_url = "https://dest.test/datasets/products"
        with build_orchestrator(settings) as orchestrator:
            assert orchestrator.publisher.store.url == "https://dest.test/datasets/products"

    def test_settings_applied(self, settings, store):
        with build_orchestrator(settings, store=store, client=ScriptedClient({})) as orchestrator:
            assert [s.id for s in orchestrator.sources] == ["a", "b"]
            assert orchestrator.fetcher.rate_limit_delay == 0.25
            assert orchestrator.publisher.strategy.max_attempts == 5
            assert orchestrator.lock_ttl_seconds == 60

    def test_runs_end_to_end(self, settings, store):
        resolver = SecretsResolver([DictSecretBackend({PUBLISH_SECRET_KEY: SECRET})])
        client = ScriptedClient({"a": product("A"), "b": product("B")})
        state = open_state(settings)
        try:
            orchestrator = build_orchestrator(
                settings, store=store, client=client, state=state, resolver=resolver, sleep=SleepRecorder()
            )
            outcome = orchestrator.execute("manual")
            assert outcome.status == RunOutcome.SUCCEEDED
            assert set(store.records) == {"A", "B"}
            assert state.isolation.published_dataset().index == ("A", "B")
        finally:
            state.close()


class TestResources:
    """Test that built orchestrators release what they opened."""

    def test_close_releases_owned(self, settings):
        settings.publish_url = "https://dest.test/datasets/products"
        orchestrator = build_orchestrator(settings)
        store, client, conn = orchestrator.publisher.store, orchestrator.fetcher.client, orchestrator.ledger.conn

        orchestrator.close()

        assert store._client.is_closed
        assert client._client.is_closed
        with pytest.raises(sqlite3.ProgrammingError):
            conn.raw.execute("SELECT 1")
        orchestrator.close()

    def test_passed_in_parts_stay_open(self, settings, store):
        state = open_state(settings)
        try:
            with build_orchestrator(settings, store=store, client=ScriptedClient({}), state=state):
                pass
            assert state.ledger.list_runs() == []
        finally:
            state.close()
