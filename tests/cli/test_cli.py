"""Tests for the harvest CLI via Typer's CliRunner."""

import json
import sqlite3

import pytest
from typer.testing import CliRunner

import harvest.cli.run as run_command
from harvest import __version__
from harvest.cli.app import app
from harvest.core.models import Run, TriggerKind
from harvest.core.secrets import PUBLISH_SECRET_KEY, DictSecretBackend, SecretsResolver
from harvest.core.settings import HarvestSettings
from harvest.orchestration.factory import build_orchestrator, open_state
from tests._support.builders import SECRET, SleepRecorder, unavailable

runner = CliRunner()


@pytest.fixture(autouse=True)
def _isolated(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for key in ("HARVEST_STATE_DB", "HARVEST_PUBLISH_URL", "HARVEST_PIPELINE_NAME", "HARVEST_SCHEDULE_CRON"):
        monkeypatch.delenv(key, raising=False)
    # keep the per-test logging setup from conftest
    monkeypatch.setattr("harvest.cli.utils.configure_logging", lambda **kwargs: None)


@pytest.fixture
def db(tmp_path):
    return tmp_path / "state.db"


@pytest.fixture
def wired(monkeypatch, store, client, sources):
    """Route ``harvest run`` to an in-memory destination and scripted sources."""

    def _build(settings):
        settings.source_list = list(sources)
        return build_orchestrator(
            settings,
            store=store,
            client=client,
            resolver=SecretsResolver([DictSecretBackend({PUBLISH_SECRET_KEY: SECRET})]),
            sleep=SleepRecorder(),
        )

    monkeypatch.setattr("harvest.cli.run.build_orchestrator", _build)
    return client


@pytest.fixture
def state(db):
    state = open_state(HarvestSettings(state_db=db))
    yield state
    state.close()


def invoke(*args):
    return runner.invoke(app, [str(a) for a in args])


def run_once(db) -> str:
    result = invoke("run", "--database", db, "--json")
    assert result.exit_code == 0, result.output
    return json.loads(result.stdout)["run_id"]


class TestRoot:
    def test_version(self):
        result = invoke("--version")
        assert result.exit_code == 0
        assert f"harvest {__version__}" in result.stdout

    def test_help_lists_commands(self):
        result = invoke("--help")
        assert result.exit_code == 0
        for command in ("run", "runs", "schedule", "workspace", "mainline"):
            assert command in result.stdout


class TestRun:
    """Test ``harvest run`` exit codes."""

    def test_succeeded(self, wired, db, store):
        result = invoke("run", "--database", db)
        assert result.exit_code == 0, result.output
        assert "succeeded" in result.stdout
        assert len(store.records) == 3

    def test_json_outcome(self, wired, db):
        result = invoke("run", "--database", db, "--json", "--kind", "timer")
        payload = json.loads(result.stdout)
        assert payload["status"] == "succeeded"
        assert payload["reason"] is None

    def test_failed(self, wired, db):
        for source_id in ("p1", "p2", "p3"):
            wired.responses[source_id] = unavailable(source_id)
        result = invoke("run", "--database", db)
        assert result.exit_code == 1
        assert "FetchAborted" in result.stdout

    def test_already_running(self, wired, db, state):
        state.ledger.acquire_lock("products", "other-process")
        result = invoke("run", "--database", db, "--json")
        assert result.exit_code == 75
        assert json.loads(result.stdout)["status"] == "alreadyRunning"
        assert wired.calls == []

    def test_bad_kind(self, wired, db):
        result = invoke("run", "--database", db, "--kind", "webhook")
        assert result.exit_code == 2

    def test_state_released_after_run(self, wired, db, monkeypatch):
        built = []
        build = run_command.build_orchestrator

        def _tracking(settings):
            built.append(build(settings))
            return built[-1]

        monkeypatch.setattr(run_command, "build_orchestrator", _tracking)
        assert invoke("run", "--database", db).exit_code == 0

        (orchestrator,) = built
        assert orchestrator.resources == []
        with pytest.raises(sqlite3.ProgrammingError):
            orchestrator.ledger.conn.raw.execute("SELECT 1")

    def test_missing_publish_url(self, db):
        result = invoke("run", "--database", db)
        assert result.exit_code == 1
        assert "publish_url" in result.output


class TestRuns:
    """Test run history commands."""

    def test_list(self, wired, db):
        run_id = run_once(db)
        result = invoke("runs", "list", "--database", db, "--json")
        assert result.exit_code == 0
        (run,) = json.loads(result.stdout)
        assert run["run_id"] == run_id
        assert run["status"] == "succeeded"

    def test_list_table(self, wired, db):
        run_once(db)
        result = invoke("runs", "list", "--database", db)
        assert result.exit_code == 0
        assert "Runs: products" in result.stdout

    def test_list_bad_status(self, db):
        assert invoke("runs", "list", "--database", db, "--status", "done").exit_code == 2

    def test_show(self, wired, db):
        run_id = run_once(db)
        result = invoke("runs", "show", run_id, "--database", db, "--json")
        assert json.loads(result.stdout)["stats"]["records"] == 3

    def test_show_unknown(self, db):
        result = invoke("runs", "show", "nope", "--database", db)
        assert result.exit_code == 1
        assert "RunNotFound" in result.output

    def test_events(self, wired, db):
        run_id = run_once(db)
        result = invoke("runs", "events", run_id, "--database", db, "--json")
        types = [e["event_type"] for e in json.loads(result.stdout)]
        assert types[0] == "run.pending"
        assert types[-1] == "run.succeeded"

    def test_cancel_active_run(self, db, state):
        run = Run(run_id="run-1", pipeline="products", trigger=TriggerKind.MANUAL)
        run.mark_running()
        state.ledger.append(run)

        result = invoke("runs", "cancel", "run-1", "--database", db, "--reason", "maintenance")

        assert result.exit_code == 0, result.output
        assert state.ledger.cancel_requested("run-1")
        assert [e.event_type for e in state.ledger.events("run-1")] == ["run.cancel_requested"]

    def test_cancel_finished_run(self, wired, db):
        run_id = run_once(db)
        result = invoke("runs", "cancel", run_id, "--database", db)
        assert result.exit_code == 1
        assert "already finished" in result.stdout


class TestSchedule:
    def test_next(self):
        result = invoke("schedule", "next", "--cron", "*/15 * * * *", "-n", "3", "--json")
        payload = json.loads(result.stdout)
        assert payload["cron"] == "*/15 * * * *"
        assert len(payload["next"]) == 3

    def test_next_from_settings(self, monkeypatch):
        monkeypatch.setenv("HARVEST_SCHEDULE_CRON", "0 6 * * *")
        result = invoke("schedule", "next", "--json")
        assert json.loads(result.stdout)["cron"] == "0 6 * * *"

    def test_invalid_cron(self):
        result = invoke("schedule", "next", "--cron", "every hour")
        assert result.exit_code == 1
        assert "ConfigError" in result.output


class TestWorkspace:
    """Test stale workspace inspection and clean-up."""

    def test_list(self, db, state):
        state.isolation.open_workspace("crashed-run")
        result = invoke("workspace", "list", "--database", db, "--json")
        (row,) = json.loads(result.stdout)
        assert row["name"] == "scrape/products"
        assert row["run_id"] == "crashed-run"

    def test_abandon(self, db, state):
        state.isolation.open_workspace("crashed-run")
        result = invoke("workspace", "abandon", "scrape/products", "--database", db, "--yes")
        assert result.exit_code == 0, result.output
        assert state.isolation.list_workspaces() == []

    def test_abandon_declined(self, db, state):
        state.isolation.open_workspace("crashed-run")
        result = runner.invoke(app, ["workspace", "abandon", "scrape/products", "--database", str(db)], input="n\n")
        assert result.exit_code == 1
        assert len(state.isolation.list_workspaces()) == 1

    def test_abandon_unknown(self, db):
        result = invoke("workspace", "abandon", "scrape/nothing", "--database", db, "-y")
        assert result.exit_code == 1
        assert "WorkspaceNotFound" in result.output

    def test_run_after_abandon(self, wired, db, state):
        state.isolation.open_workspace("crashed-run")
        assert invoke("run", "--database", db).exit_code == 1
        invoke("workspace", "abandon", "scrape/products", "--database", db, "-y")
        assert invoke("run", "--database", db).exit_code == 0


class TestMainline:
    def test_log(self, wired, db):
        run_id = run_once(db)
        result = invoke("mainline", "log", "--database", db, "--json")
        (commit,) = json.loads(result.stdout)
        assert commit["run_id"] == run_id

    def test_show_dataset(self, wired, db):
        run_once(db)
        result = invoke("mainline", "show", "--database", db)
        assert result.exit_code == 0
        assert json.loads(result.stdout)["index"] == ["SKU-1", "SKU-2", "SKU-3"]

    def test_show_missing(self, db):
        result = invoke("mainline", "show", "--database", db)
        assert result.exit_code == 1
        assert "not on the main line" in result.output
