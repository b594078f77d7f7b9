"""Tests for the cron-driven scheduler service."""

from datetime import UTC, datetime, timedelta

import pytest

from harvest.core.errors import ConfigError
from harvest.core.models import RunOutcome, RunStatus, TriggerKind
from harvest.scheduling.service import CronSchedule, SchedulerService
from tests._support.builders import T0


class FakeOrchestrator:
    """Records execute calls and answers from a script."""

    def __init__(self, *outcomes: RunOutcome) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[TriggerKind] = []
        self.active_run = None

    def execute(self, kind):
        self.calls.append(kind)
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return RunOutcome(RunOutcome.SUCCEEDED, run_id=f"run-{len(self.calls)}")


class TestCronSchedule:
    def test_next_after(self):
        assert CronSchedule("0 * * * *").next_after(T0) == T0 + timedelta(hours=1)

    def test_naive_treated_as_utc(self):
        naive = datetime(2024, 5, 1, 12, 30)
        assert CronSchedule("0 * * * *").next_after(naive) == datetime(2024, 5, 1, 13, 0, tzinfo=UTC)

    def test_next_fire_times(self):
        times = CronSchedule("*/15 * * * *").next_fire_times(3, after=T0)
        assert times == [T0 + timedelta(minutes=m) for m in (15, 30, 45)]

    @pytest.mark.parametrize("expression", ["", "every hour", "61 * * * *"])
    def test_invalid(self, expression):
        with pytest.raises(ConfigError):
            CronSchedule(expression)


class TestTick:
    """Test tick evaluation with an injected clock."""

    def test_first_tick_arms(self):
        orchestrator = FakeOrchestrator()
        service = SchedulerService(orchestrator, "0 * * * *")

        assert service.tick(T0) is None
        assert service.next_fire == T0 + timedelta(hours=1)
        assert orchestrator.calls == []

    def test_not_due(self):
        orchestrator = FakeOrchestrator()
        service = SchedulerService(orchestrator, "0 * * * *")
        service.tick(T0)
        assert service.tick(T0 + timedelta(minutes=59)) is None
        assert orchestrator.calls == []

    def test_fires_timer_run(self):
        orchestrator = FakeOrchestrator()
        service = SchedulerService(orchestrator, "0 * * * *")
        service.tick(T0)

        outcome = service.tick(T0 + timedelta(hours=1))

        assert outcome.status == RunOutcome.SUCCEEDED
        assert orchestrator.calls == [TriggerKind.TIMER]
        assert service.next_fire == T0 + timedelta(hours=2)
        assert service.stats.runs_triggered == service.stats.runs_succeeded == 1
        assert service.stats.last_run_id == "run-1"

    def test_missed_fires_coalesced(self):
        """A tick hours late fires one Run, not one per missed slot."""
        orchestrator = FakeOrchestrator()
        service = SchedulerService(orchestrator, "0 * * * *")
        service.tick(T0)

        service.tick(T0 + timedelta(hours=5, minutes=5))

        assert len(orchestrator.calls) == 1
        assert service.next_fire == T0 + timedelta(hours=6)

    def test_already_running_skipped(self):
        orchestrator = FakeOrchestrator(RunOutcome(RunOutcome.ALREADY_RUNNING, run_id="run-0", reason="busy"))
        service = SchedulerService(orchestrator, "0 * * * *")
        service.tick(T0)

        outcome = service.tick(T0 + timedelta(hours=1))

        assert outcome.status == RunOutcome.ALREADY_RUNNING
        assert service.stats.runs_skipped == 1
        assert service.stats.runs_triggered == 0
        assert service.next_fire == T0 + timedelta(hours=2)

    def test_failed_run_counted(self):
        orchestrator = FakeOrchestrator(RunOutcome(RunOutcome.FAILED, run_id="run-1", reason="fetch:FetchAborted: x"))
        service = SchedulerService(orchestrator, "0 * * * *")
        service.tick(T0)
        service.tick(T0 + timedelta(hours=1))
        assert service.stats.runs_failed == 1
        assert service.stats.last_error == "fetch:FetchAborted: x"

    def test_crash_does_not_propagate(self):
        orchestrator = FakeOrchestrator(RuntimeError("db gone"))
        service = SchedulerService(orchestrator, "0 * * * *")
        service.tick(T0)

        assert service.tick(T0 + timedelta(hours=1)) is None
        assert service.stats.runs_failed == 1
        assert "db gone" in service.stats.last_error

    def test_uses_clock(self):
        now = {"value": T0}
        service = SchedulerService(FakeOrchestrator(), "0 * * * *", clock=lambda: now["value"])
        service.tick()
        now["value"] = T0 + timedelta(hours=1)
        assert service.tick() is not None
        assert service.stats.tick_count == 2

    def test_upcoming_fire_times(self):
        service = SchedulerService(FakeOrchestrator(), "0 * * * *", clock=lambda: T0)
        assert service.next_fire_times(2) == [T0 + timedelta(hours=1), T0 + timedelta(hours=2)]
        service.tick()
        assert service.next_fire_times(2) == [T0 + timedelta(hours=1), T0 + timedelta(hours=2)]


class TestWithOrchestrator:
    def test_timer_run_recorded(self, orchestrator, ledger):
        service = SchedulerService(orchestrator, "*/5 * * * *")
        service.tick(T0)

        outcome = service.tick(T0 + timedelta(minutes=5))

        run = ledger.get(outcome.run_id)
        assert run.trigger is TriggerKind.TIMER
        assert run.status is RunStatus.SUCCEEDED


class TestLifecycle:
    """Test the background loop."""

    def test_start_stop(self):
        service = SchedulerService(FakeOrchestrator(), "0 * * * *", interval_seconds=0.01, clock=lambda: T0)
        service.start()
        try:
            assert service.is_running
            assert service.next_fire == T0 + timedelta(hours=1)
            health = service.health()
            assert health["healthy"] is True
            assert health["backend"] == "thread"
            assert health["active_run_id"] is None
        finally:
            service.stop()
        assert not service.is_running
        assert service.wait(0) is True
        assert service.health()["healthy"] is False

    def test_stop_without_start(self):
        service = SchedulerService(FakeOrchestrator(), "0 * * * *")
        service.stop()
        assert not service.is_running
