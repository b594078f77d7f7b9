"""Scheduler service - fires ``timer`` Runs from a cron expression.

Beat-as-poller: a daemon thread wakes every ``interval_seconds`` and calls
:meth:`SchedulerService.tick`, which compares the clock with the next cron
fire time. Timing is decoupled from evaluation, so tests drive ``tick(now)``
directly and never start the thread.

::

    start()
      └── daemon thread: while not stop_event.wait(interval):
                             tick(now)
                               ├── now < next_fire   → nothing to do
                               └── now >= next_fire  → orchestrator.execute(TIMER)
                                     ├── succeeded / failed → recorded in stats
                                     └── alreadyRunning      → logged, skipped

Missed fire times (process asleep, long Run) are coalesced: one tick fires
at most one Run and the next fire time is computed from ``now``.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from croniter import croniter

from harvest.core.errors import ConfigError
from harvest.core.logging import get_logger
from harvest.core.models import RunOutcome, TriggerKind, utcnow

if TYPE_CHECKING:
    from harvest.orchestration.orchestrator import Orchestrator

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class CronSchedule:
    """A validated 5-field cron expression evaluated in UTC."""

    def __init__(self, expression: str) -> None:
        if not croniter.is_valid(expression):
            raise ConfigError(f"invalid cron expression: {expression!r}")
        self.expression = expression

    def next_after(self, after: datetime) -> datetime:
        return _as_utc(croniter(self.expression, _as_utc(after)).get_next(datetime))

    def next_fire_times(self, n: int = 5, after: datetime | None = None) -> list[datetime]:
        itr = croniter(self.expression, _as_utc(after or utcnow()))
        return [_as_utc(itr.get_next(datetime)) for _ in range(n)]

    def __repr__(self) -> str:
        return f"CronSchedule({self.expression!r})"


@dataclass
class SchedulerStats:
    tick_count: int = 0
    runs_triggered: int = 0
    runs_succeeded: int = 0
    runs_failed: int = 0
    runs_skipped: int = 0
    last_tick: datetime | None = None
    last_run_id: str | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tick_count": self.tick_count,
            "runs_triggered": self.runs_triggered,
            "runs_succeeded": self.runs_succeeded,
            "runs_failed": self.runs_failed,
            "runs_skipped": self.runs_skipped,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            "last_run_id": self.last_run_id,
            "last_error": self.last_error,
        }


class SchedulerService:
    """Cron-driven trigger source for one orchestrator.

    Example:
        >>> service = SchedulerService(orchestrator, "0 * * * *", interval_seconds=10)
        >>> service.start()
        >>> # ... later ...
        >>> service.stop()
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        cron: str | CronSchedule,
        interval_seconds: float = 10.0,
        clock: Clock = utcnow,
    ) -> None:
        self.orchestrator = orchestrator
        self.schedule = cron if isinstance(cron, CronSchedule) else CronSchedule(cron)
        self.interval = interval_seconds
        self.clock = clock

        self.stats = SchedulerStats()
        self.next_fire: datetime | None = None
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    # === Evaluation ===

    def next_fire_times(self, n: int = 5) -> list[datetime]:
        """Upcoming fire times, starting from the pending one if known."""
        if self.next_fire is None:
            return self.schedule.next_fire_times(n, after=self.clock())
        return [self.next_fire, *self.schedule.next_fire_times(n - 1, after=self.next_fire)][:n]

    def tick(self, now: datetime | None = None) -> RunOutcome | None:
        """Fire a ``timer`` Run if one is due. Returns its outcome, or None."""
        now = _as_utc(now or self.clock())
        with self._lock:
            self.stats.tick_count += 1
            self.stats.last_tick = now
            if self.next_fire is None:
                self.next_fire = self.schedule.next_after(now)
                logger.info("scheduler.armed", cron=self.schedule.expression, next_fire=self.next_fire.isoformat())
                return None
            if now < self.next_fire:
                return None
            due = self.next_fire
            self.next_fire = self.schedule.next_after(now)

        logger.info("scheduler.fire", due=due.isoformat(), next_fire=self.next_fire.isoformat())
        try:
            outcome = self.orchestrator.execute(TriggerKind.TIMER)
        except Exception as e:
            self.stats.last_error = f"{type(e).__name__}: {e}"
            self.stats.runs_failed += 1
            logger.exception("scheduler.trigger_crashed")
            return None

        self._count(outcome)
        return outcome

    def _count(self, outcome: RunOutcome) -> None:
        if outcome.status == RunOutcome.ALREADY_RUNNING:
            self.stats.runs_skipped += 1
            logger.info("scheduler.skipped", reason=outcome.reason, active_run_id=outcome.run_id)
            return

        self.stats.runs_triggered += 1
        self.stats.last_run_id = outcome.run_id
        if outcome.status == RunOutcome.SUCCEEDED:
            self.stats.runs_succeeded += 1
        else:
            self.stats.runs_failed += 1
            self.stats.last_error = outcome.reason
            logger.warning("scheduler.run_failed", run_id=outcome.run_id, reason=outcome.reason)

    # === Lifecycle ===

    def start(self) -> None:
        """Start the tick loop on a daemon thread."""
        if self.is_running:
            logger.warning("scheduler.already_started")
            return

        self._stop_event.clear()
        self.tick()

        def _loop() -> None:
            logger.info("scheduler.started", interval_seconds=self.interval, cron=self.schedule.expression)
            while not self._stop_event.wait(self.interval):
                try:
                    self.tick()
                except Exception as e:
                    self.stats.last_error = str(e)
                    logger.exception("scheduler.tick_failed")
            logger.info("scheduler.stopped")

        self._thread = threading.Thread(target=_loop, daemon=True, name="harvest-scheduler")
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the loop; an in-flight Run is allowed to finish within *timeout*."""
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join(timeout=timeout)
        if self._thread.is_alive():
            logger.warning("scheduler.stop_timeout", timeout_seconds=timeout)
        self._thread = None

    def wait(self, timeout: float | None = None) -> bool:
        """Block until :meth:`stop` is called. Returns True if stopped."""
        return self._stop_event.wait(timeout)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def health(self) -> dict[str, Any]:
        return {
            "healthy": self.is_running,
            "backend": "thread",
            "cron": self.schedule.expression,
            "interval_seconds": self.interval,
            "next_fire": self.next_fire.isoformat() if self.next_fire else None,
            "active_run_id": self.orchestrator.active_run.run_id if self.orchestrator.active_run else None,
            "stats": self.stats.to_dict(),
        }
