"""Orchestrator - the explicit phase state machine behind every Run.

::

    trigger(kind)
      │  guard: no active Run (in-process + durable pipeline lock)
      │         └── AlreadyRunning
      ▼
    Run PENDING ──► RUNNING
      │
      ├── open_workspace ──► fetch ──► aggregate ──► publish ──► merge
      │        ▲               ▲           ▲            ▲
      │        └── cancellation checkpoints (phase boundaries) ┘
      │
      ├── any phase raises ──► abandon workspace ──► FAILED(phase, kind)
      └── merge done ────────────────────────────► SUCCEEDED

Every transition is appended to the run ledger and emitted as a
``RunEvent``. Cancellation is soft: a request is honoured at the next phase
boundary (or by the fetcher before its next item) up to the publish phase;
once the dataset is published the merge always follows.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence
from typing import Any
from uuid import uuid4

from harvest.core.errors import AlreadyRunning, HarvestError, RunCancelled
from harvest.core.logging import LogContext, get_logger
from harvest.core.models import Phase, Run, RunFailure, RunOutcome, RunStatus, TriggerKind, Workspace
from harvest.core.secrets import SecretRef
from harvest.core.settings import SourceSpec
from harvest.execution.events import CompositeEventSink, EventSink, EventType, LoggingEventSink, RunEvent
from harvest.isolation.manager import IsolationManager
from harvest.orchestration.ledger import RunLedger
from harvest.pipeline.aggregator import Aggregator
from harvest.pipeline.fetcher import Fetcher
from harvest.pipeline.publisher import Publisher

logger = get_logger(__name__)


def new_run_id() -> str:
    return str(uuid4())


def describe_error(error: BaseException) -> tuple[str, str]:
    """Taxonomy kind and message of a phase error."""
    if isinstance(error, HarvestError):
        return error.kind, error.message
    return "InternalError", f"{type(error).__name__}: {error}"


class Orchestrator:
    """Runs the pipeline for one logical pipeline name, one Run at a time.

    Args:
        pipeline: Logical pipeline name (unit of serialization)
        sources: Enumerated scrape targets
        isolation: Workspace manager over the main line
        fetcher: Sequential fetcher
        aggregator: Dataset builder
        publisher: Destination uploader
        ledger: Durable run history, event log and pipeline lock
        secret: Publish secret reference, resolved by the publisher
        events: Extra event sink (e.g. ``InMemoryEventSink`` in tests)
        lock_ttl_seconds: Expiry of the durable pipeline lock
        resources: Objects with a ``close()`` method released by :meth:`close`
            (state database, HTTP clients opened on the orchestrator's behalf)
    """

    def __init__(
        self,
        *,
        pipeline: str,
        sources: Sequence[SourceSpec],
        isolation: IsolationManager,
        fetcher: Fetcher,
        aggregator: Aggregator,
        publisher: Publisher,
        ledger: RunLedger,
        secret: SecretRef | None = None,
        events: EventSink | None = None,
        lock_ttl_seconds: int = 6 * 3600,
        resources: Sequence[Any] = (),
    ) -> None:
        self.pipeline = pipeline
        self.sources = list(sources)
        self.isolation = isolation
        self.fetcher = fetcher
        self.aggregator = aggregator
        self.publisher = publisher
        self.ledger = ledger
        self.secret = secret or SecretRef()
        self.lock_ttl_seconds = lock_ttl_seconds
        self.resources = list(resources)

        sinks: list[EventSink] = [ledger, LoggingEventSink()]
        if events is not None:
            sinks.append(events)
        self.events = CompositeEventSink(*sinks)

        self._guard = threading.Lock()
        self._active: Run | None = None

    # === Public API ===

    @property
    def active_run(self) -> Run | None:
        return self._active

    def close(self) -> None:
        """Release owned resources, newest first. Safe to call twice."""
        while self.resources:
            self.resources.pop().close()

    def __enter__(self) -> Orchestrator:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def trigger(self, kind: TriggerKind | str) -> str:
        """Start a Run and drive it to a terminal state. Returns its run id.

        A failed Run still returns its id; inspect it with :meth:`status`.

        Raises:
            AlreadyRunning: Another Run of this pipeline is active
        """
        kind = TriggerKind.parse(kind)
        run = Run(run_id=new_run_id(), pipeline=self.pipeline, trigger=kind)

        with self._guard:
            if self._active is not None:
                raise AlreadyRunning(self.pipeline, self._active.run_id)
            if not self.ledger.acquire_lock(self.pipeline, run.run_id, self.lock_ttl_seconds):
                raise AlreadyRunning(self.pipeline, self.ledger.lock_holder(self.pipeline))
            self._active = run

        try:
            with LogContext(run_id=run.run_id, pipeline=self.pipeline):
                self._record(run, EventType.RUN_PENDING, trigger=kind.value)
                self._drive(run)
        finally:
            with self._guard:
                self._active = None
            self.ledger.release_lock(self.pipeline, run.run_id)
        return run.run_id

    def execute(self, kind: TriggerKind | str) -> RunOutcome:
        """Trigger a Run and report ``succeeded``, ``failed(reason)`` or ``alreadyRunning``."""
        try:
            run_id = self.trigger(kind)
        except AlreadyRunning as e:
            logger.info("run.rejected", reason=e.message)
            return RunOutcome(RunOutcome.ALREADY_RUNNING, run_id=e.active_run_id, reason=e.message)

        run = self.status(run_id)
        if run.status is RunStatus.SUCCEEDED:
            return RunOutcome(RunOutcome.SUCCEEDED, run_id=run_id)
        return RunOutcome(RunOutcome.FAILED, run_id=run_id, reason=run.failure.reason if run.failure else None)

    def status(self, run_id: str) -> Run:
        """Current state of a run.

        Raises:
            RunNotFound: Unknown run id
        """
        active = self._active
        if active is not None and active.run_id == run_id:
            return active
        return self.ledger.get(run_id)

    def cancel(self, run_id: str, reason: str = "") -> bool:
        """Request soft cancellation. Returns False if the run already finished.

        Raises:
            RunNotFound: Unknown run id
        """
        if not self.ledger.request_cancel(run_id, reason):
            return False
        self.events.emit(
            RunEvent(run_id=run_id, event_type=EventType.RUN_CANCEL_REQUESTED.value, data={"reason": reason})
        )
        return True

    # === Phases ===

    def _drive(self, run: Run) -> None:
        run.mark_running()
        self._record(run, EventType.RUN_RUNNING)

        workspace: Workspace | None = None
        phase = Phase.OPEN_WORKSPACE
        try:
            self._checkpoint(run)
            self._begin(run, phase)
            workspace = self.isolation.open_workspace(run.run_id)
            run.workspace = workspace.name
            self._complete(run, phase, workspace=workspace.name, base_commit=workspace.base_commit)

            phase = Phase.FETCH
            self._checkpoint(run)
            self._begin(run, phase, sources=len(self.sources))
            stream = self.fetcher.fetch(self.sources, cancel_requested=lambda: self._cancel_requested(run))
            fetched = 0
            for artifact in stream:
                self.isolation.put_artifact(workspace, artifact)
                fetched += 1
            run.stats.update(fetched=fetched, fetch_failures=len(stream.failures))
            self._complete(
                run,
                phase,
                fetched=fetched,
                failed_sources=[f.source_id for f in stream.failures],
            )

            phase = Phase.AGGREGATE
            self._checkpoint(run)
            self._begin(run, phase)
            dataset = self.aggregator.aggregate(self.isolation.artifacts(workspace))
            self.isolation.commit_dataset(workspace, dataset)
            run.stats.update(records=dataset.record_count, skipped_artifacts=dataset.skipped)
            self._complete(run, phase, records=dataset.record_count, skipped=dataset.skipped)

            phase = Phase.PUBLISH
            self._checkpoint(run)
            self._begin(run, phase)
            report = self.publisher.publish(dataset, self.secret)
            run.stats.update(publish_attempts=report.attempts, dataset_hash=report.dataset_hash)
            self._complete(run, phase, **report.to_dict())

            phase = Phase.MERGE
            self._begin(run, phase)
            merge_commit = self.isolation.merge_and_close(workspace)
            workspace = None
            run.stats["merge_commit"] = merge_commit
            self._complete(run, phase, merge_commit=merge_commit)

        except Exception as e:
            self._fail(run, phase, e, workspace)
            return

        run.mark_succeeded()
        self._record(run, EventType.RUN_SUCCEEDED, duration_seconds=run.duration_seconds, **run.stats)

    def _fail(self, run: Run, phase: Phase, error: Exception, workspace: Workspace | None) -> None:
        kind, message = describe_error(error)
        if not isinstance(error, HarvestError):
            logger.error("phase.crashed", phase=phase.value, exc_info=error)
        self._emit(run, EventType.PHASE_FAILED, phase=phase.value, error_kind=kind, error=message)

        if workspace is not None:
            try:
                self.isolation.abandon(workspace)
            except Exception as cleanup_error:
                # The workspace stays behind and the next run reports a collision.
                logger.error("workspace.abandon_failed", workspace=workspace.name, exc_info=cleanup_error)
                run.stats["abandon_error"] = f"{type(cleanup_error).__name__}: {cleanup_error}"

        run.mark_failed(RunFailure(phase=phase.value, kind=kind, message=message))
        self._record(run, EventType.RUN_FAILED, phase=phase.value, error_kind=kind, reason=run.failure.reason)

    def _cancel_requested(self, run: Run) -> bool:
        return self.ledger.cancel_requested(run.run_id)

    def _checkpoint(self, run: Run) -> None:
        if self._cancel_requested(run):
            raise RunCancelled("cancellation requested")

    def _begin(self, run: Run, phase: Phase, **data) -> None:
        self._emit(run, EventType.PHASE_STARTED, phase=phase.value, **data)

    def _complete(self, run: Run, phase: Phase, **data) -> None:
        self._emit(run, EventType.PHASE_COMPLETED, phase=phase.value, **data)

    def _emit(self, run: Run, event_type: EventType, **data) -> None:
        self.events.emit(RunEvent(run_id=run.run_id, event_type=event_type.value, data=data))

    def _record(self, run: Run, event_type: EventType, **data) -> None:
        self.ledger.append(run)
        self._emit(run, event_type, status=run.status.value, **data)
