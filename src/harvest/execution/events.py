"""Run Events - immutable record of every phase transition.

ARCHITECTURE
────────────
::

    RunEvent
      ├── run_id      ─ which run
      ├── event_type  ─ run.pending / phase.started / phase.failed / ...
      ├── timestamp   ─ when
      └── data        ─ phase, error kind, counters

    EventSink (protocol)
      ├── LoggingEventSink    ─ structlog line per event
      ├── InMemoryEventSink   ─ tests
      ├── CompositeEventSink  ─ fan-out to several sinks
      └── RunLedger           ─ durable (see orchestration.ledger)

Events are append-only; never update or delete.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol, runtime_checkable
from uuid import uuid4

from harvest.core.logging import get_logger
from harvest.core.models import utcnow

logger = get_logger(__name__)


class EventType(str, Enum):
    RUN_PENDING = "run.pending"
    RUN_RUNNING = "run.running"
    RUN_SUCCEEDED = "run.succeeded"
    RUN_FAILED = "run.failed"
    RUN_CANCEL_REQUESTED = "run.cancel_requested"
    PHASE_STARTED = "phase.started"
    PHASE_COMPLETED = "phase.completed"
    PHASE_FAILED = "phase.failed"


@dataclass(frozen=True)
class RunEvent:
    """One lifecycle event of a run."""

    run_id: str
    event_type: str
    timestamp: datetime = field(default_factory=utcnow)
    data: dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: str(uuid4()))

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "run_id": self.run_id,
            "event_type": self.event_type,
            "timestamp": self.timestamp.isoformat(),
            "data": dict(self.data),
        }


@runtime_checkable
class EventSink(Protocol):
    def emit(self, event: RunEvent) -> None: ...


class LoggingEventSink:
    """Writes each event as one structured log line."""

    def emit(self, event: RunEvent) -> None:
        log = logger.warning if event.event_type in (EventType.RUN_FAILED, EventType.PHASE_FAILED) else logger.info
        log(event.event_type, run_id=event.run_id, **event.data)


class InMemoryEventSink:
    """Collects events in a list."""

    def __init__(self) -> None:
        self.events: list[RunEvent] = []
        self._lock = threading.Lock()

    def emit(self, event: RunEvent) -> None:
        with self._lock:
            self.events.append(event)

    def types(self, run_id: str | None = None) -> list[str]:
        return [e.event_type for e in self.events if run_id is None or e.run_id == run_id]


class CompositeEventSink:
    """Emits to every child sink in order."""

    def __init__(self, *sinks: EventSink) -> None:
        self.sinks = list(sinks)

    def emit(self, event: RunEvent) -> None:
        for sink in self.sinks:
            sink.emit(event)
