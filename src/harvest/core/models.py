"""Run, Workspace and artifact records - the canonical pipeline contracts.

Manifesto:
    Every component hands the next one a plain, typed record. The Run is the
    only mutable record and its status changes go through one validated
    state machine; artifacts and datasets are frozen once built.

Valid Run transition graph::

    PENDING   → RUNNING | FAILED
    RUNNING   → SUCCEEDED | FAILED
    SUCCEEDED → (terminal)
    FAILED    → (terminal)

Tags:
    harvest, models, run-record, state-machine, dataset
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from harvest.core.errors import InvalidTransitionError
from harvest.core.hashing import compute_hash


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class TriggerKind(str, Enum):
    """What started a Run."""

    TIMER = "timer"
    MANUAL = "manual"
    EVENT = "event"

    @classmethod
    def parse(cls, value: str | TriggerKind) -> TriggerKind:
        """Parse a trigger kind; ``push-event`` is accepted for ``event``."""
        if isinstance(value, TriggerKind):
            return value
        normalized = value.strip().lower()
        if normalized in ("push-event", "push_event", "push"):
            return cls.EVENT
        return cls(normalized)


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.SUCCEEDED, RunStatus.FAILED)


RUN_VALID_TRANSITIONS: dict[RunStatus, frozenset[RunStatus]] = {
    RunStatus.PENDING: frozenset({RunStatus.RUNNING, RunStatus.FAILED}),
    RunStatus.RUNNING: frozenset({RunStatus.SUCCEEDED, RunStatus.FAILED}),
    RunStatus.SUCCEEDED: frozenset(),
    RunStatus.FAILED: frozenset(),
}


def validate_run_transition(current: RunStatus, target: RunStatus) -> None:
    """Raise :class:`InvalidTransitionError` if *current → target* is illegal."""
    if target not in RUN_VALID_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError(current.value, target.value)


class Phase(str, Enum):
    """Pipeline phases, in execution order."""

    OPEN_WORKSPACE = "open_workspace"
    FETCH = "fetch"
    AGGREGATE = "aggregate"
    PUBLISH = "publish"
    MERGE = "merge"


@dataclass(frozen=True)
class RunFailure:
    """Which phase failed and with which taxonomy kind."""

    phase: str
    kind: str
    message: str

    @property
    def reason(self) -> str:
        return f"{self.phase}:{self.kind}: {self.message}"

    def to_dict(self) -> dict[str, str]:
        return {"phase": self.phase, "kind": self.kind, "message": self.message}


@dataclass
class Run:
    """One execution instance of the pipeline.

    Created by the orchestrator on trigger and mutated only through the
    ``mark_*`` methods, which enforce ``RUN_VALID_TRANSITIONS``.
    """

    run_id: str
    pipeline: str
    trigger: TriggerKind
    status: RunStatus = RunStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    ended_at: datetime | None = None
    workspace: str | None = None
    failure: RunFailure | None = None
    stats: dict[str, Any] = field(default_factory=dict)

    def _transition_to(self, target: RunStatus) -> None:
        validate_run_transition(self.status, target)
        self.status = target

    def mark_running(self) -> None:
        self._transition_to(RunStatus.RUNNING)
        self.started_at = utcnow()

    def mark_succeeded(self) -> None:
        self._transition_to(RunStatus.SUCCEEDED)
        self.ended_at = utcnow()

    def mark_failed(self, failure: RunFailure) -> None:
        self._transition_to(RunStatus.FAILED)
        self.failure = failure
        self.ended_at = utcnow()

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at and self.ended_at:
            return (self.ended_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "pipeline": self.pipeline,
            "trigger": self.trigger.value,
            "status": self.status.value,
            "created_at": _iso(self.created_at),
            "started_at": _iso(self.started_at),
            "ended_at": _iso(self.ended_at),
            "workspace": self.workspace,
            "failure": self.failure.to_dict() if self.failure else None,
            "stats": dict(self.stats),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Run:
        failure = data.get("failure")
        return cls(
            run_id=data["run_id"],
            pipeline=data["pipeline"],
            trigger=TriggerKind(data["trigger"]),
            status=RunStatus(data["status"]),
            created_at=_parse_dt(data.get("created_at")) or utcnow(),
            started_at=_parse_dt(data.get("started_at")),
            ended_at=_parse_dt(data.get("ended_at")),
            workspace=data.get("workspace"),
            failure=RunFailure(**failure) if failure else None,
            stats=dict(data.get("stats") or {}),
        )


@dataclass(frozen=True)
class Workspace:
    """Isolated namespace owned by exactly one Run."""

    name: str
    workspace_id: str
    run_id: str
    base_commit: int | None
    created_at: datetime


@dataclass(frozen=True)
class RawArtifact:
    """One fetched unit. Immutable once written."""

    source_id: str
    fetched_at: datetime
    payload: bytes
    content_type: str = "application/json"
    url: str | None = None

    @property
    def content_hash(self) -> str:
        return compute_hash(self.source_id, self.payload.hex())

    def sort_key(self) -> tuple[str, str]:
        return (self.source_id, self.content_hash)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_id": self.source_id,
            "fetched_at": self.fetched_at.isoformat(),
            "payload": self.payload.decode("utf-8", errors="replace"),
            "content_type": self.content_type,
            "url": self.url,
        }


@dataclass(frozen=True)
class FetchFailure:
    """A per-item fetch error; recorded, not raised."""

    source_id: str
    kind: str
    message: str
    at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, str]:
        return {"source_id": self.source_id, "kind": self.kind, "message": self.message, "at": self.at.isoformat()}


@dataclass(frozen=True)
class AggregatedDataset:
    """Deterministic merge of RawArtifacts into publishable form.

    ``records`` are sorted by SKU and ``generated_at`` is the newest fetch
    timestamp among contributing artifacts, so the same artifact set always
    produces byte-identical ``to_json()`` output.
    """

    records: tuple[dict[str, Any], ...]
    generated_at: datetime
    index: tuple[str, ...]
    skipped: int = 0
    schema_version: int = 1

    @property
    def record_count(self) -> int:
        return len(self.records)

    @property
    def content_hash(self) -> str:
        return compute_hash(self.to_json(), length=64)

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "generated_at": self.generated_at.isoformat(),
            "record_count": self.record_count,
            "skipped": self.skipped,
            "index": list(self.index),
            "records": list(self.records),
        }

    def to_json(self) -> str:
        return canonical_json(self.to_dict())

    def index_json(self) -> str:
        return canonical_json(list(self.index))

    @classmethod
    def from_json(cls, text: str) -> AggregatedDataset:
        data = json.loads(text)
        return cls(
            records=tuple(data["records"]),
            generated_at=datetime.fromisoformat(data["generated_at"]),
            index=tuple(data["index"]),
            skipped=data.get("skipped", 0),
            schema_version=data.get("schema_version", 1),
        )


def canonical_json(value: Any) -> str:
    """Serialize with sorted keys and fixed separators; NaN and infinities are refused."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, allow_nan=False, default=str)


@dataclass
class RunOutcome:
    """What the trigger surface reports back: succeeded, failed(reason) or alreadyRunning."""

    status: str
    run_id: str | None = None
    reason: str | None = None

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ALREADY_RUNNING = "alreadyRunning"

    @property
    def exit_code(self) -> int:
        return {self.SUCCEEDED: 0, self.FAILED: 1, self.ALREADY_RUNNING: 75}[self.status]

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status, "run_id": self.run_id, "reason": self.reason}
