"""Run ledger - append-only run history, event log, pipeline lock.

Manifesto:
    Run state is never updated in place. Every state a Run goes through is
    appended as a new row, so the ledger doubles as an audit trail and the
    current state is simply the newest row for a run id.

Tables::

    harvest_run_log         seq, run_id, pipeline, status, recorded_at, record (JSON)
    harvest_run_events      one row per RunEvent
    harvest_pipeline_locks  one row per pipeline holding an active Run (TTL)
    harvest_cancel_requests soft-cancellation requests

The pipeline lock uses INSERT-or-ignore for atomic acquisition, with TTL
expiry so a crashed process can't block the pipeline forever.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta

from harvest.core.connection import SqliteConnection
from harvest.core.errors import RunNotFound
from harvest.core.logging import get_logger
from harvest.core.models import Run, RunStatus, utcnow
from harvest.execution.events import RunEvent

logger = get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS harvest_run_log (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id TEXT NOT NULL,
    pipeline TEXT NOT NULL,
    status TEXT NOT NULL,
    recorded_at TEXT NOT NULL,
    record TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS ix_harvest_run_log_run ON harvest_run_log(run_id);

CREATE TABLE IF NOT EXISTS harvest_run_events (
    event_id TEXT PRIMARY KEY,
    run_id TEXT NOT NULL,
    event_type TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS ix_harvest_run_events_run ON harvest_run_events(run_id);

CREATE TABLE IF NOT EXISTS harvest_pipeline_locks (
    pipeline TEXT PRIMARY KEY,
    run_id TEXT NOT NULL,
    locked_at TEXT NOT NULL,
    expires_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS harvest_cancel_requests (
    run_id TEXT PRIMARY KEY,
    requested_at TEXT NOT NULL,
    reason TEXT
);
"""


class RunLedger:
    """Durable run history backed by SQLite. Also an ``EventSink``."""

    def __init__(self, conn: SqliteConnection) -> None:
        self.conn = conn
        self.conn.executescript(SCHEMA)

    # === Run records ===

    def append(self, run: Run) -> None:
        """Append the current state of *run*."""
        self.conn.execute(
            "INSERT INTO harvest_run_log (run_id, pipeline, status, recorded_at, record) VALUES (?, ?, ?, ?, ?)",
            (run.run_id, run.pipeline, run.status.value, utcnow().isoformat(), json.dumps(run.to_dict())),
        )

    def get(self, run_id: str) -> Run:
        """Latest recorded state of a run.

        Raises:
            RunNotFound: Unknown run id
        """
        row = self.conn.fetchone(
            "SELECT record FROM harvest_run_log WHERE run_id = ? ORDER BY seq DESC LIMIT 1", (run_id,)
        )
        if row is None:
            raise RunNotFound(run_id)
        return Run.from_dict(json.loads(row["record"]))

    def history(self, run_id: str) -> list[Run]:
        """Every recorded state of a run, oldest first."""
        rows = self.conn.fetchall("SELECT record FROM harvest_run_log WHERE run_id = ? ORDER BY seq", (run_id,))
        return [Run.from_dict(json.loads(r["record"])) for r in rows]

    def list_runs(
        self,
        pipeline: str | None = None,
        status: RunStatus | str | None = None,
        limit: int = 50,
    ) -> list[Run]:
        """Latest state of recent runs, newest first."""
        sql = """
            SELECT l.record FROM harvest_run_log l
            JOIN (SELECT run_id, MAX(seq) AS seq FROM harvest_run_log GROUP BY run_id) latest
              ON latest.seq = l.seq
            WHERE 1 = 1
        """
        params: list = []
        if pipeline:
            sql += " AND l.pipeline = ?"
            params.append(pipeline)
        if status:
            sql += " AND l.status = ?"
            params.append(RunStatus(status).value)
        sql += " ORDER BY l.seq DESC LIMIT ?"
        params.append(limit)
        return [Run.from_dict(json.loads(r["record"])) for r in self.conn.fetchall(sql, tuple(params))]

    # === Events ===

    def emit(self, event: RunEvent) -> None:
        self.conn.execute(
            "INSERT INTO harvest_run_events (event_id, run_id, event_type, timestamp, data) VALUES (?, ?, ?, ?, ?)",
            (
                event.event_id,
                event.run_id,
                event.event_type,
                event.timestamp.isoformat(),
                json.dumps(event.data, default=str),
            ),
        )

    def events(self, run_id: str, limit: int = 200) -> list[RunEvent]:
        rows = self.conn.fetchall(
            "SELECT * FROM harvest_run_events WHERE run_id = ? ORDER BY timestamp, rowid LIMIT ?",
            (run_id, limit),
        )
        return [
            RunEvent(
                run_id=r["run_id"],
                event_type=r["event_type"],
                timestamp=datetime.fromisoformat(r["timestamp"]),
                data=json.loads(r["data"]),
                event_id=r["event_id"],
            )
            for r in rows
        ]

    # === Pipeline lock ===

    def acquire_lock(self, pipeline: str, run_id: str, ttl_seconds: int = 6 * 3600) -> bool:
        """Take the pipeline lock for *run_id*. Returns False if another run holds it."""
        now = datetime.now(UTC)
        expires = now + timedelta(seconds=ttl_seconds)
        with self.conn.transaction():
            cursor = self.conn.execute(
                "DELETE FROM harvest_pipeline_locks WHERE pipeline = ? AND expires_at < ?",
                (pipeline, now.isoformat()),
            )
            if cursor.rowcount:
                logger.warning("lock.expired_removed", pipeline=pipeline)
            cursor = self.conn.execute(
                "INSERT OR IGNORE INTO harvest_pipeline_locks (pipeline, run_id, locked_at, expires_at)"
                " VALUES (?, ?, ?, ?)",
                (pipeline, run_id, now.isoformat(), expires.isoformat()),
            )
            return cursor.rowcount > 0

    def lock_holder(self, pipeline: str) -> str | None:
        row = self.conn.fetchone("SELECT run_id FROM harvest_pipeline_locks WHERE pipeline = ?", (pipeline,))
        return row["run_id"] if row else None

    def release_lock(self, pipeline: str, run_id: str) -> bool:
        cursor = self.conn.execute(
            "DELETE FROM harvest_pipeline_locks WHERE pipeline = ? AND run_id = ?", (pipeline, run_id)
        )
        return cursor.rowcount > 0

    # === Cancellation ===

    def request_cancel(self, run_id: str, reason: str = "") -> bool:
        """Record a cancellation request (idempotent).

        Returns False, recording nothing, when the run already finished.

        Raises:
            RunNotFound: Unknown run id
        """
        if self.get(run_id).status.is_terminal:
            return False
        self.conn.execute(
            "INSERT OR IGNORE INTO harvest_cancel_requests (run_id, requested_at, reason) VALUES (?, ?, ?)",
            (run_id, utcnow().isoformat(), reason),
        )
        return True

    def cancel_requested(self, run_id: str) -> bool:
        row = self.conn.fetchone("SELECT 1 FROM harvest_cancel_requests WHERE run_id = ?", (run_id,))
        return row is not None
