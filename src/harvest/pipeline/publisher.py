"""
Publisher - push the aggregated dataset to the destination store.

The secret is resolved inside :meth:`Publisher.publish` from the
caller-supplied :class:`SecretRef`, once per call, and never leaves this
module: it isn't logged, returned, or stored on the Run.

Retry policy:
    - ``TransientUploadError``: retried with bounded exponential backoff,
      ``max_attempts`` attempts in total (default 3)
    - ``AuthRejected`` / ``SchemaMismatch``: raised on the first occurrence
"""

from __future__ import annotations

import time
from dataclasses import dataclass

from harvest.core.errors import AuthRejected, SchemaMismatch
from harvest.core.logging import get_logger
from harvest.core.models import AggregatedDataset
from harvest.core.secrets import MissingSecretError, SecretRef
from harvest.execution.retry import ExponentialBackoff, RetryContext, SleepFn
from harvest.pipeline.stores import DatasetStore, UpsertResult

logger = get_logger(__name__)


@dataclass
class PublishReport:
    dataset_hash: str
    record_count: int
    attempts: int
    result: UpsertResult

    def to_dict(self) -> dict:
        return {
            "dataset_hash": self.dataset_hash,
            "record_count": self.record_count,
            "attempts": self.attempts,
            **self.result.to_dict(),
        }


class Publisher:
    """Uploads datasets to a :class:`DatasetStore`.

    Args:
        store: Destination store
        max_attempts: Upload attempts in total for transient failures
        base_delay: First backoff delay in seconds
        max_delay: Backoff cap in seconds
        sleep: Sleep function (injectable for tests)
    """

    def __init__(
        self,
        store: DatasetStore,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        sleep: SleepFn = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.store = store
        self.strategy = ExponentialBackoff(max_attempts=max_attempts, base_delay=base_delay, max_delay=max_delay)
        self.sleep = sleep

    def check_schema(self, dataset: AggregatedDataset) -> None:
        """Raise :class:`SchemaMismatch` if the store expects another shape."""
        expected = self.store.describe()
        if expected.schema_version != dataset.schema_version:
            raise SchemaMismatch(
                f"destination expects schema v{expected.schema_version}, dataset is v{dataset.schema_version}"
            )
        for position, record in enumerate(dataset.records):
            missing = [f for f in expected.required_fields if f not in record]
            if missing:
                raise SchemaMismatch(f"record {position} lacks required field(s): {', '.join(missing)}")

    def publish(self, dataset: AggregatedDataset, secret: SecretRef) -> PublishReport:
        """Upsert *dataset*, resolving *secret* now.

        Raises:
            AuthRejected: Secret missing, invalid or expired
            SchemaMismatch: Destination expects another shape
            TransientUploadError: Still failing after the last attempt
        """
        try:
            value = secret.resolve()
        except MissingSecretError as e:
            raise AuthRejected(f"publish secret '{secret.key}' is not available") from e
        if not value:
            raise AuthRejected(f"publish secret '{secret.key}' is empty")

        self.check_schema(dataset)

        def _on_retry(attempt: int, error: BaseException, delay: float) -> None:
            logger.warning("publish.retry", attempt=attempt, error=str(error), delay_seconds=round(delay, 3))

        ctx = RetryContext(self.strategy, on_retry=_on_retry, sleep=self.sleep)
        try:
            result = ctx.run(self.store.upsert, dataset, value)
        except Exception:
            logger.error("publish.failed", attempts=ctx.attempts, records=dataset.record_count)
            raise

        report = PublishReport(
            dataset_hash=dataset.content_hash,
            record_count=dataset.record_count,
            attempts=ctx.attempts,
            result=result,
        )
        logger.info("publish.completed", **report.to_dict())
        return report
