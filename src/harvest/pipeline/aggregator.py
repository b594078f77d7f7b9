"""
Aggregator - merge raw artifacts into one deterministic dataset.

Order independence: artifacts are sorted by ``(source_id, content_hash)``
before anything else happens, records are keyed by SKU, and the output is
sorted by SKU. ``aggregate(S) == aggregate(shuffle(S))`` for every set S,
and ``to_json()`` is byte-identical across re-runs.

Payload shapes accepted (JSON):
    - a single record object: ``{"sku": "A1", "name": ...}``
    - a list of record objects
    - an envelope: ``{"records": [...]}``

A payload that isn't strict JSON (``NaN`` and ``Infinity`` are refused), or
holds a record that fails schema validation, is a :class:`MalformedArtifact`:
skipped and counted. The run only aborts (``AggregationAborted``) when the
skipped share exceeds ``max_skip_ratio`` or when nothing valid is left.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from harvest.core.errors import AggregationAborted, MalformedArtifact
from harvest.core.logging import get_logger
from harvest.core.models import AggregatedDataset, RawArtifact

logger = get_logger(__name__)


def _reject_constant(token: str) -> Any:
    raise ValueError(f"non-finite number {token}")


class ProductRecord(BaseModel):
    """Expected schema of one scraped product record."""

    model_config = ConfigDict(extra="allow", str_strip_whitespace=True, allow_inf_nan=False)

    sku: str = Field(min_length=1)
    name: str | None = None
    price: float | None = Field(default=None, ge=0)
    currency: str | None = None
    url: str | None = None
    available: bool | None = None


class Aggregator:
    """Builds an :class:`AggregatedDataset` from raw artifacts.

    Args:
        max_skip_ratio: Largest tolerated share of malformed artifacts
        record_model: Pydantic model every record must validate against
        key_field: Record field used for de-duplication and the index
    """

    def __init__(
        self,
        max_skip_ratio: float = 0.5,
        record_model: type[BaseModel] = ProductRecord,
        key_field: str = "sku",
    ) -> None:
        if not 0.0 <= max_skip_ratio <= 1.0:
            raise ValueError("max_skip_ratio must be within [0, 1]")
        self.max_skip_ratio = max_skip_ratio
        self.record_model = record_model
        self.key_field = key_field
        self.skipped: list[MalformedArtifact] = []

    def parse(self, artifact: RawArtifact) -> list[dict[str, Any]]:
        """Parse one artifact into validated records.

        Raises:
            MalformedArtifact: If the payload cannot be parsed
        """
        try:
            data = json.loads(artifact.payload, parse_constant=_reject_constant)
        except (UnicodeDecodeError, ValueError) as e:
            raise MalformedArtifact(artifact.source_id, f"invalid JSON: {e}", cause=e) from e

        if isinstance(data, dict) and isinstance(data.get("records"), list):
            items = data["records"]
        elif isinstance(data, dict):
            items = [data]
        elif isinstance(data, list):
            items = data
        else:
            raise MalformedArtifact(artifact.source_id, f"unexpected top-level {type(data).__name__}")

        records = []
        for position, item in enumerate(items):
            if not isinstance(item, dict):
                raise MalformedArtifact(artifact.source_id, f"record {position} is not an object")
            try:
                model = self.record_model.model_validate(item)
            except ValidationError as e:
                raise MalformedArtifact(
                    artifact.source_id,
                    f"record {position}: {e.error_count()} validation error(s)",
                    cause=e,
                ) from e
            records.append(model.model_dump(mode="json", exclude_none=True))
        return records

    def aggregate(self, artifacts: Iterable[RawArtifact]) -> AggregatedDataset:
        """Merge *artifacts* into a dataset.

        Raises:
            AggregationAborted: Skip ratio exceeded, no artifacts, or no valid records
        """
        ordered = sorted(artifacts, key=RawArtifact.sort_key)
        self.skipped = []

        if not ordered:
            raise AggregationAborted("no artifacts to aggregate (zero successful fetches)")

        merged: dict[str, dict[str, Any]] = {}
        contributing = []
        for artifact in ordered:
            try:
                records = self.parse(artifact)
            except MalformedArtifact as e:
                self.skipped.append(e)
                logger.warning("aggregate.artifact_skipped", source_id=artifact.source_id, reason=e.reason)
                continue
            contributing.append(artifact)
            for record in records:
                merged[str(record[self.key_field])] = record

        ratio = len(self.skipped) / len(ordered)
        if ratio > self.max_skip_ratio:
            raise AggregationAborted(
                f"{len(self.skipped)} of {len(ordered)} artifacts malformed "
                f"(ratio {ratio:.2f} > {self.max_skip_ratio:.2f})",
                skipped=self.skipped,
            )
        if not merged:
            raise AggregationAborted("aggregation produced no records", skipped=self.skipped)

        keys = sorted(merged)
        dataset = AggregatedDataset(
            records=tuple(merged[k] for k in keys),
            generated_at=max(a.fetched_at for a in contributing),
            index=tuple(keys),
            skipped=len(self.skipped),
        )
        logger.info(
            "aggregate.completed",
            artifacts=len(ordered),
            records=dataset.record_count,
            skipped=dataset.skipped,
        )
        return dataset
