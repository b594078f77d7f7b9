"""
Destination stores for published datasets.

A store receives an :class:`AggregatedDataset` with upsert semantics:
records are keyed by SKU, so publishing the same dataset twice leaves the
store unchanged and reports every record as ``unchanged``.

Stores translate their own failures into the publish taxonomy:

    ========================  ==========================  =========
    Condition                 Error                       Retried
    ========================  ==========================  =========
    bad / expired secret      AuthRejected                no
    shape not accepted        SchemaMismatch              no
    network / server trouble  TransientUploadError        yes
    ========================  ==========================  =========
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from harvest.core.errors import AuthRejected, SchemaMismatch, TransientUploadError
from harvest.core.hashing import compute_record_hash
from harvest.core.models import AggregatedDataset
from harvest.core.secrets import SecretValue


@dataclass(frozen=True)
class StoreSchema:
    """Shape the destination accepts."""

    schema_version: int = 1
    required_fields: tuple[str, ...] = ("sku",)


@dataclass
class UpsertResult:
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"inserted": self.inserted, "updated": self.updated, "unchanged": self.unchanged}


class DatasetStore(Protocol):
    def describe(self) -> StoreSchema: ...

    def upsert(self, dataset: AggregatedDataset, secret: SecretValue) -> UpsertResult: ...


class InMemoryDatasetStore:
    """Dict-backed store keyed by SKU.

    ``fail_with`` queues exceptions raised by the next ``upsert`` calls, one
    per call, which lets tests script transient outages.
    """

    def __init__(
        self,
        accepted_secrets: set[str] | None = None,
        schema: StoreSchema | None = None,
        fail_with: list[Exception] | None = None,
    ) -> None:
        self.accepted_secrets = set(accepted_secrets or ())
        self.schema = schema or StoreSchema()
        self.fail_with = list(fail_with or [])
        self.records: dict[str, dict[str, Any]] = {}
        self._hashes: dict[str, str] = {}
        self.calls = 0
        self._lock = threading.Lock()

    def describe(self) -> StoreSchema:
        return self.schema

    def upsert(self, dataset: AggregatedDataset, secret: SecretValue) -> UpsertResult:
        with self._lock:
            self.calls += 1
            if self.fail_with:
                raise self.fail_with.pop(0)
            if self.accepted_secrets and secret.get_secret() not in self.accepted_secrets:
                raise AuthRejected("destination rejected the publish secret")

            result = UpsertResult()
            for record in dataset.records:
                key = str(record["sku"])
                digest = compute_record_hash(record)
                previous = self._hashes.get(key)
                if previous is None:
                    result.inserted += 1
                elif previous != digest:
                    result.updated += 1
                else:
                    result.unchanged += 1
                    continue
                self.records[key] = dict(record)
                self._hashes[key] = digest
            return result


class HttpDatasetStore:
    """Upserts datasets to an HTTP endpoint with a bearer token.

    The request is a ``PUT`` of the dataset JSON with an ``Idempotency-Key``
    header set to the dataset content hash; the server is expected to upsert
    by SKU and may answer with ``{"inserted", "updated", "unchanged"}``.
    """

    def __init__(
        self,
        url: str,
        schema: StoreSchema | None = None,
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.url = url
        self.schema = schema or StoreSchema()
        self._client = client or httpx.Client(timeout=timeout)

    def describe(self) -> StoreSchema:
        return self.schema

    def upsert(self, dataset: AggregatedDataset, secret: SecretValue) -> UpsertResult:
        headers = {
            "Authorization": f"Bearer {secret.get_secret()}",
            "Content-Type": "application/json",
            "Idempotency-Key": dataset.content_hash,
        }
        try:
            response = self._client.put(self.url, content=dataset.to_json().encode("utf-8"), headers=headers)
        except httpx.HTTPError as e:
            raise TransientUploadError(f"upload failed: {type(e).__name__}", cause=e) from e

        status = response.status_code
        if status in (401, 403):
            raise AuthRejected(f"destination rejected the publish secret (HTTP {status})")
        if status in (400, 409, 422):
            raise SchemaMismatch(f"destination refused dataset shape (HTTP {status}): {response.text[:200]}")
        if status == 429 or status >= 500:
            raise TransientUploadError(f"destination unavailable (HTTP {status})")
        if status >= 300:
            raise SchemaMismatch(f"unexpected response from destination (HTTP {status})")

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        return UpsertResult(
            inserted=int(body.get("inserted", 0)),
            updated=int(body.get("updated", 0)),
            unchanged=int(body.get("unchanged", 0)),
        )

    def close(self) -> None:
        self._client.close()

