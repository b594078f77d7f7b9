"""Builders for artifacts, products and scripted source clients."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from typing import Any

from harvest.core.models import RawArtifact
from harvest.core.settings import SourceSpec
from harvest.pipeline.fetcher import SourceFetchError

SECRET = "s3cr3t-token"
T0 = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def product(sku: str, **fields: Any) -> dict[str, Any]:
    return {"sku": sku, "name": f"Product {sku}", "price": 9.99, "currency": "USD", **fields}


def make_artifact(source_id: str, payload: Any, fetched_at: datetime = T0) -> RawArtifact:
    body = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
    return RawArtifact(source_id=source_id, fetched_at=fetched_at, payload=body, url=f"https://shop.test/{source_id}")


def unavailable(source_id: str) -> SourceFetchError:
    return SourceFetchError(source_id, f"HTTP 503 from https://shop.test/{source_id}", http_status=503)


class ScriptedClient:
    """Source client answering from a dict; exception values are raised.

    ``hooks`` maps a source id to a callable run just before that source is
    answered, e.g. to request cancellation mid-fetch.
    """

    def __init__(self, responses: dict[str, Any]) -> None:
        self.responses = dict(responses)
        self.calls: list[str] = []
        self.hooks: dict[str, Any] = {}

    def fetch_one(self, source: SourceSpec) -> RawArtifact:
        self.calls.append(source.id)
        hook = self.hooks.get(source.id)
        if hook is not None:
            hook()
        response = self.responses[source.id]
        if isinstance(response, Exception):
            raise response
        return make_artifact(source.id, response, fetched_at=T0 + timedelta(minutes=len(self.calls)))


class SleepRecorder:
    """Sleep replacement recording requested delays."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
