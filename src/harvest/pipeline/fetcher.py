"""
Fetcher - one sequential, rate-limited pass over the source list.

``Fetcher.fetch(sources)`` returns a :class:`FetchStream`: a lazy, finite and
restartable iterable. Every ``iter()`` starts a fresh pass that fetches the
sources one after another, waiting ``rate_limit_delay`` between two
requests, and yields a :class:`RawArtifact` for every success.

Failures don't stop the pass. Each one is recorded as a
:class:`FetchFailure` in ``stream.failures`` and the next source is
tried, until ``max_consecutive_failures`` failures happen back to back,
at which point the pass raises :class:`FetchAborted`.

There is deliberately no fan-out: one request in flight at a time.

Example:
    >>> fetcher = Fetcher(HttpSourceClient(), rate_limit_delay=1.0)
    >>> stream = fetcher.fetch(settings.sources())
    >>> artifacts = list(stream)
    >>> stream.failures
    []
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator, Sequence
from typing import Protocol

import httpx

from harvest.core.errors import FetchAborted, HarvestError, RunCancelled
from harvest.core.logging import get_logger
from harvest.core.models import FetchFailure, RawArtifact, utcnow
from harvest.core.settings import SourceSpec
from harvest.execution.rate_limit import IntervalLimiter, SleepFn

logger = get_logger(__name__)

CancelCheck = Callable[[], bool]


class SourceFetchError(HarvestError):
    """A single source could not be fetched. Recorded, not raised by the stream."""

    def __init__(self, source_id: str, message: str, *, http_status: int | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.context.source_id = source_id
        self.context.http_status = http_status


class SourceClient(Protocol):
    """Fetches one source and returns its raw artifact."""

    def fetch_one(self, source: SourceSpec) -> RawArtifact: ...


class HttpSourceClient:
    """Fetch sources over HTTP with ``httpx``.

    Any transport error or HTTP status >= 400 becomes a
    :class:`SourceFetchError` for that source.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        user_agent: str = "harvest-spine/0.1",
        client: httpx.Client | None = None,
    ) -> None:
        self._client = client or httpx.Client(
            timeout=timeout,
            headers={"User-Agent": user_agent, "Accept": "application/json, */*;q=0.5"},
            follow_redirects=True,
        )

    def fetch_one(self, source: SourceSpec) -> RawArtifact:
        try:
            response = self._client.get(source.url)
        except httpx.HTTPError as e:
            raise SourceFetchError(source.id, f"{type(e).__name__}: {e}", cause=e) from e

        if response.status_code >= 400:
            raise SourceFetchError(
                source.id,
                f"HTTP {response.status_code} from {source.url}",
                http_status=response.status_code,
            )

        return RawArtifact(
            source_id=source.id,
            fetched_at=utcnow(),
            payload=response.content,
            content_type=response.headers.get("content-type", "application/octet-stream"),
            url=str(response.url),
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpSourceClient:
        return self

    def __exit__(self, *args) -> None:
        self.close()


class FetchStream:
    """Lazy, restartable sequence of raw artifacts for one source list."""

    def __init__(
        self,
        fetcher: Fetcher,
        sources: Sequence[SourceSpec],
        cancel_requested: CancelCheck | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._sources = tuple(sources)
        self._cancel_requested = cancel_requested
        self.failures: list[FetchFailure] = []
        self.attempted = 0

    def __len__(self) -> int:
        return len(self._sources)

    @property
    def sources(self) -> tuple[SourceSpec, ...]:
        return self._sources

    def __iter__(self) -> Iterator[RawArtifact]:
        self.failures = []
        self.attempted = 0
        return self._fetcher._iterate(self._sources, self, self._cancel_requested)


class Fetcher:
    """Sequential fetcher with inter-item delay and a consecutive-failure budget.

    Args:
        client: Source client performing one fetch
        rate_limit_delay: Seconds between two requests
        max_consecutive_failures: Abort once this many failures happen in a row
        sleep: Sleep function (injectable for tests)
        cancel_requested: Polled before every item after the first; when it
            returns True the pass stops with :class:`RunCancelled`. The
            in-flight fetch is never interrupted.
    """

    def __init__(
        self,
        client: SourceClient,
        rate_limit_delay: float = 1.0,
        max_consecutive_failures: int = 3,
        sleep: SleepFn = time.sleep,
        cancel_requested: CancelCheck | None = None,
    ) -> None:
        if max_consecutive_failures < 1:
            raise ValueError("max_consecutive_failures must be >= 1")
        self.client = client
        self.rate_limit_delay = rate_limit_delay
        self.max_consecutive_failures = max_consecutive_failures
        self.sleep = sleep
        self.cancel_requested = cancel_requested

    def fetch(self, sources: Sequence[SourceSpec], cancel_requested: CancelCheck | None = None) -> FetchStream:
        """Return a lazy stream over *sources*; nothing is fetched yet.

        *cancel_requested* overrides the fetcher-wide cancellation check.
        """
        return FetchStream(self, sources, cancel_requested or self.cancel_requested)

    def _iterate(
        self,
        sources: tuple[SourceSpec, ...],
        stream: FetchStream,
        cancel_requested: CancelCheck | None,
    ) -> Iterator[RawArtifact]:
        limiter = IntervalLimiter(self.rate_limit_delay, sleep=self.sleep)
        consecutive = 0

        for position, source in enumerate(sources):
            limiter.acquire()
            # cancellation is observed after the wait and before the next request
            if position > 0 and cancel_requested is not None and cancel_requested():
                logger.info("fetch.cancelled", completed=position, remaining=len(sources) - position)
                raise RunCancelled(f"cancelled after {position} of {len(sources)} sources")

            stream.attempted += 1
            try:
                artifact = self.client.fetch_one(source)
            except HarvestError as e:
                failure = FetchFailure(source_id=source.id, kind=e.kind, message=e.message)
            except Exception as e:
                failure = FetchFailure(source_id=source.id, kind=type(e).__name__, message=str(e))
            else:
                failure = None
            finally:
                limiter.complete()

            if failure is None:
                consecutive = 0
                logger.debug("fetch.item_ok", source_id=source.id, bytes=len(artifact.payload))
                yield artifact
                continue

            consecutive += 1
            stream.failures.append(failure)
            logger.warning(
                "fetch.item_failed",
                source_id=source.id,
                error_kind=failure.kind,
                error=failure.message,
                consecutive=consecutive,
            )
            if consecutive >= self.max_consecutive_failures:
                raise FetchAborted(
                    f"{consecutive} consecutive fetch failures "
                    f"(threshold {self.max_consecutive_failures}), last: {source.id}",
                    failures=stream.failures,
                )
