"""Bounded exponential backoff for destination uploads.

``max_attempts`` counts every attempt, the first one included, so the
default policy (3) means one upload plus at most two retries. Only errors
for which ``retry_on`` is true are retried (by default those flagged
``retryable``, i.e. ``TransientUploadError``); anything else propagates from
the attempt that raised it.

Example:
    >>> policy = ExponentialBackoff(max_attempts=3, base_delay=1.0, jitter=False)
    >>> [policy.next_delay(n) for n in range(3)]
    [1.0, 2.0, 4.0]
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from harvest.core.errors import is_retryable

T = TypeVar("T")

SleepFn = Callable[[float], None]
RetryHook = Callable[[int, BaseException, float], None]


@dataclass
class ExponentialBackoff:
    """``min(base_delay * multiplier**n, max_delay)``, optionally jittered by ±``jitter_range``."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    multiplier: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.25
    retry_on: Callable[[BaseException], bool] = is_retryable

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    def next_delay(self, retry_index: int) -> float:
        """Seconds to wait before retry number *retry_index* (0-based)."""
        delay = min(self.base_delay * self.multiplier**retry_index, self.max_delay)
        if not self.jitter:
            return delay
        spread = delay * self.jitter_range
        return max(0.0, random.uniform(delay - spread, delay + spread))

    def should_retry(self, attempts_made: int, error: BaseException) -> bool:
        return attempts_made < self.max_attempts and self.retry_on(error)


@dataclass
class RetryContext:
    """Runs one callable under a backoff policy and remembers how it went.

    Example:
        >>> ctx = RetryContext(ExponentialBackoff(max_attempts=3))
        >>> ctx.run(store.upsert, dataset, secret)
        >>> ctx.attempts
        1
    """

    policy: ExponentialBackoff
    on_retry: RetryHook | None = None
    sleep: SleepFn = time.sleep
    attempts: int = field(default=0, init=False)
    last_error: BaseException | None = field(default=None, init=False)

    def run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Call *func* until it succeeds, raises a non-retryable error, or attempts run out."""
        while True:
            self.attempts += 1
            try:
                return func(*args, **kwargs)
            except Exception as e:
                self.last_error = e
                if not self.policy.should_retry(self.attempts, e):
                    raise
                delay = self.policy.next_delay(self.attempts - 1)
                if self.on_retry is not None:
                    self.on_retry(self.attempts, e, delay)
                self.sleep(delay)
