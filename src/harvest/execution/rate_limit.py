"""Rate limiting - fixed spacing between requests to the same remote source.

The fetcher processes its sources sequentially and must never hammer the
remote server. ``IntervalLimiter`` guarantees a quiet gap of at least
``min_interval`` seconds between the *completion* of one request and the
start of the next; the first acquisition never waits.

Example::

    limiter = IntervalLimiter(min_interval=1.0)
    for source in sources:
        limiter.acquire()        # sleeps as needed
        try:
            fetch(source)
        finally:
            limiter.complete()
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field

SleepFn = Callable[[float], None]
ClockFn = Callable[[], float]


@dataclass
class IntervalLimiter:
    """Blocking limiter keeping ``min_interval`` seconds between requests.

    Attributes:
        min_interval: Minimum quiet seconds between two requests
        sleep: Sleep function (injectable for tests)
        clock: Monotonic clock (injectable for tests)
    """

    min_interval: float
    sleep: SleepFn = time.sleep
    clock: ClockFn = time.monotonic

    _last_completed: float | None = field(default=None, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)
    waited: float = field(default=0.0, init=False)

    def get_wait_time(self) -> float:
        """Seconds to wait before the next request (0 if allowed now)."""
        with self._lock:
            if self._last_completed is None:
                return 0.0
            return max(0.0, self.min_interval - (self.clock() - self._last_completed))

    def acquire(self) -> float:
        """Block until the next request is allowed. Returns seconds slept."""
        wait = self.get_wait_time()
        if wait > 0:
            self.sleep(wait)
            with self._lock:
                self.waited += wait
        return wait

    def complete(self) -> None:
        """Record that a request finished; the gap starts now."""
        with self._lock:
            self._last_completed = self.clock()

    def reset(self) -> None:
        """Forget previous requests; the next acquisition won't wait."""
        with self._lock:
            self._last_completed = None
