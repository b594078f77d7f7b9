"""Execution helpers: retry policy, rate limiting and run events."""

from harvest.execution.events import (
    CompositeEventSink,
    EventSink,
    EventType,
    InMemoryEventSink,
    LoggingEventSink,
    RunEvent,
)
from harvest.execution.rate_limit import IntervalLimiter
from harvest.execution.retry import ExponentialBackoff, RetryContext

__all__ = [
    "CompositeEventSink",
    "EventSink",
    "EventType",
    "ExponentialBackoff",
    "InMemoryEventSink",
    "IntervalLimiter",
    "LoggingEventSink",
    "RetryContext",
    "RunEvent",
]
