"""
Structured error types for the harvest pipeline.

Every failure a Run can hit maps onto one typed error. Each error carries a
category, an explicit retry flag and an ``ErrorContext`` so the orchestrator
can report *which phase* failed with *which kind* of error, instead of a raw
upstream message.

Architecture:
    ::

        HarvestError (category, retryable, context, cause)
          │
          ├── AlreadyRunning            ORCHESTRATION  another Run is active
          ├── RunCancelled              ORCHESTRATION  soft cancellation
          ├── RunNotFound               ORCHESTRATION
          ├── InvalidTransitionError    INTERNAL       bad Run state change
          ├── WorkspaceCollision        ISOLATION      stale workspace
          ├── WorkspaceNotFound         ISOLATION
          ├── FetchAborted              SOURCE         too many consecutive failures
          ├── MalformedArtifact         PARSE          payload not parseable
          ├── AggregationAborted        PARSE          skip ratio exceeded / empty
          ├── AuthRejected              AUTH           secret invalid or missing
          ├── SchemaMismatch            VALIDATION     destination shape differs
          ├── TransientUploadError      NETWORK        retryable=True
          └── ConfigError               CONFIG

Guardrails:
    ❌ DON'T: Put secret values in messages or context
    ✅ DO: Name the secret key, never its value

    ❌ DON'T: Swallow the original exception
    ✅ DO: Pass it as cause= for error chaining
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    NETWORK = "NETWORK"
    SOURCE = "SOURCE"
    PARSE = "PARSE"
    VALIDATION = "VALIDATION"
    AUTH = "AUTH"
    CONFIG = "CONFIG"
    ISOLATION = "ISOLATION"
    ORCHESTRATION = "ORCHESTRATION"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error for logging and reporting."""

    pipeline: str | None = None
    phase: str | None = None
    run_id: str | None = None
    workspace: str | None = None
    source_id: str | None = None
    url: str | None = None
    http_status: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["pipeline", "phase", "run_id", "workspace", "source_id", "url", "http_status"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class HarvestError(Exception):
    """
    Base exception for all harvest errors.

    Subclasses set ``default_category`` and ``default_retryable``; callers
    may override either per instance.

    Attributes:
        message: Human-readable error message
        category: ErrorCategory for classification
        retryable: Whether the failed operation may be retried
        context: ErrorContext with structured metadata
        cause: Underlying exception, if any
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = self.default_retryable if retryable is None else retryable
        self.context = context or ErrorContext()
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    @property
    def kind(self) -> str:
        """Taxonomy name reported to operators (the class name)."""
        return type(self).__name__

    def with_context(self, **kwargs: Any) -> HarvestError:
        """Add context fields; unknown keys go to ``metadata``. Returns self."""
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Serialize for logging and run records."""
        result: dict[str, Any] = {
            "error_kind": self.kind,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        ctx = self.context.to_dict()
        if ctx:
            result["context"] = ctx
        if self.cause is not None:
            result["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return result

    def __repr__(self) -> str:
        return f"{self.kind}({self.message!r})"


# --- Orchestration ----------------------------------------------------------


class AlreadyRunning(HarvestError):
    """A Run is already active for this pipeline; retry later."""

    default_category = ErrorCategory.ORCHESTRATION
    default_retryable = True

    def __init__(self, pipeline: str, active_run_id: str | None = None, **kwargs: Any):
        message = f"pipeline '{pipeline}' already has an active run"
        if active_run_id:
            message += f" ({active_run_id})"
        super().__init__(message, **kwargs)
        self.pipeline = pipeline
        self.active_run_id = active_run_id


class RunCancelled(HarvestError):
    """Cancellation was requested and observed at a phase boundary."""

    default_category = ErrorCategory.ORCHESTRATION


class RunNotFound(HarvestError):
    default_category = ErrorCategory.ORCHESTRATION

    def __init__(self, run_id: str, **kwargs: Any):
        super().__init__(f"run not found: {run_id}", **kwargs)
        self.run_id = run_id


class InvalidTransitionError(HarvestError):
    """Raised when a Run status transition is not allowed."""

    default_category = ErrorCategory.INTERNAL

    def __init__(self, current: str, target: str, **kwargs: Any):
        super().__init__(f"Invalid run status transition: {current} → {target}", **kwargs)
        self.current = current
        self.target = target


# --- Isolation --------------------------------------------------------------


class WorkspaceCollision(HarvestError):
    """
    A workspace with the same name still exists.

    Signals incomplete clean-up after an earlier crash. The stale workspace
    is left untouched for manual inspection.
    """

    default_category = ErrorCategory.ISOLATION

    def __init__(self, name: str, owner_run_id: str | None = None, **kwargs: Any):
        message = f"workspace '{name}' already exists"
        if owner_run_id:
            message += f" (opened by run {owner_run_id})"
        super().__init__(message, **kwargs)
        self.name = name
        self.owner_run_id = owner_run_id


class WorkspaceNotFound(HarvestError):
    default_category = ErrorCategory.ISOLATION

    def __init__(self, name: str, **kwargs: Any):
        super().__init__(f"workspace not found: {name}", **kwargs)
        self.name = name


# --- Fetch / aggregate -----------------------------------------------------


class FetchAborted(HarvestError):
    """Consecutive fetch failures reached the configured threshold."""

    default_category = ErrorCategory.SOURCE

    def __init__(self, message: str, failures: list | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.failures = list(failures or [])


class MalformedArtifact(HarvestError):
    """A raw payload could not be parsed into the record schema."""

    default_category = ErrorCategory.PARSE

    def __init__(self, source_id: str, reason: str, **kwargs: Any):
        super().__init__(f"malformed artifact from '{source_id}': {reason}", **kwargs)
        self.source_id = source_id
        self.reason = reason
        self.context.source_id = source_id


class AggregationAborted(HarvestError):
    """Too many malformed artifacts, or nothing left to aggregate."""

    default_category = ErrorCategory.PARSE

    def __init__(self, message: str, skipped: list[MalformedArtifact] | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.skipped = list(skipped or [])


# --- Publish ----------------------------------------------------------------


class AuthRejected(HarvestError):
    """The publish secret is missing, invalid or expired. Never retried."""

    default_category = ErrorCategory.AUTH


class SchemaMismatch(HarvestError):
    """The destination store expects a different dataset shape. Never retried."""

    default_category = ErrorCategory.VALIDATION


class TransientUploadError(HarvestError):
    """Network or server-side upload failure; retried with backoff."""

    default_category = ErrorCategory.NETWORK
    default_retryable = True


# --- Configuration ----------------------------------------------------------


class ConfigError(HarvestError):
    default_category = ErrorCategory.CONFIG


def is_retryable(error: BaseException) -> bool:
    """Check whether an exception is retryable (non-harvest errors are not)."""
    if isinstance(error, HarvestError):
        return error.retryable
    return False


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "HarvestError",
    "AlreadyRunning",
    "RunCancelled",
    "RunNotFound",
    "InvalidTransitionError",
    "WorkspaceCollision",
    "WorkspaceNotFound",
    "FetchAborted",
    "MalformedArtifact",
    "AggregationAborted",
    "AuthRejected",
    "SchemaMismatch",
    "TransientUploadError",
    "ConfigError",
    "is_retryable",
]
