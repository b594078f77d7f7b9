"""Core primitives: errors, records, settings, secrets, logging and the SQLite adapter."""

from harvest.core.errors import (
    AggregationAborted,
    AlreadyRunning,
    AuthRejected,
    ConfigError,
    ErrorCategory,
    ErrorContext,
    FetchAborted,
    HarvestError,
    InvalidTransitionError,
    MalformedArtifact,
    RunCancelled,
    RunNotFound,
    SchemaMismatch,
    TransientUploadError,
    WorkspaceCollision,
    WorkspaceNotFound,
    is_retryable,
)
from harvest.core.models import (
    AggregatedDataset,
    FetchFailure,
    Phase,
    RawArtifact,
    Run,
    RunFailure,
    RunOutcome,
    RunStatus,
    TriggerKind,
    Workspace,
)

__all__ = [
    # errors
    "AggregationAborted",
    "AlreadyRunning",
    "AuthRejected",
    "ConfigError",
    "ErrorCategory",
    "ErrorContext",
    "FetchAborted",
    "HarvestError",
    "InvalidTransitionError",
    "MalformedArtifact",
    "RunCancelled",
    "RunNotFound",
    "SchemaMismatch",
    "TransientUploadError",
    "WorkspaceCollision",
    "WorkspaceNotFound",
    "is_retryable",
    # records
    "AggregatedDataset",
    "FetchFailure",
    "Phase",
    "RawArtifact",
    "Run",
    "RunFailure",
    "RunOutcome",
    "RunStatus",
    "TriggerKind",
    "Workspace",
]
