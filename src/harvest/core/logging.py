"""
Harvest logging - structured logging via structlog.

Every Run binds ``run_id`` and ``pipeline`` into the logging context so that
all lines emitted while it executes can be correlated::

    {"@timestamp": "...", "log.level": "info", "service.name": "harvest",
     "event": "phase.started", "phase": "fetch", "run_id": "...", "pipeline": "products"}

Examples:
    >>> from harvest.core.logging import configure_logging, get_logger
    >>> configure_logging(level="INFO", json_format=True)
    >>> logger = get_logger(__name__)
    >>> logger.info("fetch.item_ok", source_id="sku-1", bytes=512)

    >>> with LogContext(run_id="abc123", pipeline="products"):
    ...     logger.info("phase.started", phase="fetch")

Guardrails:
    - ``SecretValue`` fields and credential-looking keys are masked by
      :func:`_mask_credentials` before rendering
    - JSON in non-interactive environments, console output in terminals
"""

from __future__ import annotations

import logging
import sys
from contextlib import AbstractContextManager
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from harvest.core.secrets import SecretValue

_SERVICE_NAME = "harvest"
_CREDENTIAL_KEYS = ("secret", "token", "password", "authorization")
_MASK = "[REDACTED]"


def _add_service_metadata(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service.name", _SERVICE_NAME)
    return event_dict


def _mask_credentials(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    for key, value in event_dict.items():
        if isinstance(value, SecretValue) or any(part in key.lower() for part in _CREDENTIAL_KEYS):
            event_dict[key] = _MASK
    return event_dict


def _ecs_field_names(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Rename to Elastic Common Schema field names."""
    if "timestamp" in event_dict:
        event_dict["@timestamp"] = event_dict.pop("timestamp")
    if "level" in event_dict:
        event_dict["log.level"] = event_dict.pop("level")
    return event_dict


def _level_number(level: str) -> int:
    number = logging.getLevelName(level.upper())
    if not isinstance(number, int):
        raise ValueError(f"unknown log level: {level}")
    return number


def _processors(json_format: bool, add_timestamp: bool) -> list[Processor]:
    chain: list[Processor] = []
    if add_timestamp:
        chain.append(structlog.processors.TimeStamper(fmt="iso", utc=True))
    chain += [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_metadata,
        _mask_credentials,
    ]
    if json_format:
        chain += [structlog.processors.format_exc_info, _ecs_field_names, structlog.processors.JSONRenderer()]
    else:
        chain.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    return chain


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "harvest",
    add_timestamp: bool = True,
    cache_loggers: bool = True,
) -> None:
    """Configure structured logging on stderr.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
        service: Value of the ``service.name`` field
        add_timestamp: Include an ISO timestamp
        cache_loggers: Freeze loggers on first use; tests turn this off so
            reconfiguring takes effect for module-level loggers
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service
    threshold = _level_number(level)
    if json_format is None:
        json_format = not sys.stderr.isatty()

    structlog.configure(
        processors=_processors(json_format, add_timestamp),
        wrapper_class=structlog.make_filtering_bound_logger(threshold),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=cache_loggers,
    )
    # httpx and other stdlib loggers
    logging.basicConfig(format="%(name)s %(levelname)s %(message)s", stream=sys.stderr, level=threshold)


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger, usually ``get_logger(__name__)``.

    Print loggers carry no name, so *name* is also bound as ``logger_name``.
    """
    if name:
        return structlog.get_logger(name, logger_name=name)
    return structlog.get_logger()


def bind_context(**kwargs: Any) -> None:
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Bind fields for the duration of a block; outer values are restored on exit.

    Example:
        with LogContext(run_id="abc123", pipeline="products"):
            logger.info("phase.started")
    """

    def __init__(self, **kwargs: Any):
        self._fields = kwargs
        self._scope: AbstractContextManager | None = None

    def __enter__(self) -> LogContext:
        self._scope = structlog.contextvars.bound_contextvars(**self._fields)
        self._scope.__enter__()
        return self

    def __exit__(self, *exc_info) -> None:
        if self._scope is not None:
            self._scope.__exit__(*exc_info)
            self._scope = None


__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "clear_context",
    "LogContext",
]
