"""
apphost logging - structured logging via structlog.

Every module obtains its logger with ``get_logger(__name__)`` and logs
dotted event names with keyword fields::

    logger = get_logger(__name__)
    logger.info("scheduler.resource_ready", resource="postgres", elapsed_ms=812)

``configure_logging()`` is called once by the CLI. Console rendering is used
on a TTY, JSON otherwise (or when forced with ``json_format=True``).

Secret handling:
    Resolved secret values are registered with :func:`register_secret`. The
    ``redact_secrets`` processor replaces any occurrence of a registered
    value inside string event fields with ``[REDACTED]`` before rendering,
    so a handler that echoes a command line cannot leak a password.

Tags:
    logging, structlog, observability, apphost
"""

from __future__ import annotations

import logging
import sys
import threading
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_SERVICE_NAME = "apphost"
REDACTED = "[REDACTED]"

_secrets_lock = threading.Lock()
_registered_secrets: set[str] = set()


def register_secret(value: str) -> None:
    """Register a resolved secret value for redaction in all log output."""
    if not value:
        return
    with _secrets_lock:
        _registered_secrets.add(value)


def clear_registered_secrets() -> None:
    """Forget all registered secret values (used between runs and in tests)."""
    with _secrets_lock:
        _registered_secrets.clear()


def redact_text(text: str) -> str:
    """Replace every registered secret value inside *text*."""
    with _secrets_lock:
        secrets = sorted(_registered_secrets, key=len, reverse=True)
    for secret in secrets:
        if secret in text:
            text = text.replace(secret, REDACTED)
    return text


def redact_secrets(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """structlog processor: scrub registered secret values from string fields."""
    if not _registered_secrets:
        return event_dict
    for key, value in list(event_dict.items()):
        if isinstance(value, str):
            event_dict[key] = redact_text(value)
        elif isinstance(value, (list, tuple)):
            event_dict[key] = type(value)(
                redact_text(v) if isinstance(v, str) else v for v in value
            )
    return event_dict


def _add_service_metadata(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add service-level metadata to all logs."""
    event_dict.setdefault("service.name", _SERVICE_NAME)
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "apphost",
    add_timestamp: bool = True,
) -> None:
    """Configure structured logging for the process.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
        service: Service name to include in logs
        add_timestamp: Include ISO timestamp in logs

    Logs go to stderr so that ``--json`` output on stdout stays parseable.
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service

    if json_format is None:
        json_format = not sys.stderr.isatty()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_metadata,
        redact_secrets,
    ]

    if add_timestamp:
        shared_processors.insert(0, structlog.processors.TimeStamper(fmt="iso"))

    if json_format:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Reconfigured per CLI invocation
        cache_logger_on_first_use=False,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level.upper()),
        force=True,
    )


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger (usually ``get_logger(__name__)``)."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context to include in all subsequent logs of this task."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove specific keys from logging context."""
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    """Clear all bound context."""
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Context manager for scoped logging context.

    Example:
        async with LogContext(run_id="abc123"):
            logger.info("scheduler.run_started")
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs

    def __enter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    def __exit__(self, *args: Any) -> None:
        unbind_context(*self._context.keys())

    async def __aenter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    async def __aexit__(self, *args: Any) -> None:
        unbind_context(*self._context.keys())


__all__ = [
    "REDACTED",
    "LogContext",
    "bind_context",
    "clear_context",
    "clear_registered_secrets",
    "configure_logging",
    "get_logger",
    "redact_secrets",
    "redact_text",
    "register_secret",
    "unbind_context",
]
