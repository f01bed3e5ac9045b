"""Core primitives shared by every apphost layer: errors, logging, settings and value sources."""

from apphost.core.errors import AppHostError, ErrorCategory, ErrorContext
from apphost.core.logging import LogContext, configure_logging, get_logger
from apphost.core.secrets import SecretValue
from apphost.core.settings import AppHostSettings

__all__ = [
    "AppHostError",
    "AppHostSettings",
    "ErrorCategory",
    "ErrorContext",
    "LogContext",
    "SecretValue",
    "configure_logging",
    "get_logger",
]
