"""
Structured error types for apphost.

Every error raised by apphost extends :class:`AppHostError` so callers can
catch the whole family with a single ``except`` clause, and every error
carries enough metadata to be rendered in the CLI failure report or logged
as structured fields.

Manifesto:
    - **Typed hierarchy:** build-time errors (bad declarations) are distinct
      from runtime errors (a resource failed to become ready)
    - **Rich context:** the failing resource, kind and parameter travel with
      the error instead of being formatted into the message
    - **Never leak secrets:** messages name parameters, never their values
    - **Error chaining:** the underlying exception is kept as ``cause``

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                        AppHostError                           │
        │        (category, retryable, context, cause)                  │
        ├──────────────────────────────────────────────────────────────┤
        │  DeclarationError       ParameterError      ResourceError     │
        │  (CONFIG)               (PARAMETER)         (RESOURCE)        │
        │       │                      │                   │            │
        │  DuplicateName          MissingParameter    ReadinessTimeout  │
        │  UnknownResource        Resolution          ResourceFailed    │
        │  CyclicDependency                           DependencyFailed  │
        │                                                               │
        │  OrchestrationError (ORCHESTRATION)                           │
        │       │                                                       │
        │  LifecycleError, InvalidTransition, OrchestrationFailed       │
        └──────────────────────────────────────────────────────────────┘

    The concrete orchestration errors live in
    :mod:`apphost.orchestration.exceptions`.

Examples:
    >>> error = AppHostError("boom", category=ErrorCategory.RESOURCE)
    >>> error.with_context(resource="postgres").context.resource
    'postgres'
    >>> error.to_dict()["category"]
    'RESOURCE'

Tags:
    error-handling, exception-hierarchy, error-context, apphost
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from apphost.core.logging import redact_text


class ErrorCategory(str, Enum):
    """Standard error categories used for reporting and exit codes."""

    # Declaration problems (never retryable, nothing has started yet)
    CONFIG = "CONFIG"
    # Parameter values could not be produced
    PARAMETER = "PARAMETER"
    # A resource failed to start or become ready
    RESOURCE = "RESOURCE"
    # Scheduler / lifecycle errors
    ORCHESTRATION = "ORCHESTRATION"
    # Bugs, unexpected state
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Attributes:
        resource: Name of the resource the error belongs to
        kind: Resource kind tag
        parameter: Parameter name (never its value)
        run_id: Orchestration run identifier
        metadata: Additional key-value pairs
    """

    resource: str | None = None
    kind: str | None = None
    parameter: str | None = None
    run_id: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["resource", "kind", "parameter", "run_id"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class AppHostError(Exception):
    """
    Base exception for all apphost errors.

    Subclasses set ``default_category`` and ``default_retryable`` so the
    common case needs only a message.

    Example:
        >>> try:
        ...     raise ConnectionError("refused")
        ... except ConnectionError as e:
        ...     error = AppHostError("probe failed", cause=e)
        >>> error.cause
        ConnectionError('refused')
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
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> AppHostError:
        """
        Add context to this error (fluent API).

        Usage:
            raise ResourceStartError("docker run failed").with_context(
                resource="postgres", kind="postgres"
            )
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = redact_text(f"{type(self.cause).__name__}: {self.cause}")
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CATEGORY BASES
# =============================================================================


class DeclarationError(AppHostError):
    """
    The declared resources or parameters are invalid.

    Raised before anything starts; never retryable.
    """

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class ParameterError(AppHostError):
    """A parameter value could not be produced."""

    default_category = ErrorCategory.PARAMETER
    default_retryable = False


class ResourceError(AppHostError):
    """A resource failed to start, become ready, or stay ready."""

    default_category = ErrorCategory.RESOURCE
    default_retryable = False


class OrchestrationError(AppHostError):
    """Scheduler or lifecycle error."""

    default_category = ErrorCategory.ORCHESTRATION
    default_retryable = False


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_build_time_error(error: BaseException) -> bool:
    """True for errors raised while validating declarations (exit code 2)."""
    return isinstance(error, DeclarationError)


def describe_error(error: BaseException) -> str:
    """One-line human readable description used in failure reports."""
    if isinstance(error, AppHostError):
        return error.message
    text = redact_text(str(error))
    return f"{type(error).__name__}: {text}" if text else type(error).__name__


def categorize_error(error: BaseException) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, AppHostError):
        return error.category
    if isinstance(error, (ConnectionError, OSError)):
        return ErrorCategory.RESOURCE
    if isinstance(error, (KeyError, ValueError)):
        return ErrorCategory.CONFIG
    return ErrorCategory.UNKNOWN


__all__ = [
    "AppHostError",
    "DeclarationError",
    "ErrorCategory",
    "ErrorContext",
    "OrchestrationError",
    "ParameterError",
    "ResourceError",
    "categorize_error",
    "describe_error",
    "is_build_time_error",
]
