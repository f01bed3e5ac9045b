"""Orchestration exceptions - structured error hierarchy.

All orchestration exceptions inherit from one of the category bases in
``apphost.core.errors`` so that callers can catch whole families.

Hierarchy::

    DeclarationError  (build-time, abort before anything starts)
      ├── DuplicateNameError        ── name declared twice
      ├── UnknownResourceError      ── reference to an undeclared resource
      │     └── UnknownParameterError
      ├── UnknownKindError          ── no handler for a kind tag
      ├── CyclicDependencyError     ── dependency graph has a cycle
      ├── RegistryFrozenError       ── registration after graph build
      └── ManifestError             ── manifest file is invalid

    ParameterError
      ├── MissingParameterError     ── no source supplies a value
      └── ResolutionError           ── a value source failed

    ResourceError  (runtime, scoped to the resource's dependents)
      ├── ReadinessTimeoutError     ── not ready within its timeout
      ├── ResourceFailedError       ── readiness criterion reported failure
      ├── ResourceStartError        ── handler could not start it
      ├── DependencyFailedError     ── a dependency failed first
      └── RunCancelledError         ── the run was aborted

    OrchestrationError
      ├── LifecycleError            ── start called twice, etc.
      ├── InvalidTransitionError    ── illegal run-state transition
      └── OrchestrationFailedError  ── aggregate of all failures in a run
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

from apphost.core.errors import (
    DeclarationError,
    OrchestrationError,
    ParameterError,
    ResourceError,
)

if TYPE_CHECKING:
    from apphost.orchestration.models import RunState


# =============================================================================
# BUILD-TIME
# =============================================================================


class DuplicateNameError(DeclarationError):
    """Raised when a resource or parameter name is registered twice."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Duplicate resource or parameter name: {name}")


class UnknownResourceError(DeclarationError):
    """Raised when a name does not refer to a registered resource."""

    def __init__(self, name: str, referenced_by: str | None = None):
        self.name = name
        self.referenced_by = referenced_by
        if referenced_by:
            message = f"Resource '{referenced_by}' references unknown resource: {name}"
        else:
            message = f"Unknown resource: {name}"
        super().__init__(message)


class UnknownParameterError(UnknownResourceError):
    """Raised when a name does not refer to a declared parameter."""

    def __init__(self, name: str, referenced_by: str | None = None):
        self.name = name
        self.referenced_by = referenced_by
        if referenced_by:
            message = f"Resource '{referenced_by}' references unknown parameter: {name}"
        else:
            message = f"Unknown parameter: {name}"
        DeclarationError.__init__(self, message)


class UnknownKindError(DeclarationError):
    """Raised when no handler is registered for a resource kind."""

    def __init__(self, kind: str, resource: str | None = None, available: Sequence[str] = ()):
        self.kind = kind
        self.resource = resource
        message = f"No handler registered for kind '{kind}'"
        if resource:
            message += f" (resource '{resource}')"
        if available:
            message += f". Available: {', '.join(available)}"
        super().__init__(message)


class CyclicDependencyError(DeclarationError):
    """Raised when the dependency graph contains a cycle.

    ``cycle`` lists the participants in cycle order with the first name
    repeated at the end, e.g. ``["a", "b", "a"]``.
    """

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Cycle detected in dependency graph: {' -> '.join(cycle)}")

    @property
    def participants(self) -> list[str]:
        """Distinct resource names in the cycle."""
        return list(dict.fromkeys(self.cycle))


class RegistryFrozenError(DeclarationError):
    """Raised when registering into a registry that is already read-only."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Registry is frozen; cannot register '{name}'")


class ManifestError(DeclarationError):
    """Raised when a manifest cannot be read or validated."""

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        super().__init__(f"{path}: {message}" if path else message)


# =============================================================================
# PARAMETERS
# =============================================================================


class MissingParameterError(ParameterError):
    """Raised when no value source supplies a parameter and there is no fallback."""

    def __init__(self, name: str, tried: str | None = None):
        self.name = name
        self.tried = tried
        message = f"Parameter not found: {name}"
        if tried:
            message += f" (tried: {tried})"
        super().__init__(message)
        self.context.parameter = name


class ResolutionError(ParameterError):
    """Raised when a value source fails while resolving a parameter.

    The message names the parameter, the source and the exception type;
    it never includes a value.
    """

    def __init__(self, name: str, source: str, cause: BaseException):
        self.name = name
        self.source = source
        super().__init__(
            f"Could not resolve parameter '{name}' from {source}: {type(cause).__name__}",
            cause=cause,
        )
        self.context.parameter = name


# =============================================================================
# RUNTIME
# =============================================================================


class ReadinessTimeoutError(ResourceError):
    """Raised when a resource does not become ready within its timeout."""

    def __init__(self, resource: str, timeout: float, last_status: str | None = None):
        self.resource = resource
        self.timeout = timeout
        self.last_status = last_status
        message = f"Resource '{resource}' did not become ready within {timeout:g}s"
        if last_status:
            message += f" (last status: {last_status})"
        super().__init__(message)
        self.context.resource = resource


class ResourceFailedError(ResourceError):
    """Raised when a resource's readiness criterion reports failure."""

    def __init__(self, resource: str, reason: str = "readiness check reported failure"):
        self.resource = resource
        self.reason = reason
        super().__init__(f"Resource '{resource}' failed: {reason}")
        self.context.resource = resource


class ResourceStartError(ResourceError):
    """Raised when a handler cannot start a resource."""

    def __init__(self, resource: str, reason: str, cause: BaseException | None = None):
        self.resource = resource
        self.reason = reason
        super().__init__(f"Resource '{resource}' could not be started: {reason}", cause=cause)
        self.context.resource = resource


class DependencyFailedError(ResourceError):
    """Raised (or recorded) for a resource whose dependency failed."""

    def __init__(self, resource: str, dependency: str):
        self.resource = resource
        self.dependency = dependency
        super().__init__(f"Resource '{resource}' not started: dependency '{dependency}' failed")
        self.context.resource = resource


class RunCancelledError(ResourceError):
    """Recorded for resources that were still starting when the run was aborted."""

    def __init__(self, resource: str):
        self.resource = resource
        super().__init__(f"Resource '{resource}' cancelled: run aborted")
        self.context.resource = resource


# =============================================================================
# LIFECYCLE / AGGREGATE
# =============================================================================


class LifecycleError(OrchestrationError):
    """Raised on lifecycle misuse, e.g. starting a resource twice in one run."""

    def __init__(self, resource: str, message: str):
        self.resource = resource
        super().__init__(f"Resource '{resource}': {message}")
        self.context.resource = resource


class InvalidTransitionError(OrchestrationError):
    """Raised on an illegal run-state transition."""

    def __init__(self, resource: str, current: RunState, target: RunState):
        self.resource = resource
        self.current = current
        self.target = target
        super().__init__(
            f"Resource '{resource}': illegal transition {current.value} -> {target.value}"
        )
        self.context.resource = resource


class OrchestrationFailedError(OrchestrationError):
    """Aggregate error: one or more resources ended the run FAILED.

    ``failures`` maps resource name to the description of its cause.
    """

    def __init__(self, failures: dict[str, str]):
        self.failures = dict(failures)
        names = ", ".join(self.failures)
        super().__init__(f"{len(self.failures)} resource(s) failed: {names}")


__all__ = [
    "CyclicDependencyError",
    "DependencyFailedError",
    "DuplicateNameError",
    "InvalidTransitionError",
    "LifecycleError",
    "ManifestError",
    "MissingParameterError",
    "OrchestrationFailedError",
    "ReadinessTimeoutError",
    "RegistryFrozenError",
    "ResolutionError",
    "ResourceFailedError",
    "ResourceStartError",
    "RunCancelledError",
    "UnknownKindError",
    "UnknownParameterError",
    "UnknownResourceError",
]
