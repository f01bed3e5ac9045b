"""
Orchestration models - declarations and runtime records.

Declarations (Resource, Parameter, DependencyEdge, ...) are frozen
dataclasses built once from the manifest, before any graph logic runs.
Collections are normalised to tuples and read-only mappings in
``__post_init__`` so nothing mutates a declaration during traversal.

Runtime records (ResourceHandle, ResolvedResource) are produced during a
run by handlers and the scheduler.

Design Principles:
- Immutable declarations (frozen dataclasses, no hidden mutation)
- No business logic (that lives in graph/scheduler/lifecycle)
- Enum values are the lowercase strings used in manifests
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Union

from apphost.core.secrets import SecretValue


class Lifetime(str, Enum):
    """Whether a resource's instance outlives the run."""

    SESSION = "session"          # Torn down at the end of the run (default)
    PERSISTENT = "persistent"    # Left running; re-attached by the next run


class EdgeStrength(str, Enum):
    """How strongly a dependent is bound to a dependency."""

    REFERENCE_ONLY = "reference_only"  # Consumes values; may start concurrently
    WAIT_FOR = "wait_for"              # Must not start before dependency is ready

    @property
    def rank(self) -> int:
        return 1 if self is EdgeStrength.WAIT_FOR else 0


class RunState(str, Enum):
    """Per-resource run state driven by the scheduler."""

    PENDING = "pending"
    STARTING = "starting"
    READY = "ready"
    FAILED = "failed"
    STOPPED = "stopped"

    @property
    def is_settled(self) -> bool:
        """Ready or beyond: dependents waiting on this resource may proceed."""
        return self in (RunState.READY, RunState.FAILED, RunState.STOPPED)


class ReadinessStatus(str, Enum):
    """Outcome of a single readiness probe."""

    READY = "ready"
    NOT_READY_YET = "not_ready_yet"
    FAILED = "failed"


# =============================================================================
# Value references
# =============================================================================


@dataclass(frozen=True)
class ParameterRef:
    """A configuration value bound to a declared parameter."""

    name: str


RESOURCE_VALUES = frozenset({"connection_string", "host", "port", "url", "target_port"})


@dataclass(frozen=True)
class ResourceValueRef:
    """A configuration value published by another resource once it is ready.

    Attributes:
        resource: Name of the resource that publishes the value
        value: One of ``connection_string``, ``host``, ``port``, ``url``,
            ``target_port``
        endpoint: Endpoint name for port/url values (first endpoint if None)
    """

    resource: str
    value: str = "connection_string"
    endpoint: str | None = None

    def __post_init__(self) -> None:
        if self.value not in RESOURCE_VALUES:
            raise ValueError(
                f"Unknown resource value '{self.value}'. "
                f"Expected one of: {', '.join(sorted(RESOURCE_VALUES))}"
            )


ConfigValue = Union[str, int, float, bool, None, ParameterRef, ResourceValueRef]


# =============================================================================
# Declarations
# =============================================================================


@dataclass(frozen=True)
class VolumeMount:
    """A volume attached to a resource.

    ``named`` distinguishes a named volume (``source`` is a volume name)
    from a bind mount (``source`` is a host path).
    """

    source: str
    target: str
    read_only: bool = False
    named: bool = True


@dataclass(frozen=True)
class Endpoint:
    """A network endpoint exposed by a resource.

    Attributes:
        name: Logical name (e.g. ``http``, ``management``)
        target_port: Port inside the container / process
        port: Host port; None lets the handler pick one
        scheme: URL scheme used when the endpoint is referenced as ``url``
    """

    name: str
    target_port: int
    port: int | None = None
    scheme: str = "tcp"


@dataclass(frozen=True)
class ReadinessSpec:
    """Overrides the kind's readiness criterion for one resource.

    ``type`` is one of ``handler`` (the kind's own check), ``http``,
    ``log`` or ``delay``.
    """

    type: str = "handler"
    timeout_seconds: float | None = None
    path: str = "/"
    endpoint: str | None = None
    pattern: str | None = None
    delay_seconds: float = 0.0


@dataclass(frozen=True)
class Parameter:
    """A named configuration value, plain or secret.

    The resolved value never lives here; see ParameterResolver.
    """

    name: str
    secret: bool = False
    default: str | None = None

    def __repr__(self) -> str:
        default = "[REDACTED]" if self.secret and self.default is not None else self.default
        return f"Parameter(name={self.name!r}, secret={self.secret}, default={default!r})"


def _freeze_mapping(value: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(value or {}))


@dataclass(frozen=True)
class Resource:
    """A declared unit of infrastructure or process.

    Attributes:
        name: Unique identity
        kind: Handler tag (``postgres``, ``container``, ``process`` ...)
        image: Container image, when the kind runs one
        command: Command line for process kinds / container entrypoint override
        args: Extra arguments; items may be references
        config: Kind-specific options; values may be references
        environment: Environment variables; values may be references
        wait_for: Names this resource must not start before
        references: Names whose connection info this resource consumes
        parent: Owning resource (e.g. a database inside a server)
        lifetime: Session or Persistent
        volumes: Volume mounts
        endpoints: Exposed endpoints
        readiness: Optional readiness override
    """

    name: str
    kind: str
    image: str | None = None
    command: tuple[str, ...] = ()
    args: tuple[ConfigValue, ...] = ()
    config: Mapping[str, ConfigValue] = field(default_factory=dict)
    environment: Mapping[str, ConfigValue] = field(default_factory=dict)
    wait_for: tuple[str, ...] = ()
    references: tuple[str, ...] = ()
    parent: str | None = None
    lifetime: Lifetime = Lifetime.SESSION
    volumes: tuple[VolumeMount, ...] = ()
    endpoints: tuple[Endpoint, ...] = ()
    readiness: ReadinessSpec | None = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Resource name must not be empty")
        object.__setattr__(self, "command", tuple(self.command))
        object.__setattr__(self, "args", tuple(self.args))
        object.__setattr__(self, "wait_for", tuple(self.wait_for))
        object.__setattr__(self, "references", tuple(self.references))
        object.__setattr__(self, "volumes", tuple(self.volumes))
        object.__setattr__(self, "endpoints", tuple(self.endpoints))
        object.__setattr__(self, "config", _freeze_mapping(self.config))
        object.__setattr__(self, "environment", _freeze_mapping(self.environment))
        object.__setattr__(self, "lifetime", Lifetime(self.lifetime))

    def _values(self) -> Iterator[ConfigValue]:
        yield from self.config.values()
        yield from self.environment.values()
        yield from self.args

    def value_refs(self) -> list[ResourceValueRef]:
        """Every ResourceValueRef used in config, environment or args."""
        return [v for v in self._values() if isinstance(v, ResourceValueRef)]

    def parameter_refs(self) -> list[ParameterRef]:
        """Every ParameterRef used in config, environment or args."""
        return [v for v in self._values() if isinstance(v, ParameterRef)]

    def endpoint(self, name: str | None = None) -> Endpoint | None:
        """Endpoint by name, or the first endpoint when name is None."""
        if name is None:
            return self.endpoints[0] if self.endpoints else None
        for ep in self.endpoints:
            if ep.name == name:
                return ep
        return None

    @property
    def is_persistent(self) -> bool:
        return self.lifetime is Lifetime.PERSISTENT


@dataclass(frozen=True)
class DependencyEdge:
    """``dependent`` relies on ``dependency`` with the given strength."""

    dependent: str
    dependency: str
    strength: EdgeStrength

    def __str__(self) -> str:
        arrow = "=>" if self.strength is EdgeStrength.WAIT_FOR else "->"
        return f"{self.dependent} {arrow} {self.dependency}"


# =============================================================================
# Runtime records
# =============================================================================


ResolvedValue = Union[str, int, float, bool, None, SecretValue]


@dataclass
class ResolvedResource:
    """A resource with every reference replaced by its concrete value.

    Secret parameter values stay wrapped in SecretValue; handlers unwrap
    them with :func:`apphost.core.secrets.reveal` at the last moment.
    """

    resource: Resource
    config: dict[str, ResolvedValue] = field(default_factory=dict)
    environment: dict[str, ResolvedValue] = field(default_factory=dict)
    args: list[ResolvedValue] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.resource.name


@dataclass
class ResourceHandle:
    """Runtime information about a started (or attached) resource.

    Returned by handlers; the scheduler publishes it so dependents can
    resolve ResourceValueRefs against it.
    """

    resource: str
    instance_id: str = ""
    host: str = "localhost"
    ports: dict[str, int] = field(default_factory=dict)
    target_ports: dict[str, int] = field(default_factory=dict)
    schemes: dict[str, str] = field(default_factory=dict)
    connection_string: str | SecretValue | None = None
    attached: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    def _endpoint_name(self, endpoint: str | None) -> str:
        if endpoint is not None:
            if endpoint not in self.ports and endpoint not in self.target_ports:
                raise KeyError(f"Resource '{self.resource}' has no endpoint '{endpoint}'")
            return endpoint
        names = list(self.ports) or list(self.target_ports)
        if not names:
            raise KeyError(f"Resource '{self.resource}' exposes no endpoints")
        return names[0]

    def value(self, name: str, endpoint: str | None = None) -> ResolvedValue:
        """Resolve one published value (see ResourceValueRef)."""
        if name == "connection_string":
            if self.connection_string is None:
                raise KeyError(f"Resource '{self.resource}' publishes no connection string")
            return self.connection_string
        if name == "host":
            return self.host
        ep = self._endpoint_name(endpoint)
        if name == "port":
            return self.ports.get(ep, self.target_ports.get(ep))
        if name == "target_port":
            return self.target_ports.get(ep, self.ports.get(ep))
        if name == "url":
            scheme = self.schemes.get(ep, "http")
            port = self.ports.get(ep, self.target_ports.get(ep))
            return f"{scheme}://{self.host}:{port}"
        raise KeyError(f"Unknown resource value '{name}'")


__all__ = [
    "ConfigValue",
    "DependencyEdge",
    "EdgeStrength",
    "Endpoint",
    "Lifetime",
    "Parameter",
    "ParameterRef",
    "RESOURCE_VALUES",
    "ReadinessSpec",
    "ReadinessStatus",
    "ResolvedResource",
    "ResolvedValue",
    "Resource",
    "ResourceHandle",
    "ResourceValueRef",
    "RunState",
    "VolumeMount",
]
