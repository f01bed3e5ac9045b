"""Resource graph building and startup orchestration.

Build-time (pure, no I/O)::

    registry = load_manifest("apphost.yaml")      # or ResourceRegistry() + register()
    graph = build_graph(registry)                  # validates, freezes, orders

Run-time::

    from apphost.orchestration.scheduler import Orchestrator

    result = await Orchestrator(graph, handlers, resolver, settings).run()

The run-time modules (``scheduler``, ``lifecycle``, ``readiness``) depend on
:mod:`apphost.handlers` and are imported from their own modules.
"""

from apphost.orchestration.exceptions import (
    CyclicDependencyError,
    DependencyFailedError,
    DuplicateNameError,
    InvalidTransitionError,
    LifecycleError,
    ManifestError,
    MissingParameterError,
    OrchestrationFailedError,
    ReadinessTimeoutError,
    RegistryFrozenError,
    ResolutionError,
    ResourceFailedError,
    ResourceStartError,
    RunCancelledError,
    UnknownKindError,
    UnknownParameterError,
    UnknownResourceError,
)
from apphost.orchestration.graph import DependencyGraph, DependencyGraphBuilder, build_graph
from apphost.orchestration.models import (
    DependencyEdge,
    EdgeStrength,
    Endpoint,
    Lifetime,
    Parameter,
    ParameterRef,
    ReadinessSpec,
    ReadinessStatus,
    ResolvedResource,
    Resource,
    ResourceHandle,
    ResourceValueRef,
    RunState,
    VolumeMount,
)
from apphost.orchestration.parameters import ParameterResolver
from apphost.orchestration.registry import ResourceRegistry
from apphost.orchestration.results import ResourceOutcome, RunResult, RunStatus
from apphost.orchestration.state import RunStateBoard

__all__ = [
    # Declarations
    "DependencyEdge",
    "EdgeStrength",
    "Endpoint",
    "Lifetime",
    "Parameter",
    "ParameterRef",
    "ReadinessSpec",
    "ReadinessStatus",
    "ResolvedResource",
    "Resource",
    "ResourceHandle",
    "ResourceValueRef",
    "RunState",
    "VolumeMount",
    # Build-time
    "DependencyGraph",
    "DependencyGraphBuilder",
    "ResourceRegistry",
    "build_graph",
    # Run-time
    "ParameterResolver",
    "ResourceOutcome",
    "RunResult",
    "RunStateBoard",
    "RunStatus",
    # Errors
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
