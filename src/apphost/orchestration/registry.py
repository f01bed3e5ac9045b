"""Resource registry - the in-memory catalog of declarations.

Populated once from the manifest (or programmatically), then frozen by
the graph builder. After that it is read-only and safe to read from any
task without locking.

Resources and parameters share one namespace: a parameter cannot have
the same name as a resource.

Example::

    registry = ResourceRegistry()
    registry.add_parameter(Parameter("password", secret=True))
    registry.register(Resource("postgres", kind="postgres"))
    registry.get("postgres").kind   # "postgres"
"""

from __future__ import annotations

from collections.abc import Iterable

from apphost.core.logging import get_logger
from apphost.orchestration.exceptions import (
    DuplicateNameError,
    RegistryFrozenError,
    UnknownParameterError,
    UnknownResourceError,
)
from apphost.orchestration.models import Parameter, Resource

logger = get_logger(__name__)


class ResourceRegistry:
    """Catalog of resources and parameters keyed by name, in declaration order."""

    def __init__(
        self,
        resources: Iterable[Resource] = (),
        parameters: Iterable[Parameter] = (),
        name: str = "apphost",
    ) -> None:
        self.name = name
        self._resources: dict[str, Resource] = {}
        self._parameters: dict[str, Parameter] = {}
        self._frozen = False
        for parameter in parameters:
            self.add_parameter(parameter)
        for resource in resources:
            self.register(resource)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def _check_name(self, name: str) -> None:
        if self._frozen:
            raise RegistryFrozenError(name)
        if name in self._resources or name in self._parameters:
            raise DuplicateNameError(name)

    def register(self, resource: Resource) -> Resource:
        """Add a resource; fails on a duplicate name or a frozen registry."""
        self._check_name(resource.name)
        self._resources[resource.name] = resource
        logger.debug("registry.resource_registered", resource=resource.name, kind=resource.kind)
        return resource

    def add_parameter(self, parameter: Parameter) -> Parameter:
        """Add a parameter; fails on a duplicate name or a frozen registry."""
        self._check_name(parameter.name)
        self._parameters[parameter.name] = parameter
        logger.debug(
            "registry.parameter_registered",
            parameter=parameter.name,
            secret=parameter.secret,
        )
        return parameter

    def freeze(self) -> None:
        """Make the registry read-only. Idempotent."""
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, name: str) -> Resource:
        """Resource by name; UnknownResourceError if absent."""
        try:
            return self._resources[name]
        except KeyError:
            raise UnknownResourceError(name) from None

    def get_parameter(self, name: str) -> Parameter:
        """Parameter by name; UnknownParameterError if absent."""
        try:
            return self._parameters[name]
        except KeyError:
            raise UnknownParameterError(name) from None

    def resources(self) -> list[Resource]:
        """All resources in declaration order."""
        return list(self._resources.values())

    def parameters(self) -> list[Parameter]:
        """All parameters in declaration order."""
        return list(self._parameters.values())

    def names(self) -> list[str]:
        return list(self._resources)

    def __contains__(self, name: object) -> bool:
        return name in self._resources

    def __len__(self) -> int:
        return len(self._resources)

    def __iter__(self):
        return iter(self._resources.values())


__all__ = ["ResourceRegistry"]
