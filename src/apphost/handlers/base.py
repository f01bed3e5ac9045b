"""Resource handler contract and registry.

A handler knows how to provision one kind of resource (a container, a
host process, a database inside a server). The orchestrator never looks
inside a handler: it calls ``start``/``stop``/``check_ready`` with a
:class:`HandlerContext` and gets :class:`ResourceHandle` objects back.

Handlers are async. Anything blocking (docker CLI, subprocess) goes
through ``asyncio.to_thread`` inside the handler; blocking work that
creates an instance goes through :func:`run_to_completion` so that a
cancelled start never leaves the instance half-created behind the
caller's back.

Tags:
    handlers, plugins, lifecycle, apphost
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, TypeVar

from apphost.core.errors import describe_error
from apphost.core.logging import get_logger
from apphost.core.settings import AppHostSettings
from apphost.orchestration.exceptions import UnknownKindError
from apphost.orchestration.models import (
    ReadinessStatus,
    ResolvedResource,
    Resource,
    ResourceHandle,
)

logger = get_logger(__name__)

T = TypeVar("T")


async def run_to_completion(func: Callable[..., T], /, *args: Any) -> T:
    """Run blocking *func* in a worker thread, surviving cancellation.

    Cancelling the caller does not stop the thread. The cancellation is
    held back until the thread has finished, so whatever it created exists
    (and can be stopped by name) by the time the caller sees
    ``CancelledError``.
    """
    future = asyncio.ensure_future(asyncio.to_thread(func, *args))
    try:
        return await asyncio.shield(future)
    except asyncio.CancelledError:
        await asyncio.wait([future])
        if not future.cancelled() and future.exception() is not None:
            logger.warning(
                "handler.cancelled_work_failed",
                error=describe_error(future.exception()),
            )
        raise


@dataclass
class HandlerContext:
    """Everything a handler needs to act on one resource.

    Attributes:
        resolved: The resource with every reference replaced by a value
        settings: Run settings (timeouts, label prefix, network)
        app_name: Application name, used to derive container names
        dependencies: Handles of dependencies that were ready when the
            resource started (keyed by resource name)
    """

    resolved: ResolvedResource
    settings: AppHostSettings
    app_name: str = "apphost"
    dependencies: Mapping[str, ResourceHandle] = field(default_factory=dict)

    @property
    def resource(self) -> Resource:
        return self.resolved.resource

    @property
    def name(self) -> str:
        return self.resolved.resource.name

    @property
    def run_id(self) -> str:
        return self.settings.run_id


class ResourceHandler(ABC):
    """Base class for resource-kind handlers."""

    kind: str = ""

    def validate(self, resource: Resource) -> None:
        """Build-time check of a declaration; raise DeclarationError to reject it."""

    @abstractmethod
    async def start(self, ctx: HandlerContext) -> ResourceHandle:
        """Provision the resource and return its handle."""

    @abstractmethod
    async def stop(self, ctx: HandlerContext, handle: ResourceHandle | None) -> None:
        """Release the resource.

        ``handle`` is None when a start was cancelled before it returned;
        handlers that can find their instance by name should still clean up.
        """

    async def check_ready(self, ctx: HandlerContext, handle: ResourceHandle) -> ReadinessStatus:
        """The kind's own readiness check. Default: ready as soon as started."""
        return ReadinessStatus.READY

    async def find_existing(self, ctx: HandlerContext) -> ResourceHandle | None:
        """Return a handle to an already-running persistent instance, if any."""
        return None

    async def logs(self, ctx: HandlerContext, handle: ResourceHandle) -> str:
        """Recent output of the resource, for log-pattern readiness and reports."""
        return ""


class HandlerRegistry:
    """Maps kind tags to handler instances.

    Example:
        handlers = HandlerRegistry()
        handlers.register("postgres", ContainerHandler(KINDS["postgres"]))
        handlers.get("postgres")
    """

    def __init__(self, handlers: Mapping[str, ResourceHandler] | None = None) -> None:
        self._handlers: dict[str, ResourceHandler] = {}
        for kind, handler in (handlers or {}).items():
            self.register(kind, handler)

    def register(self, kind: str, handler: ResourceHandler) -> None:
        self._handlers[kind] = handler

    def get(self, kind: str, resource: str | None = None) -> ResourceHandler:
        try:
            return self._handlers[kind]
        except KeyError:
            raise UnknownKindError(kind, resource=resource, available=self.kinds()) from None

    def for_resource(self, resource: Resource) -> ResourceHandler:
        return self.get(resource.kind, resource=resource.name)

    def kinds(self) -> list[str]:
        return sorted(self._handlers)

    def validate(self, resources: list[Resource]) -> None:
        """Check every resource has a handler that accepts its declaration."""
        for resource in resources:
            self.for_resource(resource).validate(resource)

    def __contains__(self, kind: object) -> bool:
        return kind in self._handlers


__all__ = ["HandlerContext", "HandlerRegistry", "ResourceHandler", "run_to_completion"]
