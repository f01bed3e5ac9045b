"""Lifecycle manager - start, attach, stop and tear down resource instances.

The manager owns the instances of one run: which resources were started
(or attached), with which context and handle. Run states themselves live
on the :class:`~apphost.orchestration.state.RunStateBoard`, driven by the
scheduler.

Rules:
    - ``start`` is called at most once per resource per run
    - Persistent resources are looked up first; an existing instance is
      attached and the handler's ``start`` is not called
    - ``stop`` releases Session resources; Persistent ones are left running
    - ``teardown`` stops started Session resources in reverse topological
      order and reports (does not raise) individual stop failures
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass

from apphost.core.errors import AppHostError, describe_error
from apphost.core.logging import get_logger
from apphost.handlers.base import HandlerContext, HandlerRegistry
from apphost.orchestration.exceptions import LifecycleError, ResourceStartError
from apphost.orchestration.models import ResourceHandle

logger = get_logger(__name__)


@dataclass
class Instance:
    """A started or attached resource instance."""

    ctx: HandlerContext
    handle: ResourceHandle | None = None
    stopped: bool = False

    @property
    def attached(self) -> bool:
        return bool(self.handle and self.handle.attached)


class LifecycleManager:
    """
    Starts and stops resources through their kind handlers.

    Example:
        lifecycle = LifecycleManager(handlers)
        handle = await lifecycle.start(ctx)
        ...
        await lifecycle.teardown(graph.order)
    """

    def __init__(self, handlers: HandlerRegistry) -> None:
        self._handlers = handlers
        self._instances: dict[str, Instance] = {}

    def instance(self, name: str) -> Instance | None:
        return self._instances.get(name)

    def started(self) -> list[str]:
        return list(self._instances)

    async def start(self, ctx: HandlerContext) -> ResourceHandle:
        """
        Start (or attach to) one resource.

        Raises:
            LifecycleError: start already called for this resource in this run
            ResourceStartError: the handler failed
        """
        name = ctx.name
        if name in self._instances:
            raise LifecycleError(name, "start called more than once in this run")
        handler = self._handlers.for_resource(ctx.resource)
        instance = self._instances[name] = Instance(ctx)

        try:
            if ctx.resource.is_persistent:
                existing = await handler.find_existing(ctx)
                if existing is not None:
                    existing.attached = True
                    instance.handle = existing
                    logger.info("lifecycle.attached", resource=name, instance=existing.instance_id)
                    return existing

            logger.info("lifecycle.starting", resource=name, kind=ctx.resource.kind)
            handle = await handler.start(ctx)
        except asyncio.CancelledError:
            logger.warning("lifecycle.start_cancelled", resource=name)
            if not ctx.resource.is_persistent:
                try:
                    await self._release(instance)
                except Exception as e:
                    logger.error("lifecycle.stop_failed", resource=name, error=describe_error(e))
            raise
        except AppHostError:
            raise
        except Exception as e:
            raise ResourceStartError(name, describe_error(e), cause=e) from e

        instance.handle = handle
        logger.info("lifecycle.started", resource=name, instance=handle.instance_id)
        return handle

    async def stop(self, name: str) -> bool:
        """
        Stop a Session resource started in this run.

        Returns True when the handler was asked to stop it; False for
        resources never started, already stopped, or Persistent.
        """
        instance = self._instances.get(name)
        if instance is None or instance.stopped:
            return False
        if instance.ctx.resource.is_persistent:
            logger.debug("lifecycle.left_running", resource=name)
            return False
        await self._release(instance)
        return True

    async def _release(self, instance: Instance) -> None:
        if instance.stopped:
            return
        instance.stopped = True
        handler = self._handlers.for_resource(instance.ctx.resource)
        await handler.stop(instance.ctx, instance.handle)
        logger.info("lifecycle.stopped", resource=instance.ctx.name)

    async def teardown(self, order: Iterable[str]) -> dict[str, str]:
        """
        Stop every started Session resource in reverse *order*.

        Returns a mapping of resource name to error description for stops
        that failed; the remaining resources are still stopped.
        """
        failures: dict[str, str] = {}
        for name in reversed(list(order)):
            try:
                await self.stop(name)
            except Exception as e:
                failures[name] = describe_error(e)
                logger.error("lifecycle.stop_failed", resource=name, error=describe_error(e))
        return failures


__all__ = ["Instance", "LifecycleManager"]
