"""Readiness prober - decides when a started resource is usable.

A criterion answers one probe with READY, NOT_READY_YET or FAILED. The
prober repeats probes with exponential backoff (``poll_interval`` doubling
up to ``max_poll_interval``) until READY, the criterion reports FAILED, or
the per-resource timeout elapses.

Criteria:
    - HandlerCriterion: the kind's own ``check_ready`` (default)
    - HttpCriterion: GET ``<endpoint url><path>`` expecting 2xx
    - LogPatternCriterion: regex search over the handler's recent logs
    - SettleDelayCriterion: a fixed delay after the first probe

Every criterion other than HandlerCriterion is gated on the handler: a
handler FAILED is FAILED, a handler NOT_READY_YET is NOT_READY_YET, and
only a handler READY lets the criterion's own test decide.

A criterion that raises counts as NOT_READY_YET for that probe.
"""

from __future__ import annotations

import asyncio
import re
import time
from abc import ABC, abstractmethod

from apphost.core.logging import get_logger
from apphost.core.settings import AppHostSettings
from apphost.handlers.base import HandlerContext, HandlerRegistry, ResourceHandler
from apphost.handlers.health import check_http
from apphost.orchestration.exceptions import ReadinessTimeoutError, ResourceFailedError
from apphost.orchestration.models import ReadinessSpec, ReadinessStatus, Resource, ResourceHandle

logger = get_logger(__name__)


# =============================================================================
# Criteria
# =============================================================================


class ReadinessCriterion(ABC):
    """One way of deciding readiness."""

    name: str = "criterion"

    @abstractmethod
    async def check(self, ctx: HandlerContext, handle: ResourceHandle) -> ReadinessStatus:
        """Probe once."""


class HandlerCriterion(ReadinessCriterion):
    """Delegates to the kind handler's ``check_ready``."""

    name = "handler"

    def __init__(self, handler: ResourceHandler) -> None:
        self.handler = handler

    async def check(self, ctx: HandlerContext, handle: ResourceHandle) -> ReadinessStatus:
        return await self.handler.check_ready(ctx, handle)


class _GatedCriterion(HandlerCriterion):
    async def check(self, ctx: HandlerContext, handle: ResourceHandle) -> ReadinessStatus:
        status = await self.handler.check_ready(ctx, handle)
        if status is not ReadinessStatus.READY:
            return status
        return await self.test(ctx, handle)

    @abstractmethod
    async def test(self, ctx: HandlerContext, handle: ResourceHandle) -> ReadinessStatus:
        """The criterion's own test, run once the handler reports READY."""


class HttpCriterion(_GatedCriterion):
    """READY once ``GET <url><path>`` answers 2xx."""

    name = "http"

    def __init__(self, handler: ResourceHandler, path: str = "/", endpoint: str | None = None) -> None:
        super().__init__(handler)
        self.path = path if path.startswith("/") else f"/{path}"
        self.endpoint = endpoint

    async def test(self, ctx: HandlerContext, handle: ResourceHandle) -> ReadinessStatus:
        url = f"{handle.value('url', self.endpoint)}{self.path}"
        await check_http(url)
        return ReadinessStatus.READY


class LogPatternCriterion(_GatedCriterion):
    """READY once the handler's logs contain a match for *pattern*."""

    name = "log"

    def __init__(self, handler: ResourceHandler, pattern: str) -> None:
        super().__init__(handler)
        self.pattern = re.compile(pattern, re.MULTILINE)

    async def test(self, ctx: HandlerContext, handle: ResourceHandle) -> ReadinessStatus:
        logs = await self.handler.logs(ctx, handle)
        if self.pattern.search(logs):
            return ReadinessStatus.READY
        return ReadinessStatus.NOT_READY_YET


class SettleDelayCriterion(_GatedCriterion):
    """READY once *delay* seconds have passed since the first probe."""

    name = "delay"

    def __init__(self, handler: ResourceHandler, delay: float, clock=time.monotonic) -> None:
        super().__init__(handler)
        self.delay = delay
        self._clock = clock
        self._first_seen: dict[str, float] = {}

    async def test(self, ctx: HandlerContext, handle: ResourceHandle) -> ReadinessStatus:
        first = self._first_seen.setdefault(ctx.name, self._clock())
        if self._clock() - first >= self.delay:
            return ReadinessStatus.READY
        return ReadinessStatus.NOT_READY_YET


def criterion_for(resource: Resource, handler: ResourceHandler) -> ReadinessCriterion:
    """Build the criterion a resource's readiness declaration asks for."""
    spec = resource.readiness or ReadinessSpec()
    if spec.type == "http":
        return HttpCriterion(handler, spec.path, spec.endpoint)
    if spec.type == "log":
        return LogPatternCriterion(handler, spec.pattern or "")
    if spec.type == "delay":
        return SettleDelayCriterion(handler, spec.delay_seconds)
    return HandlerCriterion(handler)


# =============================================================================
# Prober
# =============================================================================


class ReadinessProber:
    """
    Polls readiness criteria.

    Args:
        handlers: Handler registry (criteria delegate to the kind handler)
        settings: Default timeout and poll intervals
        sleep: Awaitable sleep, replaceable in tests

    Example:
        prober = ReadinessProber(handlers, settings)
        await prober.wait_until_ready(ctx, handle)
    """

    def __init__(
        self,
        handlers: HandlerRegistry,
        settings: AppHostSettings | None = None,
        sleep=asyncio.sleep,
    ) -> None:
        self._handlers = handlers
        self._settings = settings or AppHostSettings()
        self._sleep = sleep
        self._criteria: dict[str, ReadinessCriterion] = {}

    def criterion(self, resource: Resource) -> ReadinessCriterion:
        existing = self._criteria.get(resource.name)
        if existing is None:
            handler = self._handlers.for_resource(resource)
            existing = self._criteria[resource.name] = criterion_for(resource, handler)
        return existing

    def timeout_for(self, resource: Resource) -> float:
        if resource.readiness and resource.readiness.timeout_seconds:
            return resource.readiness.timeout_seconds
        return self._settings.readiness_timeout_seconds

    async def probe(
        self,
        ctx: HandlerContext,
        handle: ResourceHandle,
        timeout: float | None = None,
    ) -> ReadinessStatus:
        """Apply the resource's criterion once. Exceptions count as NOT_READY_YET."""
        criterion = self.criterion(ctx.resource)
        try:
            return await asyncio.wait_for(criterion.check(ctx, handle), timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug(
                "readiness.probe_error",
                resource=ctx.name,
                criterion=criterion.name,
                error_type=type(e).__name__,
            )
            return ReadinessStatus.NOT_READY_YET

    async def wait_until_ready(self, ctx: HandlerContext, handle: ResourceHandle) -> None:
        """
        Probe until READY.

        Raises:
            ResourceFailedError: the criterion reported FAILED
            ReadinessTimeoutError: not READY within the resource's timeout
        """
        loop = asyncio.get_running_loop()
        timeout = self.timeout_for(ctx.resource)
        deadline = loop.time() + timeout
        delay = self._settings.poll_interval_seconds
        max_delay = self._settings.max_poll_interval_seconds
        attempts = 0
        status = ReadinessStatus.NOT_READY_YET

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            attempts += 1
            status = await self.probe(ctx, handle, timeout=remaining)
            if status is ReadinessStatus.READY:
                logger.debug("readiness.ready", resource=ctx.name, attempts=attempts)
                return
            if status is ReadinessStatus.FAILED:
                reason = handle.details.get("failure", "readiness check reported failure")
                raise ResourceFailedError(ctx.name, reason)
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await self._sleep(min(delay, remaining))
            delay = min(delay * 2, max_delay)

        logger.warning(
            "readiness.timeout",
            resource=ctx.name,
            timeout_seconds=timeout,
            attempts=attempts,
            last_status=status.value,
        )
        raise ReadinessTimeoutError(ctx.name, timeout, last_status=status.value)


__all__ = [
    "HandlerCriterion",
    "HttpCriterion",
    "LogPatternCriterion",
    "ReadinessCriterion",
    "ReadinessProber",
    "SettleDelayCriterion",
    "criterion_for",
]
