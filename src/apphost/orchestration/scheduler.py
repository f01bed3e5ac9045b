"""
Orchestrator - drives a DependencyGraph to a fully started (or settled) run.

One asyncio task per resource. Each task:

1. Waits until every WAIT_FOR dependency has settled; a dependency that
   is not READY fails the resource without starting it
2. Enters STARTING
3. Resolves configuration: parameters through the ParameterResolver (in a
   worker thread), ResourceValueRefs and referenced resources by waiting
   for the dependency to be READY and reading its published handle
4. Starts (or attaches to) the instance through the LifecycleManager
5. Waits for readiness through the ReadinessProber, then enters READY

REFERENCE_ONLY edges do not hold back step 2; only the value lookups of
step 3 suspend on them.

Failure handling (fail-fast, scoped):
    When a resource fails, every transitive dependent still PENDING,
    STARTING or READY is marked FAILED with DependencyFailedError, and the
    tasks of PENDING/STARTING dependents are cancelled (their handlers are
    asked to stop). Resources that do not depend on the failed one keep
    going.

Connection info injection:
    For each name in ``references`` the dependent receives
    ``ConnectionStrings__<name>`` (when the dependency publishes a
    connection string) and ``services__<name>__<endpoint>__0`` for every
    http(s) endpoint, unless the declaration already sets that variable.

Example:
    graph = build_graph(registry)
    orchestrator = Orchestrator(graph, default_handlers(), resolver, settings)
    result = await orchestrator.run()
    ...
    await orchestrator.shutdown()
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

from apphost.core.errors import OrchestrationError, categorize_error, describe_error
from apphost.core.logging import LogContext, get_logger
from apphost.core.settings import AppHostSettings
from apphost.handlers.base import HandlerContext, HandlerRegistry
from apphost.orchestration.exceptions import (
    DependencyFailedError,
    ResourceFailedError,
    ResourceStartError,
    RunCancelledError,
)
from apphost.orchestration.graph import DependencyGraph
from apphost.orchestration.lifecycle import LifecycleManager
from apphost.orchestration.models import (
    ConfigValue,
    ParameterRef,
    ReadinessStatus,
    ResolvedResource,
    ResolvedValue,
    Resource,
    ResourceValueRef,
    RunState,
)
from apphost.orchestration.parameters import ParameterResolver
from apphost.orchestration.readiness import ReadinessProber
from apphost.orchestration.results import ResourceOutcome, RunResult, RunStatus
from apphost.orchestration.state import RunStateBoard

logger = get_logger(__name__)

_HTTP_SCHEMES = frozenset({"http", "https"})


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class Orchestrator:
    """
    Starts every resource of a graph in dependency order.

    Args:
        graph: Validated dependency graph
        handlers: Kind handlers
        resolver: Parameter resolver for this run
        settings: Run settings (timeouts, poll intervals, run id)
        prober: Readiness prober (built from handlers and settings if None)
        lifecycle: Lifecycle manager (built from handlers if None)
        app_name: Application name (the registry name if None)
    """

    def __init__(
        self,
        graph: DependencyGraph,
        handlers: HandlerRegistry,
        resolver: ParameterResolver,
        settings: AppHostSettings | None = None,
        *,
        prober: ReadinessProber | None = None,
        lifecycle: LifecycleManager | None = None,
        app_name: str | None = None,
    ) -> None:
        self.graph = graph
        self.handlers = handlers
        self.resolver = resolver
        self.settings = settings or AppHostSettings()
        self.app_name = app_name or graph.registry.name
        self.prober = prober or ReadinessProber(handlers, self.settings)
        self.lifecycle = lifecycle or LifecycleManager(handlers)

        self._board: RunStateBoard | None = None
        self._tasks: dict[str, asyncio.Task] = {}
        self._aborted = False
        self._started_at: str | None = None
        self.result: RunResult | None = None

    @property
    def board(self) -> RunStateBoard:
        if self._board is None:
            raise OrchestrationError("Orchestrator has not been run yet")
        return self._board

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(self) -> RunResult:
        """
        Start every resource; return once all of them have settled.

        Raises:
            UnknownKindError / DeclarationError: a resource has no handler or
                its handler rejects the declaration (nothing is started)
            OrchestrationError: run() called twice
        """
        if self._board is not None:
            raise OrchestrationError("Orchestrator.run() may only be called once")
        self.handlers.validate(self.graph.resources())

        self._board = RunStateBoard(self.graph.order)
        self._started_at = datetime.now(UTC).isoformat()

        async with LogContext(run_id=self.settings.run_id, app=self.app_name):
            logger.info("scheduler.run_started", resource_count=len(self.graph))
            self._tasks = {
                name: asyncio.create_task(self._drive(name), name=f"apphost-{name}")
                for name in self.graph.order
            }
            try:
                outcomes = await asyncio.gather(*self._tasks.values(), return_exceptions=True)
            except asyncio.CancelledError:
                self._aborted = True
                self.result = self.snapshot()
                logger.warning("scheduler.run_cancelled")
                raise

            for name, outcome in zip(self._tasks, outcomes):
                if isinstance(outcome, Exception):
                    logger.error(
                        "scheduler.task_crashed",
                        resource=name,
                        error=describe_error(outcome),
                    )

            self.result = self.snapshot()
            logger.info(
                "scheduler.run_completed",
                status=self.result.status.value,
                summary=self.result.summary,
                duration_seconds=round(self.result.duration_seconds, 3),
            )
        return self.result

    async def _drive(self, name: str) -> None:
        board = self.board
        resource = self.graph.resource(name)
        try:
            for dependency in self.graph.wait_dependencies(name):
                state = await board.wait_settled(dependency)
                if state is not RunState.READY:
                    await self._fail(name, DependencyFailedError(name, dependency))
                    return
            if await board.try_transition(name, RunState.STARTING) is None:
                return
            logger.info("scheduler.resource_starting", resource=name, kind=resource.kind)

            resolved = await self._resolve(resource)
            ctx = self._context(resolved)
            handle = await self.lifecycle.start(ctx)
            board.set_handle(name, handle)
            await self.prober.wait_until_ready(ctx, handle)

            if await board.try_transition(name, RunState.READY) is None:
                return
            entry = board[name]
            logger.info(
                "scheduler.resource_ready",
                resource=name,
                attached=handle.attached,
                startup_ms=round((entry.at(RunState.READY) - entry.at(RunState.STARTING)) * 1000),
            )
        except asyncio.CancelledError:
            await board.try_transition(name, RunState.FAILED, error=RunCancelledError(name))
            await self._stop_quietly(name)
            raise
        except Exception as e:
            await self._fail(name, e)

    async def _fail(self, name: str, error: BaseException) -> None:
        board = self.board
        if await board.try_transition(name, RunState.FAILED, error=error) is None:
            return
        logger.error(
            "scheduler.resource_failed",
            resource=name,
            error_type=type(error).__name__,
            error=describe_error(error),
        )

        for dependent in self.graph.transitive_dependents(name):
            previous = await board.try_transition(
                dependent,
                RunState.FAILED,
                error=DependencyFailedError(dependent, name),
            )
            if previous is None:
                continue
            logger.warning("scheduler.dependent_failed", resource=dependent, dependency=name)
            if previous in (RunState.PENDING, RunState.STARTING):
                task = self._tasks.get(dependent)
                if task is not None and not task.done() and task is not asyncio.current_task():
                    task.cancel()

    async def _stop_quietly(self, name: str) -> None:
        try:
            await self.lifecycle.stop(name)
        except Exception as e:
            logger.error("scheduler.stop_failed", resource=name, error=describe_error(e))

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def _value(self, resource: Resource, value: ConfigValue) -> ResolvedValue:
        if isinstance(value, ParameterRef):
            parameter = self.graph.registry.get_parameter(value.name)
            return await asyncio.to_thread(self.resolver.resolve, parameter)
        if isinstance(value, ResourceValueRef):
            handle = await self.board.wait_ready(value.resource, waiter=resource.name)
            try:
                return handle.value(value.value, value.endpoint)
            except KeyError as e:
                raise ResourceStartError(
                    resource.name,
                    f"cannot resolve {value.value} of '{value.resource}': {e.args[0]}",
                ) from e
        return value

    async def _resolve(self, resource: Resource) -> ResolvedResource:
        resolved = ResolvedResource(resource)
        for key, value in resource.config.items():
            resolved.config[key] = await self._value(resource, value)
        for key, value in resource.environment.items():
            resolved.environment[key] = await self._value(resource, value)
        for value in resource.args:
            resolved.args.append(await self._value(resource, value))

        for reference in resource.references:
            handle = await self.board.wait_ready(reference, waiter=resource.name)
            if handle.connection_string is not None:
                resolved.environment.setdefault(
                    f"ConnectionStrings__{reference}", handle.connection_string
                )
            for endpoint, scheme in handle.schemes.items():
                if scheme in _HTTP_SCHEMES:
                    resolved.environment.setdefault(
                        f"services__{reference}__{endpoint}__0",
                        handle.value("url", endpoint),
                    )
        return resolved

    def _context(self, resolved: ResolvedResource) -> HandlerContext:
        board = self.board
        dependencies = {}
        for dependency in self.graph.dependencies(resolved.name):
            entry = board[dependency]
            if entry.state is RunState.READY and entry.handle is not None:
                dependencies[dependency] = entry.handle
        return HandlerContext(
            resolved=resolved,
            settings=self.settings,
            app_name=self.app_name,
            dependencies=dependencies,
        )

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def abort(self) -> None:
        """Cancel every resource still PENDING or STARTING."""
        if self._board is None:
            return
        self._aborted = True
        logger.warning("scheduler.abort_requested")
        for name in self._board.names_in(RunState.PENDING, RunState.STARTING):
            task = self._tasks.get(name)
            if task is not None and not task.done():
                task.cancel()

    async def monitor(self, stop: asyncio.Event, interval: float | None = None) -> None:
        """
        Re-probe READY resources until *stop* is set.

        A resource whose criterion reports FAILED after it became ready is
        marked FAILED and its dependents with it.
        """
        interval = interval or self.settings.max_poll_interval_seconds
        board = self.board
        while not stop.is_set():
            for name in board.names_in(RunState.READY):
                instance = self.lifecycle.instance(name)
                if instance is None or instance.handle is None:
                    continue
                status = await self.prober.probe(instance.ctx, instance.handle)
                if status is ReadinessStatus.FAILED:
                    reason = instance.handle.details.get("failure", "failed after becoming ready")
                    await self._fail(name, ResourceFailedError(name, reason))
            try:
                await asyncio.wait_for(stop.wait(), interval)
            except asyncio.TimeoutError:
                pass

    async def shutdown(self) -> dict[str, str]:
        """
        Tear down Session resources in reverse topological order.

        Persistent resources are left running. Returns stop failures by
        resource name.
        """
        if self._board is None:
            return {}
        async with LogContext(run_id=self.settings.run_id, app=self.app_name):
            failures = await self.lifecycle.teardown(self.graph.order)
            for name in self.graph.order:
                instance = self.lifecycle.instance(name)
                if instance is not None and instance.stopped and name not in failures:
                    await self._board.try_transition(name, RunState.STOPPED)
            logger.info("scheduler.shutdown_complete", stop_failures=len(failures))
        return failures

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def snapshot(self) -> RunResult:
        """Current state of every resource as a RunResult."""
        board = self.board
        result = RunResult(
            run_id=self.settings.run_id,
            app=self.app_name,
            order=list(self.graph.order),
            status=RunStatus.RUNNING,
        )
        if self._started_at:
            result.started_at = self._started_at

        for name in self.graph.order:
            resource = self.graph.resource(name)
            entry = board[name]
            outcome = ResourceOutcome(
                name=name,
                kind=resource.kind,
                lifetime=resource.lifetime,
                state=entry.state,
                attached=entry.attached,
                starting_at=_iso(entry.wallclock.get(RunState.STARTING)),
                ready_at=_iso(entry.wallclock.get(RunState.READY)),
                failed_at=_iso(entry.wallclock.get(RunState.FAILED)),
                timeline={
                    state.value: round(at - board.created_at, 6)
                    for state, at in entry.timestamps.items()
                },
            )
            if entry.error is not None:
                outcome.error = describe_error(entry.error)
                outcome.error_type = type(entry.error).__name__
                outcome.category = categorize_error(entry.error).value
            if entry.handle is not None:
                outcome.instance_id = entry.handle.instance_id
                outcome.endpoints = {
                    endpoint: str(entry.handle.value("url", endpoint))
                    for endpoint in entry.handle.ports
                }
            result.resources.append(outcome)

        result.mark_complete(cancelled=self._aborted)
        return result


__all__ = ["Orchestrator"]
