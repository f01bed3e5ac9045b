"""Container handler - runs resources as docker containers.

Used for every container kind (postgres, rabbitmq, qdrant, pgadmin and
the generic ``container`` kind); the :class:`KindSpec` supplies image,
endpoints, environment template, health command and connection string.

Naming:
    - Session containers: ``<app>-<resource>-<run_id[:8]>``, removed at teardown
    - Persistent containers: ``<app>-<resource>``, found again by the next run

Labels:
    Every container gets ``<prefix>.app``, ``<prefix>.resource``,
    ``<prefix>.kind``, ``<prefix>.lifetime`` and ``<prefix>.config_hash``.
    Session containers also get ``<prefix>.run_id``.

Persistent reuse:
    ``find_existing`` looks the container up by name. A running container
    whose ``config_hash`` label matches the current declaration is attached
    as-is; a stopped one is started again. A hash mismatch means the
    declaration drifted (new image, env, ports, volumes): the old container
    is removed and a fresh one started.

Readiness:
    ``check_ready`` reads the docker health status when the container has
    a healthcheck, then GETs the kind's ``health_path`` when it has one.
    An exited or missing container is FAILED.

Tags:
    container, docker, lifecycle, health, persistent, labels
"""

from __future__ import annotations

import asyncio
import hashlib
import json
from dataclasses import dataclass, field
from pathlib import Path

from apphost.core.errors import DeclarationError
from apphost.core.logging import get_logger
from apphost.core.secrets import SecretValue, reveal
from apphost.handlers.base import HandlerContext, ResourceHandler, run_to_completion
from apphost.handlers.docker import DockerCli
from apphost.handlers.health import check_http
from apphost.handlers.kinds import CONTAINER, KindSpec, render
from apphost.orchestration.models import (
    Endpoint,
    ReadinessStatus,
    Resource,
    ResourceHandle,
    VolumeMount,
)

logger = get_logger(__name__)

_FAILED_STATES = frozenset({"exited", "dead", "removing", "not_found"})


def env_string(value: object) -> str:
    """Environment rendering of a resolved value (bools lowercase)."""
    if isinstance(value, bool):
        return "true" if value else "false"
    return reveal(value)


@dataclass
class ContainerRun:
    """Everything needed for one ``docker run``, derived from a context."""

    name: str
    image: str
    options: list[str] = field(default_factory=list)
    command: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    endpoints: tuple[Endpoint, ...] = ()
    labels: dict[str, str] = field(default_factory=dict)
    has_healthcheck: bool = False
    config_hash: str = ""

    def docker_args(self) -> list[str]:
        args = ["--name", self.name]
        for key, value in self.labels.items():
            args.extend(["--label", f"{key}={value}"])
        return [*args, *self.options, self.image, *self.command]


class ContainerHandler(ResourceHandler):
    """Handler for container kinds.

    Args:
        spec: Kind preset (the generic ``container`` kind by default)
        docker: DockerCli to use; created on first use so that planning
            and tests never need a docker binary
    """

    def __init__(self, spec: KindSpec = CONTAINER, docker: DockerCli | None = None) -> None:
        self.spec = spec
        self.kind = spec.name
        self._docker = docker

    @property
    def docker(self) -> DockerCli:
        if self._docker is None:
            self._docker = DockerCli()
        return self._docker

    # ------------------------------------------------------------------
    # Declaration
    # ------------------------------------------------------------------

    def validate(self, resource: Resource) -> None:
        if not (resource.image or self.spec.image):
            raise DeclarationError(
                f"Resource '{resource.name}' of kind '{resource.kind}' needs an image"
            ).with_context(resource=resource.name, kind=resource.kind)
        for volume in resource.volumes:
            if not volume.target and not self.spec.data_path:
                raise DeclarationError(
                    f"Resource '{resource.name}': volume '{volume.source}' needs a target path"
                ).with_context(resource=resource.name, kind=resource.kind)

    def container_name(self, ctx: HandlerContext) -> str:
        base = f"{ctx.app_name}-{ctx.name}"
        if ctx.resource.is_persistent:
            return base
        return f"{base}-{ctx.run_id[:8]}"

    def build_run(self, ctx: HandlerContext) -> ContainerRun:
        """Translate the resolved resource into docker run arguments."""
        resource = ctx.resource
        resolved = ctx.resolved
        prefix = ctx.settings.label_prefix
        values = self.spec.config_values(resolved.config)
        run = ContainerRun(
            name=self.container_name(ctx),
            image=resource.image or self.spec.image or "",
            endpoints=self.spec.merge_endpoints(resource.endpoints),
        )

        for key, template in self.spec.env.items():
            rendered = env_string(render(template, values))
            if rendered:
                run.env[key] = rendered
        for key, value in resolved.environment.items():
            run.env[key] = env_string(value)

        if ctx.settings.network:
            run.options.extend(["--network", ctx.settings.network])
        for endpoint in run.endpoints:
            if endpoint.port is not None:
                run.options.extend(["-p", f"{endpoint.port}:{endpoint.target_port}"])
            else:
                run.options.extend(["-p", str(endpoint.target_port)])
        for volume in resource.volumes:
            run.options.extend(["-v", self._volume_spec(volume)])

        if self.spec.healthcheck_cmd:
            health_cmd = " ".join(
                env_string(render(part, values)) for part in self.spec.healthcheck_cmd
            )
            run.has_healthcheck = True
            run.options.extend([
                "--health-cmd", health_cmd,
                "--health-interval", "5s",
                "--health-timeout", "10s",
                "--health-retries", "10",
                "--health-start-period", "10s",
            ])

        if resource.command:
            run.options.extend(["--entrypoint", resource.command[0]])
            run.command.extend(resource.command[1:])
        run.command.extend(env_string(arg) for arg in resolved.args)

        run.config_hash = self._config_hash(run)
        run.labels = {
            f"{prefix}.app": ctx.app_name,
            f"{prefix}.resource": ctx.name,
            f"{prefix}.kind": resource.kind,
            f"{prefix}.lifetime": resource.lifetime.value,
            f"{prefix}.config_hash": run.config_hash,
        }
        if not resource.is_persistent:
            run.labels[f"{prefix}.run_id"] = ctx.run_id
        return run

    def _volume_spec(self, volume: VolumeMount) -> str:
        target = volume.target or self.spec.data_path
        source = volume.source if volume.named else str(Path(volume.source).expanduser().resolve())
        spec = f"{source}:{target}"
        return f"{spec}:ro" if volume.read_only else spec

    @staticmethod
    def _config_hash(run: ContainerRun) -> str:
        payload = json.dumps(
            {
                "image": run.image,
                "options": run.options,
                "command": run.command,
                "env": run.env,
            },
            sort_keys=True,
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, ctx: HandlerContext) -> ResourceHandle:
        run = self.build_run(ctx)
        return await run_to_completion(self._start_sync, ctx, run)

    def _start_sync(self, ctx: HandlerContext, run: ContainerRun) -> ResourceHandle:
        if ctx.settings.network:
            self.docker.ensure_network(
                ctx.settings.network,
                labels={f"{ctx.settings.label_prefix}.app": ctx.app_name},
            )
        if ctx.resource.is_persistent:
            # A leftover container with this name would make docker run fail
            self.docker.remove(run.name)
        container_id = self.docker.run(run.docker_args(), env=run.env)
        logger.info(
            "container.started",
            resource=ctx.name,
            container=run.name,
            image=run.image,
            container_id=container_id,
        )
        return self._handle(ctx, run, container_id)

    def _handle(self, ctx: HandlerContext, run: ContainerRun, container_id: str) -> ResourceHandle:
        handle = ResourceHandle(
            resource=ctx.name,
            instance_id=run.name,
            details={
                "container_id": container_id,
                "container_name": run.name,
                "image": run.image,
                "has_healthcheck": run.has_healthcheck,
                "config_hash": run.config_hash,
            },
        )
        username = self.spec.config_values(ctx.resolved.config).get("username")
        if username:
            handle.details["username"] = username
        for endpoint in run.endpoints:
            mapped = self.docker.mapped_port(run.name, endpoint.target_port)
            handle.ports[endpoint.name] = mapped or endpoint.port or endpoint.target_port
            handle.target_ports[endpoint.name] = endpoint.target_port
            handle.schemes[endpoint.name] = endpoint.scheme
        handle.connection_string = self._connection_string(ctx, handle)
        return handle

    def _connection_string(self, ctx: HandlerContext, handle: ResourceHandle) -> str | SecretValue | None:
        template = self.spec.connection_string_template
        if not template:
            return None
        values = self.spec.config_values(ctx.resolved.config)
        values["host"] = handle.host
        for name, port in handle.ports.items():
            values[f"{name}_port"] = port
        if handle.ports:
            values["port"] = next(iter(handle.ports.values()))
        return render(template, values)

    async def stop(self, ctx: HandlerContext, handle: ResourceHandle | None) -> None:
        name = handle.instance_id if handle else self.container_name(ctx)
        await asyncio.to_thread(
            self.docker.stop_and_remove, name, ctx.settings.stop_timeout_seconds
        )
        logger.info("container.stopped", resource=ctx.name, container=name)

    async def find_existing(self, ctx: HandlerContext) -> ResourceHandle | None:
        run = self.build_run(ctx)
        return await run_to_completion(self._find_existing_sync, ctx, run)

    def _find_existing_sync(self, ctx: HandlerContext, run: ContainerRun) -> ResourceHandle | None:
        info = self.docker.inspect(run.name)
        if info is None:
            return None

        labels = (info.get("Config") or {}).get("Labels") or {}
        existing_hash = labels.get(f"{ctx.settings.label_prefix}.config_hash")
        if existing_hash != run.config_hash:
            logger.warning(
                "container.config_drift",
                resource=ctx.name,
                container=run.name,
                existing_hash=existing_hash,
                expected_hash=run.config_hash,
            )
            self.docker.stop_and_remove(run.name, ctx.settings.stop_timeout_seconds)
            return None

        status = (info.get("State") or {}).get("Status", "")
        if status != "running":
            logger.info("container.restarting", resource=ctx.name, container=run.name, status=status)
            self.docker.start(run.name)

        logger.info("container.found_existing", resource=ctx.name, container=run.name)
        return self._handle(ctx, run, str(info.get("Id", ""))[:12])

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------

    async def check_ready(self, ctx: HandlerContext, handle: ResourceHandle) -> ReadinessStatus:
        name = handle.instance_id
        status = await asyncio.to_thread(self.docker.status, name)
        if status in _FAILED_STATES:
            handle.details["failure"] = f"container {status}"
            return ReadinessStatus.FAILED
        if status != "running":
            return ReadinessStatus.NOT_READY_YET

        if handle.details.get("has_healthcheck"):
            health = await asyncio.to_thread(self.docker.health, name)
            if health != "healthy":
                return ReadinessStatus.NOT_READY_YET

        if self.spec.health_path:
            url = f"{handle.value('url', self.spec.health_endpoint)}{self.spec.health_path}"
            try:
                await check_http(url)
            except Exception as e:
                logger.debug("container.health_probe_failed", resource=ctx.name, error_type=type(e).__name__)
                return ReadinessStatus.NOT_READY_YET

        return ReadinessStatus.READY

    async def logs(self, ctx: HandlerContext, handle: ResourceHandle) -> str:
        return await asyncio.to_thread(self.docker.logs, handle.instance_id)


__all__ = ["ContainerHandler", "ContainerRun", "env_string"]
