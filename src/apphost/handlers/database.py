"""Database handler - a database created inside a parent server container.

A ``postgres-database`` resource names its server as ``parent`` (which
implies a WaitFor edge, so the server is ready first). Starting it runs
``createdb`` inside the server container unless the database already
exists, so starting is idempotent across runs and the database lives as
long as the server's data volume.

Config options:
    database_name: Database to create (defaults to the resource name)
"""

from __future__ import annotations

import asyncio
import re

from apphost.core.errors import DeclarationError
from apphost.core.logging import get_logger
from apphost.core.secrets import SecretValue, reveal
from apphost.handlers.base import HandlerContext, ResourceHandler
from apphost.handlers.docker import DockerCli
from apphost.handlers.kinds import POSTGRES_DATABASE, KindSpec, render
from apphost.orchestration.exceptions import ResourceStartError
from apphost.orchestration.models import Resource, ResourceHandle

logger = get_logger(__name__)

_DATABASE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_\-]{0,62}$")


class DatabaseHandler(ResourceHandler):
    """Handler for child databases (``postgres-database``)."""

    def __init__(self, spec: KindSpec = POSTGRES_DATABASE, docker: DockerCli | None = None) -> None:
        self.spec = spec
        self.kind = spec.name
        self._docker = docker

    @property
    def docker(self) -> DockerCli:
        if self._docker is None:
            self._docker = DockerCli()
        return self._docker

    def validate(self, resource: Resource) -> None:
        if not resource.parent:
            raise DeclarationError(
                f"Resource '{resource.name}' of kind '{resource.kind}' needs a parent"
            ).with_context(resource=resource.name, kind=resource.kind)
        name = str(resource.config.get("database_name") or resource.name)
        if not _DATABASE_NAME.match(name):
            raise DeclarationError(
                f"Resource '{resource.name}': invalid database name '{name}'"
            ).with_context(resource=resource.name, kind=resource.kind)

    def database_name(self, ctx: HandlerContext) -> str:
        return str(ctx.resolved.config.get("database_name") or ctx.name)

    def _parent(self, ctx: HandlerContext) -> ResourceHandle:
        parent = ctx.resource.parent
        handle = ctx.dependencies.get(parent) if parent else None
        if handle is None:
            raise ResourceStartError(ctx.name, f"parent '{parent}' is not ready")
        return handle

    async def start(self, ctx: HandlerContext) -> ResourceHandle:
        parent = self._parent(ctx)
        database = self.database_name(ctx)
        container = parent.details.get("container_name") or parent.instance_id
        user = reveal(parent.details.get("username") or "postgres")

        created = await asyncio.to_thread(self._ensure_database, container, user, database)
        logger.info(
            "database.ready" if not created else "database.created",
            resource=ctx.name,
            database=database,
            parent=ctx.resource.parent,
        )

        handle = ResourceHandle(
            resource=ctx.name,
            instance_id=f"{parent.instance_id}/{database}",
            host=parent.host,
            ports=dict(parent.ports),
            target_ports=dict(parent.target_ports),
            schemes=dict(parent.schemes),
            details={"database": database, "parent": ctx.resource.parent, "created": created},
        )
        handle.connection_string = self._connection_string(parent, database)
        return handle

    def _ensure_database(self, container: str, user: str, database: str) -> bool:
        """Create *database* unless it exists; True when it was created."""
        env = {"PGUSER": user}
        exists = self.docker.exec(
            container,
            ["psql", "-d", "postgres", "-tAc", f"SELECT 1 FROM pg_database WHERE datname = '{database}'"],
            env=env,
        )
        if exists.strip() == "1":
            return False
        self.docker.exec(container, ["createdb", database], env=env)
        return True

    def _connection_string(self, parent: ResourceHandle, database: str) -> str | SecretValue | None:
        if parent.connection_string is None or not self.spec.connection_string_template:
            return None
        base = parent.connection_string
        prefix: str | SecretValue
        if isinstance(base, SecretValue):
            prefix = SecretValue(base.get_secret().rstrip(";") + ";")
        else:
            prefix = base.rstrip(";") + ";"
        return render(self.spec.connection_string_template, {"parent": prefix, "database": database})

    async def stop(self, ctx: HandlerContext, handle: ResourceHandle | None) -> None:
        # The database lives inside the parent server; nothing to release.
        logger.debug("database.released", resource=ctx.name)


__all__ = ["DatabaseHandler"]
