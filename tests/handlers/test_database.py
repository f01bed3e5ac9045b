"""Tests for ``apphost.handlers.database`` with a mocked DockerCli."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from apphost.core.errors import DeclarationError
from apphost.core.secrets import SecretValue
from apphost.handlers.base import HandlerContext
from apphost.handlers.database import DatabaseHandler
from apphost.handlers.docker import DockerCli
from apphost.orchestration.exceptions import ResourceStartError
from apphost.orchestration.models import ResolvedResource, Resource, ResourceHandle


def server_handle() -> ResourceHandle:
    return ResourceHandle(
        "postgres",
        instance_id="myapp-postgres",
        ports={"tcp": 5432},
        target_ports={"tcp": 5432},
        schemes={"tcp": "tcp"},
        connection_string=SecretValue("Host=localhost;Port=5432;Username=postgres;Password=pw"),
        details={"container_name": "myapp-postgres", "username": "postgres"},
    )


def context(settings, dependencies=None, config=None) -> HandlerContext:
    resource = Resource("myappdb", kind="postgres-database", parent="postgres", config=config or {})
    return HandlerContext(
        resolved=ResolvedResource(resource, config=dict(config or {})),
        settings=settings,
        app_name="myapp",
        dependencies=dependencies if dependencies is not None else {"postgres": server_handle()},
    )


@pytest.fixture
def docker() -> MagicMock:
    return MagicMock(spec=DockerCli)


class TestValidate:
    def test_needs_parent(self):
        with pytest.raises(DeclarationError, match="needs a parent"):
            DatabaseHandler().validate(Resource("myappdb", kind="postgres-database"))

    def test_database_name(self):
        handler = DatabaseHandler()
        handler.validate(Resource("myappdb", kind="postgres-database", parent="postgres"))
        with pytest.raises(DeclarationError, match="invalid database name"):
            handler.validate(
                Resource(
                    "myappdb",
                    kind="postgres-database",
                    parent="postgres",
                    config={"database_name": "x'; DROP DATABASE y; --"},
                )
            )


class TestStart:
    @pytest.mark.asyncio
    async def test_creates_missing_database(self, docker, settings):
        docker.exec.side_effect = ["\n", ""]
        handle = await DatabaseHandler(docker=docker).start(context(settings))

        assert docker.exec.call_count == 2
        assert docker.exec.call_args.args == ("myapp-postgres", ["createdb", "myappdb"])
        assert docker.exec.call_args.kwargs["env"] == {"PGUSER": "postgres"}
        assert handle.details["created"] is True
        assert handle.instance_id == "myapp-postgres/myappdb"
        assert handle.ports == {"tcp": 5432}
        assert isinstance(handle.connection_string, SecretValue)
        assert handle.connection_string.get_secret() == (
            "Host=localhost;Port=5432;Username=postgres;Password=pw;Database=myappdb"
        )

    @pytest.mark.asyncio
    async def test_existing_database_is_reused(self, docker, settings):
        docker.exec.return_value = "1\n"
        handle = await DatabaseHandler(docker=docker).start(context(settings, config={"database_name": "orders"}))

        docker.exec.assert_called_once()
        assert handle.details == {"database": "orders", "parent": "postgres", "created": False}

    @pytest.mark.asyncio
    async def test_parent_not_ready(self, docker, settings):
        with pytest.raises(ResourceStartError, match="parent 'postgres' is not ready"):
            await DatabaseHandler(docker=docker).start(context(settings, dependencies={}))
        docker.exec.assert_not_called()

    @pytest.mark.asyncio
    async def test_stop_leaves_database(self, docker, settings):
        await DatabaseHandler(docker=docker).stop(context(settings), None)
        docker.exec.assert_not_called()
