"""Tests for ``apphost.handlers.container`` with a mocked DockerCli."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from apphost.core.errors import DeclarationError
from apphost.core.secrets import SecretValue
from apphost.handlers.base import HandlerContext
from apphost.handlers.container import ContainerHandler, env_string
from apphost.handlers.docker import DockerCli
from apphost.handlers.kinds import CONTAINER, POSTGRES, QDRANT
from apphost.orchestration.models import (
    Endpoint,
    Lifetime,
    ReadinessStatus,
    ResolvedResource,
    Resource,
    ResourceHandle,
    VolumeMount,
)


def make_docker() -> MagicMock:
    docker = MagicMock(spec=DockerCli)
    docker.run.return_value = "0123456789ab"
    docker.mapped_port.return_value = None
    docker.inspect.return_value = None
    return docker


def context(resource: Resource, settings, **resolved) -> HandlerContext:
    return HandlerContext(
        resolved=ResolvedResource(
            resource,
            config=resolved.get("config", {}),
            environment=resolved.get("environment", {}),
            args=resolved.get("args", []),
        ),
        settings=settings,
        app_name="myapp",
    )


@pytest.fixture
def docker() -> MagicMock:
    return make_docker()


@pytest.fixture
def postgres(docker) -> ContainerHandler:
    return ContainerHandler(POSTGRES, docker)


class TestEnvString:
    def test_values(self):
        assert env_string(True) == "true"
        assert env_string(False) == "false"
        assert env_string(8001) == "8001"
        assert env_string(SecretValue("pw")) == "pw"


class TestValidate:
    def test_generic_container_needs_image(self):
        with pytest.raises(DeclarationError, match="needs an image"):
            ContainerHandler(CONTAINER).validate(Resource("docling", kind="container"))

    def test_volume_without_target_needs_data_path(self):
        resource = Resource("docling", kind="container", image="img:1", volumes=[VolumeMount("models", "")])
        with pytest.raises(DeclarationError, match="target path"):
            ContainerHandler(CONTAINER).validate(resource)

    def test_preset_image_and_data_path(self):
        ContainerHandler(POSTGRES).validate(
            Resource("postgres", kind="postgres", volumes=[VolumeMount("dbserver-volume", "")])
        )

    def test_validate_never_touches_docker(self):
        with patch("apphost.handlers.container.DockerCli") as mock_cli:
            ContainerHandler(POSTGRES).validate(Resource("postgres", kind="postgres"))
        mock_cli.assert_not_called()


class TestBuildRun:
    def test_session_container(self, postgres, settings):
        ctx = context(
            Resource("postgres", kind="postgres"),
            settings,
            config={"username": "app", "password": SecretValue("hunter2")},
        )
        run = postgres.build_run(ctx)

        assert run.name == "myapp-postgres-testrun1"
        assert run.image == POSTGRES.image
        assert run.env == {"POSTGRES_USER": "app", "POSTGRES_PASSWORD": "hunter2"}
        assert run.labels["apphost.resource"] == "postgres"
        assert run.labels["apphost.lifetime"] == "session"
        assert run.labels["apphost.run_id"] == "testrun12345"
        assert run.has_healthcheck
        args = run.docker_args()
        assert "-p" in args and "5432" in args
        assert "pg_isready -U app" in args
        assert not any("hunter2" in arg for arg in args)

    def test_persistent_container(self, postgres, settings):
        ctx = context(
            Resource(
                "postgres",
                kind="postgres",
                lifetime=Lifetime.PERSISTENT,
                volumes=[VolumeMount("dbserver-volume", "")],
            ),
            settings,
        )
        run = postgres.build_run(ctx)

        assert run.name == "myapp-postgres"
        assert "apphost.run_id" not in run.labels
        assert run.labels["apphost.lifetime"] == "persistent"
        assert "dbserver-volume:/var/lib/postgresql/data" in run.options

    def test_generic_container(self, docker, settings):
        resource = Resource(
            "docling",
            kind="container",
            image="quay.io/docling-project/docling-serve-cu124:latest",
            command=["sh"],
            endpoints=[Endpoint("docling-api", 8001, port=5001, scheme="http")],
            volumes=[VolumeMount("models", "/opt/models", read_only=True)],
        )
        ctx = context(
            resource,
            settings,
            environment={"DOCLING_SERVE_ENABLE_UI": True, "UVICORN_PORT": 8001},
            args=["-c", "docling-serve run"],
        )
        run = ContainerHandler(CONTAINER, docker).build_run(ctx)

        assert run.env == {"DOCLING_SERVE_ENABLE_UI": "true", "UVICORN_PORT": "8001"}
        assert run.options[run.options.index("-p") + 1] == "5001:8001"
        assert "models:/opt/models:ro" in run.options
        assert run.options[run.options.index("--entrypoint") + 1] == "sh"
        assert run.command == ["-c", "docling-serve run"]
        assert run.docker_args()[-3:] == [resource.image, "-c", "docling-serve run"]
        assert not run.has_healthcheck

    def test_network_option(self, postgres, settings):
        settings.network = "myapp-net"
        run = postgres.build_run(context(Resource("postgres", kind="postgres"), settings))
        assert run.options[:2] == ["--network", "myapp-net"]

    def test_config_hash_tracks_declaration(self, postgres, settings):
        resource = Resource("postgres", kind="postgres")
        first = postgres.build_run(context(resource, settings, config={"password": SecretValue("a")}))
        same = postgres.build_run(context(resource, settings, config={"password": SecretValue("a")}))
        changed = postgres.build_run(context(resource, settings, config={"password": SecretValue("b")}))
        assert first.config_hash == same.config_hash
        assert first.config_hash != changed.config_hash
        assert len(first.config_hash) == 16


class TestStart:
    @pytest.mark.asyncio
    async def test_start_publishes_ports_and_connection_string(self, postgres, docker, settings):
        docker.mapped_port.return_value = 49153
        ctx = context(Resource("postgres", kind="postgres"), settings, config={"password": SecretValue("pw")})

        handle = await postgres.start(ctx)

        args, kwargs = docker.run.call_args
        assert kwargs["env"]["POSTGRES_PASSWORD"] == "pw"
        assert not any("pw" == arg for arg in args[0])
        docker.remove.assert_not_called()
        assert handle.instance_id == "myapp-postgres-testrun1"
        assert handle.details["container_id"] == "0123456789ab"
        assert handle.ports == {"tcp": 49153}
        assert handle.target_ports == {"tcp": 5432}
        assert isinstance(handle.connection_string, SecretValue)
        assert handle.connection_string.get_secret() == (
            "Host=localhost;Port=49153;Username=postgres;Password=pw"
        )

    @pytest.mark.asyncio
    async def test_persistent_start_removes_leftover(self, postgres, docker, settings):
        ctx = context(Resource("postgres", kind="postgres", lifetime="persistent"), settings)
        await postgres.start(ctx)
        docker.remove.assert_called_once_with("myapp-postgres")

    @pytest.mark.asyncio
    async def test_stop_by_name_without_handle(self, postgres, docker, settings):
        ctx = context(Resource("postgres", kind="postgres"), settings)
        await postgres.stop(ctx, None)
        docker.stop_and_remove.assert_called_once_with("myapp-postgres-testrun1", 1)


class TestFindExisting:
    def _inspect(self, config_hash: str, status: str = "running") -> dict:
        return {
            "Id": "fedcba9876543210",
            "Config": {"Labels": {"apphost.config_hash": config_hash}},
            "State": {"Status": status},
        }

    def _ctx(self, settings) -> HandlerContext:
        return context(Resource("postgres", kind="postgres", lifetime=Lifetime.PERSISTENT), settings)

    @pytest.mark.asyncio
    async def test_missing(self, postgres, docker, settings):
        assert await postgres.find_existing(self._ctx(settings)) is None

    @pytest.mark.asyncio
    async def test_attach_running(self, postgres, docker, settings):
        ctx = self._ctx(settings)
        docker.inspect.return_value = self._inspect(postgres.build_run(ctx).config_hash)

        handle = await postgres.find_existing(ctx)

        assert handle is not None
        assert handle.instance_id == "myapp-postgres"
        assert handle.details["container_id"] == "fedcba987654"
        docker.start.assert_not_called()
        docker.stop_and_remove.assert_not_called()

    @pytest.mark.asyncio
    async def test_restart_stopped(self, postgres, docker, settings):
        ctx = self._ctx(settings)
        docker.inspect.return_value = self._inspect(postgres.build_run(ctx).config_hash, status="exited")

        assert await postgres.find_existing(ctx) is not None
        docker.start.assert_called_once_with("myapp-postgres")

    @pytest.mark.asyncio
    async def test_drift_removes(self, postgres, docker, settings):
        docker.inspect.return_value = self._inspect("0000000000000000")

        assert await postgres.find_existing(self._ctx(settings)) is None
        docker.stop_and_remove.assert_called_once_with("myapp-postgres", 1)


class TestCheckReady:
    def _handle(self, **details) -> ResourceHandle:
        return ResourceHandle(
            "qdrant",
            instance_id="myapp-qdrant-testrun1",
            ports={"grpc": 6334, "http": 6333},
            target_ports={"grpc": 6334, "http": 6333},
            schemes={"grpc": "http", "http": "http"},
            details=details,
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["exited", "dead", "not_found"])
    async def test_failed_states(self, docker, settings, status):
        docker.status.return_value = status
        handle = self._handle()
        handler = ContainerHandler(QDRANT, docker)
        result = await handler.check_ready(context(Resource("qdrant", kind="qdrant"), settings), handle)
        assert result is ReadinessStatus.FAILED
        assert handle.details["failure"] == f"container {status}"

    @pytest.mark.asyncio
    async def test_created_not_ready(self, docker, settings):
        docker.status.return_value = "created"
        handler = ContainerHandler(QDRANT, docker)
        result = await handler.check_ready(context(Resource("qdrant", kind="qdrant"), settings), self._handle())
        assert result is ReadinessStatus.NOT_READY_YET

    @pytest.mark.asyncio
    async def test_waits_for_docker_health(self, postgres, docker, settings):
        docker.status.return_value = "running"
        docker.health.return_value = "starting"
        ctx = context(Resource("postgres", kind="postgres"), settings)
        handle = ResourceHandle("postgres", instance_id="c", details={"has_healthcheck": True})
        assert await postgres.check_ready(ctx, handle) is ReadinessStatus.NOT_READY_YET

        docker.health.return_value = "healthy"
        assert await postgres.check_ready(ctx, handle) is ReadinessStatus.READY

    @pytest.mark.asyncio
    async def test_http_health_path(self, docker, settings):
        docker.status.return_value = "running"
        handler = ContainerHandler(QDRANT, docker)
        ctx = context(Resource("qdrant", kind="qdrant"), settings)

        with patch("apphost.handlers.container.check_http", new_callable=AsyncMock) as mock_http:
            mock_http.side_effect = httpx.ConnectError("refused")
            assert await handler.check_ready(ctx, self._handle()) is ReadinessStatus.NOT_READY_YET

            mock_http.side_effect = None
            mock_http.return_value = True
            assert await handler.check_ready(ctx, self._handle()) is ReadinessStatus.READY

        mock_http.assert_called_with("http://localhost:6333/readyz")
