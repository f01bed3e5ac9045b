"""Tests for ``apphost.orchestration.lifecycle`` - start/attach/stop/teardown rules."""

from __future__ import annotations

import asyncio

import pytest

from apphost.handlers.base import HandlerContext, HandlerRegistry
from apphost.handlers.container import ContainerHandler
from apphost.handlers.kinds import CONTAINER
from apphost.orchestration.exceptions import LifecycleError, ResourceStartError, UnknownKindError
from apphost.orchestration.lifecycle import LifecycleManager
from apphost.orchestration.models import Lifetime, ResolvedResource, Resource, ResourceHandle
from tests._support.fakes import blocking_docker, fake


def context(resource: Resource, settings) -> HandlerContext:
    return HandlerContext(ResolvedResource(resource), settings, app_name="testapp")


class TestStart:
    @pytest.mark.asyncio
    async def test_start_records_instance(self, handlers, fake_handler, settings):
        lifecycle = LifecycleManager(handlers)
        handle = await lifecycle.start(context(fake("db"), settings))
        assert handle.instance_id == "fake-db"
        assert lifecycle.started() == ["db"]
        assert lifecycle.instance("db").handle is handle
        assert not lifecycle.instance("db").attached

    @pytest.mark.asyncio
    async def test_start_twice_rejected(self, handlers, fake_handler, settings):
        lifecycle = LifecycleManager(handlers)
        await lifecycle.start(context(fake("db"), settings))
        with pytest.raises(LifecycleError):
            await lifecycle.start(context(fake("db"), settings))
        assert fake_handler.started == ["db"]

    @pytest.mark.asyncio
    async def test_handler_error_wrapped(self, handlers, fake_handler, settings):
        fake_handler.start_errors["db"] = OSError("no space left on device")
        lifecycle = LifecycleManager(handlers)
        with pytest.raises(ResourceStartError) as exc_info:
            await lifecycle.start(context(fake("db"), settings))
        assert "no space left on device" in exc_info.value.reason
        assert isinstance(exc_info.value.cause, OSError)

    @pytest.mark.asyncio
    async def test_unknown_kind(self, handlers, settings):
        lifecycle = LifecycleManager(handlers)
        with pytest.raises(UnknownKindError):
            await lifecycle.start(context(Resource("x", kind="mystery"), settings))

    @pytest.mark.asyncio
    async def test_persistent_attach_skips_start(self, handlers, fake_handler, world, settings):
        world["db"] = ResourceHandle("db", instance_id="fake-db", connection_string="fake://db")
        lifecycle = LifecycleManager(handlers)
        handle = await lifecycle.start(context(fake("db", lifetime=Lifetime.PERSISTENT), settings))
        assert handle.attached
        assert lifecycle.instance("db").attached
        assert fake_handler.started == []

    @pytest.mark.asyncio
    async def test_session_never_looks_for_existing(self, handlers, fake_handler, world, settings):
        world["db"] = ResourceHandle("db", instance_id="old")
        lifecycle = LifecycleManager(handlers)
        handle = await lifecycle.start(context(fake("db"), settings))
        assert not handle.attached
        assert fake_handler.started == ["db"]

    @pytest.mark.asyncio
    async def test_cancelled_start_releases_session_resource(self, handlers, fake_handler, settings):
        fake_handler.start_delays["db"] = 10
        lifecycle = LifecycleManager(handlers)
        task = asyncio.create_task(lifecycle.start(context(fake("db"), settings)))
        while "db" not in fake_handler.started:
            await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert fake_handler.stopped == ["db"]
        assert lifecycle.instance("db").stopped

    @pytest.mark.asyncio
    async def test_cancelled_start_leaves_persistent_resource(self, handlers, fake_handler, settings):
        fake_handler.start_delays["db"] = 10
        lifecycle = LifecycleManager(handlers)
        task = asyncio.create_task(
            lifecycle.start(context(fake("db", lifetime=Lifetime.PERSISTENT), settings))
        )
        while "db" not in fake_handler.started:
            await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert fake_handler.stopped == []

    @pytest.mark.asyncio
    async def test_cancelled_container_start_waits_for_docker_run(self, settings):
        events: list[tuple[str, str]] = []
        running: set[str] = set()
        docker = blocking_docker(events, running)
        lifecycle = LifecycleManager(HandlerRegistry({"container": ContainerHandler(CONTAINER, docker)}))
        resource = Resource("web", kind="container", image="docker.io/library/nginx:1.27")

        task = asyncio.create_task(lifecycle.start(context(resource, settings)))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await lifecycle.teardown(["web"])

        assert events == [("run_done", "testapp-web-testrun1"), ("stop", "testapp-web-testrun1")]
        assert running == set()


class TestStopAndTeardown:
    @pytest.mark.asyncio
    async def test_stop_session_once(self, handlers, fake_handler, settings):
        lifecycle = LifecycleManager(handlers)
        await lifecycle.start(context(fake("db"), settings))
        assert await lifecycle.stop("db") is True
        assert await lifecycle.stop("db") is False
        assert fake_handler.stopped == ["db"]

    @pytest.mark.asyncio
    async def test_stop_unknown_or_persistent(self, handlers, fake_handler, settings):
        lifecycle = LifecycleManager(handlers)
        await lifecycle.start(context(fake("db", lifetime=Lifetime.PERSISTENT), settings))
        assert await lifecycle.stop("db") is False
        assert await lifecycle.stop("never-started") is False
        assert fake_handler.stopped == []

    @pytest.mark.asyncio
    async def test_teardown_reverse_order_and_collects_failures(self, handlers, fake_handler, settings):
        lifecycle = LifecycleManager(handlers)
        for name in ("a", "b", "c"):
            await lifecycle.start(context(fake(name), settings))

        original_stop = fake_handler.stop

        async def flaky_stop(ctx, handle):
            await original_stop(ctx, handle)
            if ctx.name == "b":
                raise RuntimeError("container already gone")

        fake_handler.stop = flaky_stop
        failures = await lifecycle.teardown(["a", "b", "c"])
        assert fake_handler.stopped == ["c", "b", "a"]
        assert list(failures) == ["b"]
        assert "container already gone" in failures["b"]
