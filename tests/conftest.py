"""
Shared pytest fixtures and configuration for apphost tests.

This module provides:
- Logging isolation (secret registry and structlog config reset per test)
- Fast run settings (short readiness timeout, tight poll intervals)
- A FakeHandler wired into a HandlerRegistry
- ``run_apphost``: build a graph from declarations and run it

Usage:
    Fixtures are auto-discovered by pytest::

        @pytest.mark.asyncio
        async def test_chain(run_apphost):
            result, orchestrator = await run_apphost([fake("a"), fake("b", wait_for=["a"])])
            assert result.succeeded
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterable
from pathlib import Path

import pytest
import structlog

# Ensure apphost package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from apphost.core.logging import clear_registered_secrets
from apphost.core.secrets import DictValueSource
from apphost.core.settings import AppHostSettings
from apphost.handlers.base import HandlerRegistry
from apphost.orchestration.graph import build_graph
from apphost.orchestration.models import Parameter, Resource
from apphost.orchestration.parameters import ParameterResolver
from apphost.orchestration.registry import ResourceRegistry
from apphost.orchestration.scheduler import Orchestrator
from tests._support.fakes import FakeHandler, fake_registry


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def _isolate_logging():
    """Forget registered secrets and restore structlog defaults after each test.

    The CLI configures stdlib logging against the stream that is current at
    the time; CliRunner closes that stream when the invocation ends.
    """
    yield
    clear_registered_secrets()
    structlog.reset_defaults()
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)


# =============================================================================
# Settings / handlers / parameters
# =============================================================================


@pytest.fixture
def settings() -> AppHostSettings:
    return AppHostSettings(
        readiness_timeout_seconds=1.0,
        poll_interval_seconds=0.01,
        max_poll_interval_seconds=0.05,
        stop_timeout_seconds=1,
        run_id="testrun12345",
    )


@pytest.fixture
def world() -> dict:
    """Persistent instances surviving across FakeHandler instances."""
    return {}


@pytest.fixture
def fake_handler(world) -> FakeHandler:
    return FakeHandler(world)


@pytest.fixture
def handlers(fake_handler) -> HandlerRegistry:
    return fake_registry(fake_handler)


@pytest.fixture
def parameter_source() -> DictValueSource:
    """Empty in-memory source; tests call ``.set(name, value)``."""
    return DictValueSource()


@pytest.fixture
def resolver(parameter_source) -> ParameterResolver:
    return ParameterResolver(parameter_source)


# =============================================================================
# Runs
# =============================================================================


@pytest.fixture
def run_apphost(handlers, resolver, settings):
    """Build a graph from declarations and run it to completion.

    Returns ``(result, orchestrator)``; keyword arguments replace the
    default handlers, resolver or settings for one call.
    """

    async def _run(
        resources: Iterable[Resource],
        parameters: Iterable[Parameter] = (),
        *,
        handler_registry: HandlerRegistry | None = None,
        parameter_resolver: ParameterResolver | None = None,
        run_settings: AppHostSettings | None = None,
    ):
        graph = build_graph(ResourceRegistry(resources, parameters, name="testapp"))
        orchestrator = Orchestrator(
            graph,
            handler_registry or handlers,
            parameter_resolver or resolver,
            run_settings or settings,
        )
        result = await orchestrator.run()
        return result, orchestrator

    return _run
