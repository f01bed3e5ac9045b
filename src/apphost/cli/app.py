"""
Root Typer application for the apphost CLI.

Commands:
    apphost run MANIFEST    start every resource in dependency order
    apphost plan MANIFEST   validate and print the startup order only

Exit codes for ``run``:
    0  every resource reached READY
    1  at least one resource FAILED (or the run was interrupted)
    2  the declarations are invalid (nothing was started)
"""

from __future__ import annotations

import asyncio
import json
import signal
from pathlib import Path

import typer
from typer import Typer

from apphost import __version__
from apphost.cli.utils import (
    build_resolver,
    console,
    print_error,
    print_failure_report,
    print_plan,
    print_run,
)
from apphost.core.errors import DeclarationError
from apphost.core.logging import configure_logging, get_logger
from apphost.core.settings import AppHostSettings
from apphost.handlers import default_handlers
from apphost.orchestration.graph import DependencyGraph, build_graph
from apphost.orchestration.loader import load_manifest
from apphost.orchestration.scheduler import Orchestrator

logger = get_logger(__name__)

app = Typer(
    name="apphost",
    help="apphost - declare resources, start them in dependency order.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"apphost {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """apphost CLI - run and inspect application host manifests."""


# ── Shared helpers ───────────────────────────────────────────────────────


def _load_graph(manifest: Path) -> DependencyGraph:
    """Load, validate and order a manifest; exit 2 on a declaration error."""
    try:
        registry = load_manifest(manifest)
        graph = build_graph(registry)
        default_handlers().validate(graph.resources())
    except DeclarationError as e:
        print_error(e)
        raise typer.Exit(code=2) from None
    return graph


# ── apphost plan ─────────────────────────────────────────────────────────


@app.command("plan")
def plan_cmd(
    manifest: Path = typer.Argument(..., help="AppHost manifest (YAML)."),
    json_out: bool = typer.Option(False, "--json", "-j", help="Output as JSON."),
) -> None:
    """Validate a manifest and print the startup order without starting anything.

    Example:
        apphost plan apphost.yaml
    """
    configure_logging(level="WARNING")
    graph = _load_graph(manifest)

    if json_out:
        data = {
            "app": graph.registry.name,
            "order": list(graph.order),
            "edges": [
                {
                    "dependent": e.dependent,
                    "dependency": e.dependency,
                    "strength": e.strength.value,
                }
                for e in graph.edges
            ],
        }
        typer.echo(json.dumps(data, indent=2))
    else:
        print_plan(graph)


# ── apphost run ──────────────────────────────────────────────────────────


@app.command("run")
def run_cmd(
    manifest: Path = typer.Argument(..., help="AppHost manifest (YAML)."),
    hold: bool = typer.Option(
        True,
        "--hold/--no-hold",
        help="Keep a fully ready stack running until interrupted, then tear down.",
    ),
    json_out: bool = typer.Option(False, "--json", "-j", help="Print the run result as JSON."),
    interactive: bool = typer.Option(
        False,
        "--interactive",
        "-i",
        help="Prompt for parameters no value source supplies.",
    ),
    timeout: float | None = typer.Option(  # noqa: UP007
        None,
        "--timeout",
        help="Default per-resource readiness timeout in seconds.",
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING or ERROR."),  # noqa: UP007
    log_format: str | None = typer.Option(None, "--log-format", help="json, console or auto."),  # noqa: UP007
) -> None:
    """Start every resource of a manifest in dependency order.

    Example:
        apphost run apphost.yaml
        apphost run apphost.yaml --no-hold --json
    """
    settings = AppHostSettings.from_env(
        readiness_timeout_seconds=timeout,
        interactive=interactive or None,
        log_level=log_level.upper() if log_level else None,
        log_format=log_format.lower() if log_format else None,
    )
    configure_logging(level=settings.log_level, json_format=settings.json_logs)

    graph = _load_graph(manifest)
    orchestrator = Orchestrator(
        graph,
        default_handlers(),
        build_resolver(settings),
        settings,
    )
    try:
        exit_code = asyncio.run(_run(orchestrator, hold=hold, json_out=json_out))
    except DeclarationError as e:
        print_error(e)
        raise typer.Exit(code=2) from None
    raise typer.Exit(code=exit_code)


async def _run(orchestrator: Orchestrator, *, hold: bool, json_out: bool) -> int:
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()

    def _interrupt() -> None:
        stop.set()
        if orchestrator.result is None:
            orchestrator.abort()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _interrupt)
        except (NotImplementedError, RuntimeError, ValueError):
            # No loop signal support (Windows, non-main thread)
            pass

    try:
        result = await orchestrator.run()
        # Hold only a healthy stack; a failed run reports and exits now
        if hold and result.succeeded and not stop.is_set():
            if not json_out:
                console.print("[dim]Resources running. Press Ctrl+C to stop.[/dim]")
            await orchestrator.monitor(stop)
            result = orchestrator.snapshot()
    finally:
        await orchestrator.shutdown()

    if json_out:
        typer.echo(result.model_dump_json(indent=2))
    else:
        print_run(result)
    print_failure_report(result)
    return result.exit_code
