"""
CLI utility helpers - output formatting and run wiring.
"""

from __future__ import annotations

from collections.abc import Mapping

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from apphost.core.errors import AppHostError
from apphost.core.logging import redact_text
from apphost.core.secrets import PromptValueSource, default_plain_source, default_secret_source
from apphost.core.settings import AppHostSettings
from apphost.orchestration.graph import DependencyGraph
from apphost.orchestration.models import EdgeStrength, RunState
from apphost.orchestration.parameters import ParameterResolver
from apphost.orchestration.results import RunResult

console = Console()
err_console = Console(stderr=True)

_STATE_STYLES = {
    RunState.READY: "green",
    RunState.FAILED: "bold red",
    RunState.STOPPED: "dim",
    RunState.STARTING: "yellow",
    RunState.PENDING: "dim",
}


# ── Wiring ───────────────────────────────────────────────────────────────


def build_resolver(
    settings: AppHostSettings,
    environ: Mapping[str, str] | None = None,
) -> ParameterResolver:
    """Resolver reading env vars and secret files, prompting when interactive."""
    return ParameterResolver(
        plain_source=default_plain_source(environ),
        secret_source=default_secret_source(settings.secrets_dir, environ),
        interactive_source=PromptValueSource(err_console) if settings.interactive else None,
    )


# ── Output helpers ───────────────────────────────────────────────────────


def print_error(error: AppHostError) -> None:
    """One-line error on stderr."""
    err_console.print(
        f"[bold red]Error[/bold red] ({type(error).__name__}): {escape(redact_text(error.message))}"
    )


def print_plan(graph: DependencyGraph) -> None:
    """Startup order with each resource's edges."""
    table = Table(title=f"Startup plan: {graph.registry.name}", pad_edge=False)
    table.add_column("#", justify="right")
    table.add_column("resource")
    table.add_column("kind")
    table.add_column("lifetime")
    table.add_column("waits for")
    table.add_column("references")
    for index, resource in enumerate(graph.resources(), start=1):
        table.add_row(
            str(index),
            resource.name,
            resource.kind,
            resource.lifetime.value,
            ", ".join(graph.wait_dependencies(resource.name)) or "-",
            ", ".join(graph.dependencies(resource.name, EdgeStrength.REFERENCE_ONLY)) or "-",
        )
    console.print(table)


def print_run(result: RunResult) -> None:
    """Per-resource outcome table on stdout."""
    table = Table(title=f"{result.app} ({result.run_id})", pad_edge=False)
    table.add_column("resource")
    table.add_column("kind")
    table.add_column("state")
    table.add_column("attached")
    table.add_column("startup")
    table.add_column("endpoints", overflow="fold")
    for outcome in result.resources:
        style = _STATE_STYLES.get(outcome.state, "")
        startup = outcome.startup_seconds
        table.add_row(
            outcome.name,
            outcome.kind,
            f"[{style}]{outcome.state.value}[/{style}]" if style else outcome.state.value,
            "yes" if outcome.attached else "",
            f"{startup:.1f}s" if startup is not None else "",
            escape(", ".join(outcome.endpoints.values())),
        )
    console.print(table)
    console.print(f"[bold]{result.status.value}[/bold]: {result.summary}")


def print_failure_report(result: RunResult) -> None:
    """Every failed resource with its cause, on stderr."""
    failed = result.failures()
    if not failed:
        return
    table = Table(title="Failed resources", title_style="bold red", pad_edge=False)
    table.add_column("resource")
    table.add_column("kind")
    table.add_column("error")
    table.add_column("cause", overflow="fold")
    for outcome in failed:
        table.add_row(
            outcome.name,
            outcome.kind,
            outcome.error_type or "",
            escape(redact_text(outcome.error or "")),
        )
    err_console.print(table)
