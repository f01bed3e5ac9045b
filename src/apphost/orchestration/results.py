"""Result models for an orchestration run.

Pydantic v2 models: one ``ResourceOutcome`` per resource rolls up into a
``RunResult``. The CLI prints them as a rich table or, with ``--json``,
via ``model_dump_json(indent=2)``.

Causes are stored as descriptions (never exception objects), built with
:func:`apphost.core.errors.describe_error`, so a result can be persisted
or printed without leaking secrets.

Key Concepts:
    RunStatus: SUCCEEDED when every resource is READY (or STOPPED after a
        clean teardown), FAILED when any resource failed, CANCELLED when
        the run was aborted.
    ResourceOutcome: state, cause, timestamps, attached flag.
    RunResult: ``mark_complete()`` finalises duration and status;
        ``raise_for_failures()`` raises OrchestrationFailedError.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field

from apphost.orchestration.exceptions import OrchestrationFailedError
from apphost.orchestration.models import Lifetime, RunState


class RunStatus(str, Enum):
    """Overall status of a run."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class ResourceOutcome(BaseModel):
    """How one resource ended the run."""

    name: str
    kind: str
    lifetime: Lifetime = Lifetime.SESSION
    state: RunState = RunState.PENDING
    attached: bool = False
    error: str | None = None
    error_type: str | None = None
    category: str | None = None
    starting_at: str | None = None
    ready_at: str | None = None
    failed_at: str | None = None
    timeline: dict[str, float] = Field(
        default_factory=dict,
        description="Seconds since run start at which each state was entered",
    )
    instance_id: str | None = None
    endpoints: dict[str, str] = Field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return self.state is RunState.FAILED

    @property
    def startup_seconds(self) -> float | None:
        if "starting" in self.timeline and "ready" in self.timeline:
            return self.timeline["ready"] - self.timeline["starting"]
        return None


class RunResult(BaseModel):
    """Outcome of one orchestration run."""

    run_id: str
    app: str = "apphost"
    started_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    completed_at: str | None = None
    duration_seconds: float = 0.0
    status: RunStatus = RunStatus.PENDING
    order: list[str] = Field(default_factory=list)
    resources: list[ResourceOutcome] = Field(default_factory=list)
    summary: str = ""

    def outcome(self, name: str) -> ResourceOutcome:
        for outcome in self.resources:
            if outcome.name == name:
                return outcome
        raise KeyError(name)

    def failures(self) -> list[ResourceOutcome]:
        return [o for o in self.resources if o.failed]

    def ready(self) -> list[ResourceOutcome]:
        return [o for o in self.resources if o.state is RunState.READY]

    @property
    def succeeded(self) -> bool:
        return self.status is RunStatus.SUCCEEDED

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1

    def mark_complete(self, cancelled: bool = False) -> None:
        """Finalise timestamps, duration, status and summary."""
        self.completed_at = datetime.now(UTC).isoformat()
        start = datetime.fromisoformat(self.started_at)
        end = datetime.fromisoformat(self.completed_at)
        self.duration_seconds = (end - start).total_seconds()

        failed = self.failures()
        if cancelled:
            self.status = RunStatus.CANCELLED
        elif failed:
            self.status = RunStatus.FAILED
        elif all(o.state in (RunState.READY, RunState.STOPPED) for o in self.resources):
            self.status = RunStatus.SUCCEEDED
        else:
            self.status = RunStatus.FAILED
        self.summary = (
            f"{len(self.ready())}/{len(self.resources)} resources ready, "
            f"{len(failed)} failed"
        )

    def raise_for_failures(self) -> None:
        """Raise OrchestrationFailedError listing every failed resource."""
        failed = self.failures()
        if failed:
            raise OrchestrationFailedError({o.name: o.error or "failed" for o in failed})


__all__ = ["ResourceOutcome", "RunResult", "RunStatus"]
