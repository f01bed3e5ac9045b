"""Tests for ``apphost.orchestration.results`` and the runtime records in ``models``."""

from __future__ import annotations

import json

import pytest

from apphost.core.secrets import SecretValue
from apphost.orchestration.exceptions import OrchestrationFailedError
from apphost.orchestration.models import Resource, ResourceHandle, ResourceValueRef, RunState
from apphost.orchestration.results import ResourceOutcome, RunResult, RunStatus


def outcome(name: str, state: RunState, **kwargs) -> ResourceOutcome:
    return ResourceOutcome(name=name, kind="fake", state=state, **kwargs)


class TestRunResult:
    def test_defaults(self):
        result = RunResult(run_id="r1")
        assert result.status is RunStatus.PENDING
        assert result.resources == []
        assert result.completed_at is None

    def test_all_ready_succeeds(self):
        result = RunResult(run_id="r1", resources=[outcome("a", RunState.READY), outcome("b", RunState.READY)])
        result.mark_complete()
        assert result.status is RunStatus.SUCCEEDED
        assert result.exit_code == 0
        assert result.summary == "2/2 resources ready, 0 failed"
        assert result.duration_seconds >= 0

    def test_any_failure_fails(self):
        result = RunResult(
            run_id="r1",
            resources=[
                outcome("a", RunState.READY),
                outcome("b", RunState.FAILED, error="boom", error_type="ResourceFailedError"),
            ],
        )
        result.mark_complete()
        assert result.status is RunStatus.FAILED
        assert result.exit_code == 1
        assert [o.name for o in result.failures()] == ["b"]
        with pytest.raises(OrchestrationFailedError) as exc_info:
            result.raise_for_failures()
        assert exc_info.value.failures == {"b": "boom"}

    def test_unsettled_is_not_success(self):
        result = RunResult(run_id="r1", resources=[outcome("a", RunState.STARTING)])
        result.mark_complete()
        assert result.status is RunStatus.FAILED

    def test_cancelled(self):
        result = RunResult(run_id="r1", resources=[outcome("a", RunState.READY)])
        result.mark_complete(cancelled=True)
        assert result.status is RunStatus.CANCELLED
        assert result.exit_code == 1

    def test_json_round_trip_shape(self):
        result = RunResult(
            run_id="r1",
            resources=[outcome("a", RunState.READY, timeline={"starting": 0.1, "ready": 0.6})],
        )
        result.mark_complete()
        data = json.loads(result.model_dump_json())
        assert data["status"] == "SUCCEEDED"
        assert data["resources"][0]["state"] == "ready"
        assert result.outcome("a").startup_seconds == pytest.approx(0.5)
        with pytest.raises(KeyError):
            result.outcome("missing")


class TestResourceHandle:
    def test_values(self):
        handle = ResourceHandle(
            "api",
            ports={"http": 18080, "grpc": 18081},
            target_ports={"http": 8080, "grpc": 8081},
            schemes={"http": "http", "grpc": "http"},
            connection_string="Endpoint=http://localhost:18081",
        )
        assert handle.value("host") == "localhost"
        assert handle.value("port") == 18080
        assert handle.value("port", "grpc") == 18081
        assert handle.value("target_port", "grpc") == 8081
        assert handle.value("url", "http") == "http://localhost:18080"
        assert handle.value("connection_string") == "Endpoint=http://localhost:18081"

    def test_secret_connection_string_stays_wrapped(self):
        handle = ResourceHandle("db", connection_string=SecretValue("Password=x"))
        assert isinstance(handle.value("connection_string"), SecretValue)

    def test_missing_values(self):
        handle = ResourceHandle("worker")
        with pytest.raises(KeyError):
            handle.value("connection_string")
        with pytest.raises(KeyError):
            handle.value("port")
        handle.ports["http"] = 80
        with pytest.raises(KeyError):
            handle.value("url", "admin")


class TestDeclarations:
    def test_collections_normalised(self):
        resource = Resource("app", kind="process", command=["python"], wait_for=["db"], config={"a": 1})
        assert resource.command == ("python",)
        assert resource.wait_for == ("db",)
        with pytest.raises(TypeError):
            resource.config["b"] = 2

    def test_empty_name_rejected(self):
        with pytest.raises(ValueError):
            Resource("", kind="process")

    def test_unknown_value_ref_rejected(self):
        with pytest.raises(ValueError):
            ResourceValueRef("db", "password")
