"""Tests for the ``apphost`` CLI (run / plan) against the fake resource kind."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from apphost import __version__
from apphost.cli.app import _run, app
from apphost.orchestration.graph import build_graph
from apphost.orchestration.registry import ResourceRegistry
from apphost.orchestration.scheduler import Orchestrator
from tests._support.fakes import FakeHandler, fake, fake_registry

runner = CliRunner()

MANIFEST = """\
apiVersion: apphost.io/v1
kind: AppHost
metadata:
  name: cliapp
spec:
  parameters:
    - name: password
      secret: true
  resources:
    - name: db
      kind: fake
      config:
        password: {parameter: password}
    - name: cache
      kind: fake
    - name: app
      kind: fake
      wait_for: [db, cache]
      references: [db]
"""

CYCLIC = """\
apiVersion: apphost.io/v1
kind: AppHost
metadata:
  name: cliapp
spec:
  resources:
    - name: a
      kind: fake
      wait_for: [b]
    - name: b
      kind: fake
      wait_for: [a]
"""


@pytest.fixture
def manifest(tmp_path) -> Path:
    path = tmp_path / "apphost.yaml"
    path.write_text(MANIFEST, encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def _cli_env(monkeypatch, tmp_path):
    monkeypatch.setenv("APPHOST_SECRETS_DIR", str(tmp_path / "secrets"))
    monkeypatch.setenv("APPHOST_READINESS_TIMEOUT_SECONDS", "1")
    monkeypatch.setenv("APPHOST_POLL_INTERVAL_SECONDS", "0.01")
    monkeypatch.setenv("Parameters__password", "hunter2")


@pytest.fixture
def handler() -> FakeHandler:
    fake_handler = FakeHandler()
    with patch("apphost.cli.app.default_handlers", return_value=fake_registry(fake_handler)):
        yield fake_handler


def invoke_run(manifest: Path, *extra: str):
    return runner.invoke(app, ["run", str(manifest), "--no-hold", "--log-level", "ERROR", *extra])


class TestVersion:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout


class TestRunCommand:
    def test_success_json(self, manifest, handler):
        result = invoke_run(manifest, "--json")

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["status"] == "SUCCEEDED"
        assert data["app"] == "cliapp"
        assert {r["name"]: r["state"] for r in data["resources"]} == {
            "db": "ready",
            "cache": "ready",
            "app": "ready",
        }
        assert handler.started.index("app") > handler.started.index("db")
        assert sorted(handler.stopped) == ["app", "cache", "db"]
        assert handler.contexts["db"].resolved.config["password"].get_secret() == "hunter2"
        assert "hunter2" not in result.output

    def test_success_table(self, manifest, handler):
        result = invoke_run(manifest)
        assert result.exit_code == 0, result.output
        assert "SUCCEEDED" in result.stdout
        assert "3/3 resources ready" in result.stdout

    def test_failure_exit_code_and_report(self, manifest, handler):
        handler.start_errors["db"] = RuntimeError("login hunter2 rejected")

        result = invoke_run(manifest)

        assert result.exit_code == 1
        assert "Failed resources" in result.stderr
        assert "db" in result.stderr
        assert "app" in result.stderr
        assert "cache" not in result.stderr
        assert "hunter2" not in result.output
        assert "cache" in handler.stopped

    def test_failure_json_has_no_secret(self, manifest, handler):
        handler.fail_readiness.add("db")

        result = invoke_run(manifest, "--json")

        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert data["status"] == "FAILED"
        states = {r["name"]: r for r in data["resources"]}
        assert states["db"]["state"] == "failed"
        assert states["app"]["error_type"] == "DependencyFailedError"
        assert "hunter2" not in result.output

    def test_cycle_exits_2(self, tmp_path, handler):
        path = tmp_path / "cyclic.yaml"
        path.write_text(CYCLIC, encoding="utf-8")

        result = invoke_run(path)

        assert result.exit_code == 2
        assert "Cycle detected" in result.stderr
        assert handler.started == []

    def test_rejected_declaration_exits_2(self, manifest, handler):
        handler.rejected.add("cache")
        result = invoke_run(manifest)
        assert result.exit_code == 2
        assert handler.started == []

    def test_missing_manifest_exits_2(self, tmp_path, handler):
        result = invoke_run(tmp_path / "missing.yaml")
        assert result.exit_code == 2


class TestPlanCommand:
    def test_plan_json(self, manifest, handler):
        result = runner.invoke(app, ["plan", str(manifest), "--json"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["app"] == "cliapp"
        assert data["order"][-1] == "app"
        assert set(data["order"]) == {"db", "cache", "app"}
        assert {"dependent": "app", "dependency": "db", "strength": "wait_for"} in data["edges"]
        assert handler.started == []

    def test_plan_table(self, manifest, handler):
        result = runner.invoke(app, ["plan", str(manifest)])
        assert result.exit_code == 0, result.output
        assert "Startup plan: cliapp" in result.stdout


class TestHold:
    @pytest.mark.asyncio
    async def test_failed_run_is_not_held(self, capsys, fake_handler, handlers, resolver, settings):
        fake_handler.fail_readiness.add("db")
        graph = build_graph(ResourceRegistry([fake("db"), fake("app", wait_for=["db"])], name="cliapp"))
        orchestrator = Orchestrator(graph, handlers, resolver, settings)

        exit_code = await asyncio.wait_for(_run(orchestrator, hold=True, json_out=False), 5)

        assert exit_code == 1
        captured = capsys.readouterr()
        assert "Failed resources" in captured.err
        assert "Press Ctrl+C" not in captured.out
        assert fake_handler.stopped == ["db"]

    def test_default_hold_exits_on_failure(self, manifest, handler):
        handler.fail_readiness.add("db")

        result = runner.invoke(app, ["run", str(manifest), "--log-level", "ERROR"])

        assert result.exit_code == 1
        assert "Failed resources" in result.stderr
