"""Tests for ``apphost.orchestration.loader`` - YAML manifest parsing and validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from apphost.orchestration.exceptions import CyclicDependencyError, DuplicateNameError, ManifestError
from apphost.orchestration.graph import build_graph
from apphost.orchestration.loader import AppHostManifest, ResourceSpec, load_manifest
from apphost.orchestration.models import (
    EdgeStrength,
    Lifetime,
    ParameterRef,
    ResourceValueRef,
)

EXAMPLE_MANIFEST = Path(__file__).parent.parent.parent / "examples" / "apphost.yaml"

MANIFEST_YAML = """\
apiVersion: apphost.io/v1
kind: AppHost
metadata:
  name: myapp
spec:
  parameters:
    - name: username
      secret: true
    - name: password
      secret: true
  resources:
    - name: postgres
      kind: postgres
      lifetime: persistent
      config:
        username: {parameter: username}
        password: {parameter: password}
      volumes:
        - source: dbserver-volume
    - name: myappdb
      kind: postgres-database
      parent: postgres
    - name: api
      kind: container
      image: ghcr.io/example/api:1.0
      endpoints:
        - {name: http, target_port: 8080, port: 18080, scheme: http}
      environment:
        DB: {reference: myappdb}
        DEBUG: true
      readiness:
        type: http
        path: /health
    - name: myapp
      kind: process
      command: python -m myapp --verbose
      wait_for: [myappdb, api]
      references: [myappdb]
"""


class TestManifestParsing:
    def test_to_registry(self):
        registry = AppHostManifest.from_yaml(MANIFEST_YAML).to_registry()
        assert registry.name == "myapp"
        assert registry.names() == ["postgres", "myappdb", "api", "myapp"]
        assert [p.name for p in registry.parameters()] == ["username", "password"]
        assert all(p.secret for p in registry.parameters())

    def test_references_converted(self):
        registry = AppHostManifest.from_yaml(MANIFEST_YAML).to_registry()
        postgres = registry.get("postgres")
        assert postgres.lifetime is Lifetime.PERSISTENT
        assert postgres.config["password"] == ParameterRef("password")
        assert postgres.volumes[0].source == "dbserver-volume"
        assert postgres.volumes[0].target == ""

        api = registry.get("api")
        assert api.environment["DB"] == ResourceValueRef("myappdb", "connection_string")
        assert api.environment["DEBUG"] is True
        assert api.endpoints[0].port == 18080
        assert api.readiness.type == "http"

    def test_string_command_split(self):
        registry = AppHostManifest.from_yaml(MANIFEST_YAML).to_registry()
        assert registry.get("myapp").command == ("python", "-m", "myapp", "--verbose")

    def test_graph_from_manifest(self):
        graph = build_graph(AppHostManifest.from_yaml(MANIFEST_YAML).to_registry())
        assert graph.order == ("postgres", "myappdb", "api", "myapp")
        assert graph.edge("api", "myappdb").strength is EdgeStrength.REFERENCE_ONLY
        assert graph.edge("myapp", "myappdb").strength is EdgeStrength.WAIT_FOR

    def test_declarations_are_immutable(self):
        registry = AppHostManifest.from_yaml(MANIFEST_YAML).to_registry()
        with pytest.raises(TypeError):
            registry.get("api").environment["NEW"] = "x"


class TestManifestErrors:
    def test_invalid_yaml(self):
        with pytest.raises(ManifestError, match="Invalid YAML"):
            AppHostManifest.from_yaml("spec: [unclosed")

    def test_not_a_mapping(self):
        with pytest.raises(ManifestError, match="mapping"):
            AppHostManifest.from_yaml("- a\n- b\n")

    def test_unknown_field(self):
        content = MANIFEST_YAML.replace("lifetime: persistent", "lifespan: persistent")
        with pytest.raises(ManifestError) as exc_info:
            AppHostManifest.from_yaml(content, path="apphost.yaml")
        assert "lifespan" in str(exc_info.value)
        assert str(exc_info.value).startswith("apphost.yaml:")

    def test_bad_value_reference(self):
        content = MANIFEST_YAML.replace("DB: {reference: myappdb}", "DB: {reference: myappdb, value: password}")
        with pytest.raises(ManifestError):
            AppHostManifest.from_yaml(content)

    def test_validation_error_never_echoes_values(self):
        content = MANIFEST_YAML.replace("port: 18080", "port: not-a-port-hunter2")
        with pytest.raises(ManifestError) as exc_info:
            AppHostManifest.from_yaml(content)
        assert "hunter2" not in str(exc_info.value)

    def test_log_readiness_needs_pattern(self):
        with pytest.raises(ValueError):
            ResourceSpec.model_validate({"name": "x", "kind": "process", "readiness": {"type": "log"}})

    def test_no_resources(self):
        content = "metadata: {name: empty}\nspec: {resources: []}\n"
        with pytest.raises(ManifestError):
            AppHostManifest.from_yaml(content)

    def test_duplicate_name_surfaces_as_declaration_error(self):
        content = MANIFEST_YAML.replace("name: myappdb", "name: postgres", 1)
        with pytest.raises(DuplicateNameError):
            AppHostManifest.from_yaml(content).to_registry()

    def test_missing_file(self, tmp_path):
        with pytest.raises(ManifestError, match="Cannot read manifest"):
            load_manifest(tmp_path / "missing.yaml")


class TestLoadManifest:
    def test_load_from_file(self, tmp_path):
        path = tmp_path / "apphost.yaml"
        path.write_text(MANIFEST_YAML, encoding="utf-8")
        registry = load_manifest(path)
        assert len(registry) == 4
        assert not registry.frozen

    def test_cycle_in_manifest(self, tmp_path):
        path = tmp_path / "apphost.yaml"
        path.write_text(
            "metadata: {name: loop}\n"
            "spec:\n"
            "  resources:\n"
            "    - {name: A, kind: container, image: busybox, wait_for: [B]}\n"
            "    - {name: B, kind: container, image: busybox, wait_for: [A]}\n",
            encoding="utf-8",
        )
        with pytest.raises(CyclicDependencyError):
            build_graph(load_manifest(path))

    def test_example_manifest(self):
        graph = build_graph(load_manifest(EXAMPLE_MANIFEST))
        order = graph.order
        assert order.index("postgres") < order.index("myappdb") < order.index("myapp")
        assert order.index("docling") < order.index("myapp")
        assert order.index("qdrant") < order.index("myapp")
        assert graph.edge("pgadmin", "postgres").strength is EdgeStrength.REFERENCE_ONLY
        assert graph.resource("messaging").is_persistent
