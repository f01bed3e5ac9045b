"""Pydantic models for AppHost manifest validation.

Parses YAML manifests into the frozen declarations of
:mod:`apphost.orchestration.models` and registers them into a
:class:`ResourceRegistry`. Shape errors (wrong types, unknown fields) are
reported here as ManifestError; naming errors (duplicates, unknown
references, cycles) are left to the registry and the graph builder so they
surface with their own error types.

Usage::

    from apphost.orchestration.loader import load_manifest

    registry = load_manifest("apphost.yaml")
    graph = build_graph(registry)

Example YAML::

    apiVersion: apphost.io/v1
    kind: AppHost
    metadata:
      name: myapp
    spec:
      parameters:
        - name: password
          secret: true
      resources:
        - name: postgres
          kind: postgres
          lifetime: persistent
          volumes:
            - source: dbserver-volume
        - name: myappdb
          kind: postgres-database
          parent: postgres
        - name: myapp
          kind: process
          command: [python, -m, myapp]
          references: [myappdb]
          wait_for: [myappdb]

Configuration values (``config``, ``environment``, ``args``) are literals,
``{parameter: <name>}`` or ``{reference: <resource>, value: <value>,
endpoint: <endpoint>}``.

Tags:
    apphost, manifest, yaml, declarative, pydantic
"""

from __future__ import annotations

import shlex
from pathlib import Path
from typing import Any, Literal, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from apphost.core.logging import get_logger
from apphost.orchestration.exceptions import ManifestError
from apphost.orchestration.models import (
    RESOURCE_VALUES,
    ConfigValue,
    Endpoint,
    Lifetime,
    Parameter,
    ParameterRef,
    ReadinessSpec,
    Resource,
    ResourceValueRef,
    VolumeMount,
)
from apphost.orchestration.registry import ResourceRegistry

logger = get_logger(__name__)

API_VERSION = "apphost.io/v1"


class ParameterRefSpec(BaseModel):
    """``{parameter: name}``"""

    model_config = ConfigDict(extra="forbid")

    parameter: str = Field(..., min_length=1)

    def to_ref(self) -> ParameterRef:
        return ParameterRef(self.parameter)


class ResourceValueRefSpec(BaseModel):
    """``{reference: resource, value: connection_string, endpoint: http}``"""

    model_config = ConfigDict(extra="forbid")

    reference: str = Field(..., min_length=1)
    value: str = Field(default="connection_string")
    endpoint: str | None = None

    @field_validator("value")
    @classmethod
    def validate_value(cls, v: str) -> str:
        if v not in RESOURCE_VALUES:
            raise ValueError(f"value must be one of: {', '.join(sorted(RESOURCE_VALUES))}")
        return v

    def to_ref(self) -> ResourceValueRef:
        return ResourceValueRef(self.reference, self.value, self.endpoint)


ConfigValueSpec = Union[ParameterRefSpec, ResourceValueRefSpec, bool, int, float, str, None]


def _to_value(value: ConfigValueSpec) -> ConfigValue:
    if isinstance(value, (ParameterRefSpec, ResourceValueRefSpec)):
        return value.to_ref()
    return value


class ParameterSpec(BaseModel):
    """A parameter declaration."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1)
    secret: bool = False
    default: str | None = None

    def to_parameter(self) -> Parameter:
        return Parameter(self.name, secret=self.secret, default=self.default)


class VolumeSpec(BaseModel):
    """A volume mount; ``target`` defaults to the kind's data path."""

    model_config = ConfigDict(extra="forbid")

    source: str = Field(..., min_length=1)
    target: str = ""
    read_only: bool = False
    type: Literal["volume", "bind"] = "volume"

    def to_volume(self) -> VolumeMount:
        return VolumeMount(self.source, self.target, self.read_only, named=self.type == "volume")


class EndpointSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1)
    target_port: int = Field(..., ge=1, le=65535)
    port: int | None = Field(default=None, ge=1, le=65535)
    scheme: str = "tcp"

    def to_endpoint(self) -> Endpoint:
        return Endpoint(self.name, self.target_port, self.port, self.scheme)


class ReadinessSpecModel(BaseModel):
    """Readiness override for one resource."""

    model_config = ConfigDict(extra="forbid")

    type: Literal["handler", "http", "log", "delay"] = "handler"
    timeout_seconds: float | None = Field(default=None, gt=0)
    path: str = "/"
    endpoint: str | None = None
    pattern: str | None = None
    delay_seconds: float = Field(default=0.0, ge=0)

    @model_validator(mode="after")
    def validate_pattern(self) -> ReadinessSpecModel:
        if self.type == "log" and not self.pattern:
            raise ValueError("log readiness needs a pattern")
        return self

    def to_readiness(self) -> ReadinessSpec:
        return ReadinessSpec(
            type=self.type,
            timeout_seconds=self.timeout_seconds,
            path=self.path,
            endpoint=self.endpoint,
            pattern=self.pattern,
            delay_seconds=self.delay_seconds,
        )


class ResourceSpec(BaseModel):
    """A resource declaration."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, description="Unique resource name")
    kind: str = Field(..., min_length=1, description="Handler kind tag")
    image: str | None = None
    command: list[str] = Field(default_factory=list)
    args: list[ConfigValueSpec] = Field(default_factory=list)
    config: dict[str, ConfigValueSpec] = Field(default_factory=dict)
    environment: dict[str, ConfigValueSpec] = Field(default_factory=dict)
    wait_for: list[str] = Field(default_factory=list)
    references: list[str] = Field(default_factory=list)
    parent: str | None = None
    lifetime: Lifetime = Lifetime.SESSION
    volumes: list[VolumeSpec] = Field(default_factory=list)
    endpoints: list[EndpointSpec] = Field(default_factory=list)
    readiness: ReadinessSpecModel | None = None

    @field_validator("command", mode="before")
    @classmethod
    def split_command(cls, v: Any) -> Any:
        if isinstance(v, str):
            return shlex.split(v)
        return v

    def to_resource(self) -> Resource:
        return Resource(
            name=self.name,
            kind=self.kind,
            image=self.image,
            command=tuple(self.command),
            args=tuple(_to_value(a) for a in self.args),
            config={k: _to_value(v) for k, v in self.config.items()},
            environment={k: _to_value(v) for k, v in self.environment.items()},
            wait_for=tuple(self.wait_for),
            references=tuple(self.references),
            parent=self.parent,
            lifetime=self.lifetime,
            volumes=tuple(v.to_volume() for v in self.volumes),
            endpoints=tuple(e.to_endpoint() for e in self.endpoints),
            readiness=self.readiness.to_readiness() if self.readiness else None,
        )


class MetadataSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, description="Application name")
    description: str = ""


class AppHostSpecSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    parameters: list[ParameterSpec] = Field(default_factory=list)
    resources: list[ResourceSpec] = Field(..., min_length=1)


class AppHostManifest(BaseModel):
    """Root model of an AppHost manifest."""

    model_config = ConfigDict(extra="forbid")

    apiVersion: Literal["apphost.io/v1"] = Field(default=API_VERSION)
    kind: Literal["AppHost"] = Field(default="AppHost")
    metadata: MetadataSpec
    spec: AppHostSpecSection

    def to_registry(self) -> ResourceRegistry:
        """
        Register every parameter then every resource, in file order.

        Raises:
            DuplicateNameError: a name is declared twice
        """
        registry = ResourceRegistry(name=self.metadata.name)
        for parameter in self.spec.parameters:
            registry.add_parameter(parameter.to_parameter())
        for resource in self.spec.resources:
            registry.register(resource.to_resource())
        return registry

    @classmethod
    def from_yaml(cls, yaml_content: str, path: str | None = None) -> AppHostManifest:
        """
        Parse and validate YAML content.

        Raises:
            ManifestError: invalid YAML or schema violation
        """
        try:
            data = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise ManifestError(f"Invalid YAML: {e}", path=path) from e
        if not isinstance(data, dict):
            raise ManifestError("Manifest must be a mapping", path=path)
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ManifestError(_format_validation_error(e), path=path) from None

    @classmethod
    def from_yaml_file(cls, path: str | Path) -> AppHostManifest:
        try:
            content = Path(path).read_text(encoding="utf-8")
        except OSError as e:
            raise ManifestError(f"Cannot read manifest: {e.strerror}", path=str(path)) from e
        return cls.from_yaml(content, path=str(path))


def _format_validation_error(error: ValidationError) -> str:
    """Field locations and messages only; input values are left out."""
    lines = []
    for item in error.errors(include_input=False, include_url=False):
        location = ".".join(str(part) for part in item["loc"])
        lines.append(f"{location}: {item['msg']}")
    return "Invalid manifest:\n  " + "\n  ".join(lines)


def load_manifest(path: str | Path) -> ResourceRegistry:
    """Load a manifest file into a (not yet frozen) registry."""
    manifest = AppHostManifest.from_yaml_file(path)
    registry = manifest.to_registry()
    logger.info(
        "loader.manifest_loaded",
        path=str(path),
        app=manifest.metadata.name,
        resources=len(manifest.spec.resources),
        parameters=len(manifest.spec.parameters),
    )
    return registry


__all__ = [
    "API_VERSION",
    "AppHostManifest",
    "ParameterSpec",
    "ResourceSpec",
    "load_manifest",
]
