"""Kind presets for the shipped handlers.

Each ``KindSpec`` carries what a handler needs to run, health-check and
connect to one kind of resource: image, endpoints, environment template,
health command and connection string template. Adding a kind is a single
``KindSpec`` instantiation plus a registry entry.

Templates use ``str.format`` placeholders. Available fields are the
resource's resolved ``config`` values (after the kind's ``defaults``) plus
``host``, ``port`` (first endpoint) and ``<endpoint>_port`` for every
endpoint. A rendered value that used a secret field is returned as a
``SecretValue``.

Key Concepts:
    KindSpec: Frozen dataclass, one per kind.
    KINDS: Registry dict mapping kind tag -> KindSpec.
    get_kind(): Case-insensitive lookup.

Tags:
    kinds, presets, containers, postgres, rabbitmq, qdrant, pgadmin
"""

from __future__ import annotations

import string
from collections.abc import Mapping
from dataclasses import dataclass, field

from apphost.core.secrets import SecretValue, reveal
from apphost.orchestration.exceptions import UnknownKindError
from apphost.orchestration.models import Endpoint

_FORMATTER = string.Formatter()


def template_fields(template: str) -> set[str]:
    """Names of the ``{placeholders}`` used in *template*."""
    return {name for _, name, _, _ in _FORMATTER.parse(template) if name}


def render(template: str, values: Mapping[str, object]) -> str | SecretValue:
    """Format *template*; wrap the result when a secret value went into it."""
    used = template_fields(template)
    missing = used - set(values)
    if missing:
        raise KeyError(f"Template needs undefined value(s): {', '.join(sorted(missing))}")
    secret = any(isinstance(values[name], SecretValue) for name in used)
    text = template.format(**{name: reveal(values[name]) for name in used})
    return SecretValue(text) if secret else text


@dataclass(frozen=True)
class KindSpec:
    """Preset for one resource kind."""

    name: str
    """Kind tag used in manifests (e.g. 'postgres')."""

    handler: str = "container"
    """Which handler runs it: container, process or database."""

    image: str | None = None
    """Default container image with pinned tag (None: the resource must declare one)."""

    endpoints: tuple[Endpoint, ...] = ()
    """Default endpoints; resource endpoints with the same name override these."""

    env: dict[str, str] = field(default_factory=dict)
    """Environment template, rendered against the resource's config."""

    healthcheck_cmd: tuple[str, ...] = ()
    """Docker HEALTHCHECK CMD, rendered against the resource's config."""

    health_path: str | None = None
    """HTTP path that answers 2xx once ready (checked on health_endpoint)."""

    health_endpoint: str | None = None
    """Endpoint used for health_path (first endpoint if None)."""

    connection_string_template: str | None = None
    """Published connection string; see module docstring for placeholders."""

    data_path: str | None = None
    """Container path a data volume mounts to when the volume gives no target."""

    defaults: dict[str, str] = field(default_factory=dict)
    """Default config values."""

    secret_config: frozenset[str] = frozenset()
    """Config keys that must be secret parameters when supplied by reference."""

    parent_kind: str | None = None
    """Required kind of the parent resource (child resources only)."""

    notes: str = ""

    def config_values(self, config: Mapping[str, object]) -> dict[str, object]:
        """Kind defaults overlaid with the resource's resolved config."""
        values: dict[str, object] = dict(self.defaults)
        values.update({k: v for k, v in config.items() if v is not None})
        return values

    def merge_endpoints(self, declared: tuple[Endpoint, ...]) -> tuple[Endpoint, ...]:
        """Kind endpoints with same-named declared endpoints substituted, then extras."""
        by_name = {ep.name: ep for ep in declared}
        merged = [by_name.pop(ep.name, ep) for ep in self.endpoints]
        merged.extend(ep for ep in declared if ep.name in by_name)
        return tuple(merged)


# ---------------------------------------------------------------------------
# Presets
# ---------------------------------------------------------------------------

POSTGRES = KindSpec(
    name="postgres",
    image="docker.io/library/postgres:17.4",
    endpoints=(Endpoint("tcp", 5432),),
    env={
        "POSTGRES_USER": "{username}",
        "POSTGRES_PASSWORD": "{password}",
    },
    healthcheck_cmd=("pg_isready", "-U", "{username}"),
    connection_string_template="Host={host};Port={port};Username={username};Password={password}",
    data_path="/var/lib/postgresql/data",
    defaults={"username": "postgres", "password": "postgres"},
    secret_config=frozenset({"password"}),
    notes="Password defaults to 'postgres' for local development; bind a secret parameter otherwise.",
)

POSTGRES_DATABASE = KindSpec(
    name="postgres-database",
    handler="database",
    connection_string_template="{parent}Database={database}",
    parent_kind="postgres",
    notes="Created inside the parent server with createdb; the parent must be a postgres resource.",
)

RABBITMQ = KindSpec(
    name="rabbitmq",
    image="docker.io/library/rabbitmq:4.0-management",
    endpoints=(
        Endpoint("tcp", 5672),
        Endpoint("management", 15672, scheme="http"),
    ),
    env={
        "RABBITMQ_DEFAULT_USER": "{username}",
        "RABBITMQ_DEFAULT_PASS": "{password}",
    },
    healthcheck_cmd=("rabbitmq-diagnostics", "-q", "ping"),
    connection_string_template="amqp://{username}:{password}@{host}:{port}",
    data_path="/var/lib/rabbitmq",
    defaults={"username": "guest", "password": "guest"},
    secret_config=frozenset({"password"}),
)

QDRANT = KindSpec(
    name="qdrant",
    image="docker.io/qdrant/qdrant:v1.13.4",
    endpoints=(
        Endpoint("grpc", 6334, scheme="http"),
        Endpoint("http", 6333, scheme="http"),
    ),
    env={"QDRANT__SERVICE__API_KEY": "{api_key}"},
    health_path="/readyz",
    health_endpoint="http",
    connection_string_template="Endpoint=http://{host}:{grpc_port};Key={api_key}",
    data_path="/qdrant/storage",
    defaults={"api_key": ""},
    secret_config=frozenset({"api_key"}),
)

PGADMIN = KindSpec(
    name="pgadmin",
    image="docker.io/dpage/pgadmin4:9.1",
    endpoints=(Endpoint("http", 80, scheme="http"),),
    env={
        "PGADMIN_CONFIG_MASTER_PASSWORD_REQUIRED": "False",
        "PGADMIN_CONFIG_SERVER_MODE": "False",
        "PGADMIN_DEFAULT_EMAIL": "{email}",
        "PGADMIN_DEFAULT_PASSWORD": "{password}",
    },
    health_path="/misc/ping",
    defaults={"email": "admin@domain.com", "password": "admin"},
)

CONTAINER = KindSpec(
    name="container",
    notes="Generic container; the resource declares image, endpoints and environment.",
)

PROCESS = KindSpec(
    name="process",
    handler="process",
    notes="Host process; the resource declares command and args.",
)


KINDS: dict[str, KindSpec] = {
    spec.name: spec
    for spec in (POSTGRES, POSTGRES_DATABASE, RABBITMQ, QDRANT, PGADMIN, CONTAINER, PROCESS)
}


def get_kind(name: str) -> KindSpec:
    """Look up a kind preset (case-insensitive).

    Raises:
        UnknownKindError: no preset for *name*
    """
    spec = KINDS.get(name.lower())
    if spec is None:
        raise UnknownKindError(name, available=sorted(KINDS))
    return spec


__all__ = [
    "CONTAINER",
    "KINDS",
    "KindSpec",
    "PGADMIN",
    "POSTGRES",
    "POSTGRES_DATABASE",
    "PROCESS",
    "QDRANT",
    "RABBITMQ",
    "get_kind",
    "render",
    "template_fields",
]
