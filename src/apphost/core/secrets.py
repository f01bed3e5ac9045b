"""Value sources for parameter resolution.

A value source answers one question: "what is the value of parameter
*name*?" It returns the value, or ``None`` when it has no opinion, and
raises only when the lookup itself breaks (unreadable file, backend down).
The :class:`~apphost.orchestration.parameters.ParameterResolver` owns
memoization and error translation; sources stay dumb.

Sources:
    - **EnvValueSource:** ``Parameters__<name>`` (the application host
      convention) or ``APPHOST_PARAM_<NAME>``
    - **FileValueSource:** one file per parameter (Docker/Kubernetes
      mounted secrets, ``/run/secrets`` by default)
    - **DictValueSource:** in-memory, for tests and programmatic use
    - **ChainedValueSource:** first non-``None`` answer wins
    - **PromptValueSource:** asks on the terminal (password-masked for
      secrets); only wired in when the run is interactive

Secret values are wrapped in :class:`SecretValue` by the resolver so that
printing, logging or formatting them shows ``[REDACTED]``.

Examples:
    >>> source = ChainedValueSource([
    ...     DictValueSource({"username": "guest"}),
    ...     EnvValueSource(),
    ... ])
    >>> source.get("username", secret=True)
    'guest'

Tags:
    secrets, parameters, credentials, configuration, apphost
"""

from __future__ import annotations

import os
import re
import threading
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from pathlib import Path

# ---------------------------------------------------------------------------
# SecretValue wrapper
# ---------------------------------------------------------------------------


class SecretValue:
    """Wrapper for secret values that prevents accidental logging.

    The string representation shows ``[REDACTED]`` instead of the value.
    Use ``.get_secret()`` to access the actual value.

    Example:
        >>> secret = SecretValue("my_password")
        >>> str(secret)
        '[REDACTED]'
        >>> secret.get_secret()
        'my_password'
    """

    __slots__ = ("_value",)

    def __init__(self, value: str):
        self._value = value

    def get_secret(self) -> str:
        """Get the actual secret value."""
        return self._value

    def __str__(self) -> str:
        return "[REDACTED]"

    def __repr__(self) -> str:
        return "SecretValue('[REDACTED]')"

    def __format__(self, format_spec: str) -> str:
        return format(str(self), format_spec)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, SecretValue):
            return self._value == other._value
        return False

    def __hash__(self) -> int:
        return hash(self._value)

    def __bool__(self) -> bool:
        return bool(self._value)

    def __len__(self) -> int:
        return len(self._value)


def reveal(value: object) -> str:
    """Plain string for a resolved value; unwraps :class:`SecretValue`.

    Only handlers call this, at the point where a value is handed to the
    process or container being started.
    """
    if isinstance(value, SecretValue):
        return value.get_secret()
    return str(value)


# ---------------------------------------------------------------------------
# Value sources
# ---------------------------------------------------------------------------


class ValueSource(ABC):
    """Abstract base for parameter value sources."""

    @abstractmethod
    def get(self, name: str, secret: bool = False) -> str | None:
        """Retrieve a value by parameter name.

        Args:
            name: Parameter name
            secret: Whether the parameter is declared secret

        Returns:
            The value, or None if this source does not supply it
        """
        ...

    def describe(self) -> str:
        """Short name used in error messages."""
        return type(self).__name__


_ENV_SAFE_RE = re.compile(r"[^A-Za-z0-9]")


class EnvValueSource(ValueSource):
    """Resolve values from environment variables.

    Tries, in order:
    1. ``Parameters__{name}`` (exact parameter name)
    2. ``APPHOST_PARAM_{NAME}`` (upper-cased, non-alphanumerics as ``_``)
    """

    def __init__(self, environ: Mapping[str, str] | None = None):
        self._environ = environ

    def get(self, name: str, secret: bool = False) -> str | None:
        environ = self._environ if self._environ is not None else os.environ
        patterns = [
            f"Parameters__{name}",
            f"APPHOST_PARAM_{_ENV_SAFE_RE.sub('_', name).upper()}",
        ]
        for pattern in patterns:
            value = environ.get(pattern)
            if value is not None:
                return value
        return None


class FileValueSource(ValueSource):
    """Resolve values from files, one file per parameter.

    Designed for Docker secrets (``/run/secrets/``) and Kubernetes mounted
    secrets. Caches file contents after first read. A file that exists but
    cannot be read raises, so the resolver reports a resolution failure
    instead of silently treating the parameter as missing.
    """

    def __init__(self, secrets_dir: str | Path = "/run/secrets"):
        self.secrets_dir = Path(secrets_dir)
        self._cache: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, name: str, secret: bool = False) -> str | None:
        if "/" in name or "\\" in name or name in (".", ".."):
            raise ValueError(f"Invalid parameter name for file lookup: {name!r}")

        with self._lock:
            if name in self._cache:
                return self._cache[name]

        secret_path = self.secrets_dir / name
        if not secret_path.is_file():
            return None

        content = secret_path.read_text(encoding="utf-8").strip()
        with self._lock:
            self._cache[name] = content
        return content

    def clear_cache(self) -> None:
        """Clear the file content cache."""
        with self._lock:
            self._cache.clear()


class DictValueSource(ValueSource):
    """In-memory value source for tests and embedding.

    NOT for production secrets: stores values in plain memory.
    """

    def __init__(self, values: Mapping[str, str] | None = None):
        self._values = dict(values) if values else {}

    def get(self, name: str, secret: bool = False) -> str | None:
        return self._values.get(name)

    def set(self, name: str, value: str) -> None:
        self._values[name] = value


class ChainedValueSource(ValueSource):
    """Try several sources in order; the first non-None answer wins."""

    def __init__(self, sources: Sequence[ValueSource]):
        self._sources = list(sources)

    @property
    def sources(self) -> list[ValueSource]:
        return list(self._sources)

    def get(self, name: str, secret: bool = False) -> str | None:
        for source in self._sources:
            value = source.get(name, secret=secret)
            if value is not None:
                return value
        return None

    def describe(self) -> str:
        return " -> ".join(s.describe() for s in self._sources)


class PromptValueSource(ValueSource):
    """Interactive fallback: ask for the value on the terminal.

    Prompts are serialized so concurrent resolutions do not interleave.
    Secret input is masked.
    """

    _prompt_lock = threading.Lock()

    def __init__(self, console: object | None = None):
        self._console = console

    def get(self, name: str, secret: bool = False) -> str | None:
        from rich.prompt import Prompt

        label = f"Value for {'secret ' if secret else ''}parameter [bold]{name}[/bold]"
        with self._prompt_lock:
            value = Prompt.ask(label, password=secret, console=self._console)
        return value or None


def default_plain_source(environ: Mapping[str, str] | None = None) -> ValueSource:
    """Plain parameters: environment only."""
    return EnvValueSource(environ)


def default_secret_source(
    secrets_dir: str | Path = "/run/secrets",
    environ: Mapping[str, str] | None = None,
) -> ValueSource:
    """Secret parameters: mounted secret files first, then environment."""
    return ChainedValueSource([FileValueSource(secrets_dir), EnvValueSource(environ)])


__all__ = [
    "ChainedValueSource",
    "DictValueSource",
    "EnvValueSource",
    "FileValueSource",
    "PromptValueSource",
    "SecretValue",
    "ValueSource",
    "default_plain_source",
    "default_secret_source",
    "reveal",
]
