"""Parameter resolver - memoized, secret-aware parameter values.

Resolution order for one parameter:
1. Memo (a parameter is resolved at most once per run)
2. The secret source for secret parameters, the plain source otherwise
3. The declared default
4. The interactive source, when one is configured
5. MissingParameterError

A failure inside a source becomes ResolutionError naming the parameter
and the source; the value itself never appears in messages or logs.
Resolved secrets are wrapped in SecretValue and registered with the
logging redactor.

Thread-safe: resolution may be called from worker threads
(``asyncio.to_thread``); one lock per parameter guarantees a single
source query even under concurrent first calls.
"""

from __future__ import annotations

import threading

from apphost.core.logging import get_logger, register_secret
from apphost.core.secrets import SecretValue, ValueSource
from apphost.orchestration.exceptions import MissingParameterError, ResolutionError
from apphost.orchestration.models import Parameter

logger = get_logger(__name__)

ParameterValue = str | SecretValue


class ParameterResolver:
    """
    Resolves Parameter declarations to values, once per run.

    Args:
        plain_source: Source for non-secret parameters
        secret_source: Capability-restricted source for secret parameters;
            only secret parameters are ever looked up here
        interactive_source: Optional fallback (e.g. PromptValueSource)

    Example:
        resolver = ParameterResolver(EnvValueSource(), default_secret_source())
        password = resolver.resolve(Parameter("password", secret=True))
        str(password)   # "[REDACTED]"
    """

    def __init__(
        self,
        plain_source: ValueSource,
        secret_source: ValueSource | None = None,
        interactive_source: ValueSource | None = None,
    ) -> None:
        self._plain_source = plain_source
        self._secret_source = secret_source or plain_source
        self._interactive_source = interactive_source
        self._memo: dict[str, ParameterValue] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, name: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(name)
            if lock is None:
                lock = self._locks[name] = threading.Lock()
            return lock

    def is_resolved(self, name: str) -> bool:
        return name in self._memo

    def resolve(self, parameter: Parameter) -> ParameterValue:
        """Return the parameter's value; see module docstring for the order."""
        cached = self._memo.get(parameter.name)
        if cached is not None:
            return cached

        with self._lock_for(parameter.name):
            cached = self._memo.get(parameter.name)
            if cached is not None:
                return cached

            raw = self._lookup(parameter)
            value: ParameterValue
            if parameter.secret:
                register_secret(raw)
                value = SecretValue(raw)
            else:
                value = raw
            self._memo[parameter.name] = value

        logger.debug(
            "parameters.resolved",
            parameter=parameter.name,
            secret=parameter.secret,
        )
        return value

    def _lookup(self, parameter: Parameter) -> str:
        source = self._secret_source if parameter.secret else self._plain_source
        value = self._query(source, parameter)
        if value is not None:
            return value

        if parameter.default is not None:
            return parameter.default

        if self._interactive_source is not None:
            value = self._query(self._interactive_source, parameter)
            if value is not None:
                return value

        tried = source.describe()
        if self._interactive_source is not None:
            tried += f", {self._interactive_source.describe()}"
        logger.warning("parameters.missing", parameter=parameter.name, tried=tried)
        raise MissingParameterError(parameter.name, tried=tried)

    def _query(self, source: ValueSource, parameter: Parameter) -> str | None:
        try:
            return source.get(parameter.name, secret=parameter.secret)
        except Exception as e:
            logger.warning(
                "parameters.source_failed",
                parameter=parameter.name,
                source=source.describe(),
                error_type=type(e).__name__,
            )
            raise ResolutionError(parameter.name, source.describe(), e) from e


__all__ = ["ParameterResolver", "ParameterValue"]
