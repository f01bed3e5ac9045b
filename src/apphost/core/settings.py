"""Runtime settings for an orchestration run.

Pydantic v2 model whose every field can be overridden through an
``APPHOST_*`` environment variable, so CI can tighten readiness timeouts
or switch to JSON logs without touching the manifest.

Override precedence: kwargs > env vars > field defaults.

Example::

    settings = AppHostSettings.from_env(readiness_timeout_seconds=30)
    settings.run_id        # auto-generated 12-char hex id

Tags:
    config, settings, pydantic, environment, apphost
"""

from __future__ import annotations

import os
import uuid
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator


class AppHostSettings(BaseModel):
    """Settings shared by the scheduler, prober, handlers and CLI."""

    # Readiness
    readiness_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Default per-resource readiness timeout",
    )
    poll_interval_seconds: float = Field(
        default=1.0,
        gt=0,
        description="First readiness poll delay (doubles up to max_poll_interval_seconds)",
    )
    max_poll_interval_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Upper bound of the readiness poll delay",
    )

    # Lifecycle
    stop_timeout_seconds: int = Field(
        default=10,
        ge=0,
        description="Grace period given to a resource when it is stopped",
    )
    network: str | None = Field(
        default=None,
        description="Docker network joined by every container (default bridge if not set)",
    )
    label_prefix: str = Field(
        default="apphost",
        description="Label prefix used to tag containers started by apphost",
    )

    # Parameters
    secrets_dir: Path = Field(
        default=Path("/run/secrets"),
        description="Directory holding one file per secret parameter",
    )
    interactive: bool = Field(
        default=False,
        description="Prompt for parameters no value source supplies",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    log_format: Literal["json", "console", "auto"] = Field(default="auto")

    run_id: str = Field(default="", description="Unique run identifier (auto-generated)")

    @model_validator(mode="after")
    def _set_defaults(self) -> AppHostSettings:
        if not self.run_id:
            self.run_id = uuid.uuid4().hex[:12]
        if self.max_poll_interval_seconds < self.poll_interval_seconds:
            self.max_poll_interval_seconds = self.poll_interval_seconds
        return self

    @classmethod
    def from_env(cls, **overrides: Any) -> AppHostSettings:
        """Create settings from APPHOST_* environment variables."""
        env_map = {
            "readiness_timeout_seconds": "APPHOST_READINESS_TIMEOUT_SECONDS",
            "poll_interval_seconds": "APPHOST_POLL_INTERVAL_SECONDS",
            "max_poll_interval_seconds": "APPHOST_MAX_POLL_INTERVAL_SECONDS",
            "stop_timeout_seconds": "APPHOST_STOP_TIMEOUT_SECONDS",
            "network": "APPHOST_NETWORK",
            "label_prefix": "APPHOST_LABEL_PREFIX",
            "secrets_dir": "APPHOST_SECRETS_DIR",
            "interactive": "APPHOST_INTERACTIVE",
            "log_level": "APPHOST_LOG_LEVEL",
            "log_format": "APPHOST_LOG_FORMAT",
        }
        values: dict[str, Any] = {}
        for field_name, env_var in env_map.items():
            env_val = os.environ.get(env_var)
            if env_val is None:
                continue
            if field_name == "interactive":
                values[field_name] = env_val.lower() in ("true", "1", "yes")
            elif field_name == "log_level":
                values[field_name] = env_val.upper()
            elif field_name == "log_format":
                values[field_name] = env_val.lower()
            else:
                values[field_name] = env_val
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @property
    def json_logs(self) -> bool | None:
        """Tri-state for :func:`apphost.core.logging.configure_logging`."""
        if self.log_format == "auto":
            return None
        return self.log_format == "json"


__all__ = ["AppHostSettings"]
