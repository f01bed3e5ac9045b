"""Thin wrapper around the ``docker`` CLI.

Every call is a blocking ``subprocess.run``; async handlers call these
methods through ``asyncio.to_thread``. No ``docker-py`` dependency, so any
runtime exposing a ``docker`` CLI (Docker Desktop, Podman, Colima) works.

Environment values are never placed on the command line. ``run()`` passes
``--env KEY`` and hands the values to the docker client through its own
process environment, so secrets stay out of process listings, logs and
error messages.

Tags:
    container, docker, subprocess, cli
"""

from __future__ import annotations

import json
import os
import shutil
import subprocess
from collections.abc import Mapping

from apphost.core.errors import ErrorCategory, ResourceError
from apphost.core.logging import get_logger, redact_text

logger = get_logger(__name__)


class DockerNotFoundError(ResourceError):
    """Raised when the docker CLI is not on PATH."""

    def __init__(self) -> None:
        super().__init__(
            "Docker CLI not found on PATH. Install Docker or add it to PATH.",
            category=ErrorCategory.RESOURCE,
        )


class DockerCommandError(ResourceError):
    """Raised when a docker command exits non-zero or times out.

    The message carries the subcommand and docker's stderr (redacted),
    never the full argument list.
    """

    def __init__(self, subcommand: str, returncode: int | None, stderr: str = ""):
        self.subcommand = subcommand
        self.returncode = returncode
        if returncode is None:
            message = f"docker {subcommand} timed out"
        else:
            message = f"docker {subcommand} failed (exit {returncode})"
        detail = redact_text(stderr.strip())
        if detail:
            message += f": {detail}"
        super().__init__(message)


class DockerCli:
    """Runs docker CLI commands.

    Args:
        docker_cmd: Path to the docker binary (looked up on PATH if None)
        timeout: Default per-command timeout in seconds
    """

    def __init__(self, docker_cmd: str | None = None, timeout: int = 120) -> None:
        self._docker_cmd = docker_cmd or self._find_docker()
        self.timeout = timeout

    @staticmethod
    def _find_docker() -> str:
        docker = shutil.which("docker")
        if docker is None:
            raise DockerNotFoundError()
        return docker

    @staticmethod
    def is_available() -> bool:
        """Check docker is installed and the daemon answers."""
        docker = shutil.which("docker")
        if docker is None:
            return False
        try:
            result = subprocess.run([docker, "info"], capture_output=True, timeout=10)
        except (subprocess.TimeoutExpired, OSError):
            return False
        return result.returncode == 0

    # ------------------------------------------------------------------
    # Raw execution
    # ------------------------------------------------------------------

    def execute(
        self,
        args: list[str],
        *,
        check: bool = True,
        timeout: int | None = None,
        env: Mapping[str, str] | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run ``docker <args>``.

        Raises:
            DockerCommandError: non-zero exit (when check) or timeout
        """
        timeout = timeout or self.timeout
        subcommand = args[0] if args else ""
        logger.debug("docker.exec", subcommand=subcommand, argc=len(args))
        process_env = {**os.environ, **env} if env else None
        try:
            result = subprocess.run(
                [self._docker_cmd, *args],
                capture_output=True,
                text=True,
                timeout=timeout,
                env=process_env,
            )
        except subprocess.TimeoutExpired as exc:
            raise DockerCommandError(subcommand, None) from exc
        if check and result.returncode != 0:
            raise DockerCommandError(subcommand, result.returncode, result.stderr)
        return result

    # ------------------------------------------------------------------
    # Containers
    # ------------------------------------------------------------------

    def run(self, args: list[str], env: Mapping[str, str] | None = None) -> str:
        """``docker run --detach``; returns the short container id.

        *args* is everything after ``--detach`` (options, image, command).
        *env* values are forwarded with ``--env KEY`` only.
        """
        env = dict(env or {})
        env_flags: list[str] = []
        for key in env:
            env_flags.extend(["--env", key])
        result = self.execute(["run", "--detach", *env_flags, *args], env=env)
        return result.stdout.strip()[:12]

    def start(self, name: str) -> None:
        self.execute(["start", name])

    def stop_and_remove(self, name: str, timeout: int = 10) -> None:
        """Stop then remove a container; missing containers are not an error."""
        self.execute(["stop", "--time", str(timeout), name], check=False)
        self.execute(["rm", "--force", name], check=False)

    def remove(self, name: str) -> None:
        self.execute(["rm", "--force", name], check=False)

    def inspect(self, name: str) -> dict | None:
        """``docker inspect`` as a dict, or None when the container does not exist."""
        result = self.execute(["inspect", "--type", "container", name], check=False)
        if result.returncode != 0 or not result.stdout.strip():
            return None
        data = json.loads(result.stdout)
        return data[0] if data else None

    def status(self, name: str) -> str:
        """Container status (running, exited, created...) or ``not_found``."""
        result = self.execute(
            ["inspect", "--format", "{{.State.Status}}", name],
            check=False,
        )
        return result.stdout.strip() if result.returncode == 0 else "not_found"

    def health(self, name: str) -> str:
        """Health status (healthy, unhealthy, starting) or ``none`` without a healthcheck."""
        result = self.execute(
            ["inspect", "--format", "{{if .State.Health}}{{.State.Health.Status}}{{else}}none{{end}}", name],
            check=False,
        )
        status = result.stdout.strip()
        return status if status and result.returncode == 0 else "unknown"

    def mapped_port(self, name: str, internal_port: int) -> int | None:
        """Host port mapped to *internal_port*, or None if it is not published."""
        result = self.execute(["port", name, f"{internal_port}/tcp"], check=False)
        if result.returncode != 0:
            return None
        for line in result.stdout.strip().splitlines():
            # "0.0.0.0:12345" or "[::]:12345"
            port = line.rsplit(":", 1)[-1].strip()
            if port.isdigit():
                return int(port)
        return None

    def logs(self, name: str, tail: int = 200) -> str:
        result = self.execute(["logs", "--tail", str(tail), name], check=False)
        return result.stdout + result.stderr

    def exec(self, name: str, command: list[str], env: Mapping[str, str] | None = None) -> str:
        """``docker exec`` in a running container; returns stdout."""
        env = dict(env or {})
        env_flags: list[str] = []
        for key in env:
            env_flags.extend(["--env", key])
        result = self.execute(["exec", *env_flags, name, *command], env=env)
        return result.stdout

    # ------------------------------------------------------------------
    # Networks
    # ------------------------------------------------------------------

    def ensure_network(self, network: str, labels: Mapping[str, str] | None = None) -> None:
        """Create a bridge network if it does not exist yet."""
        existing = self.execute(["network", "inspect", network], check=False)
        if existing.returncode == 0:
            return
        args = ["network", "create", "--driver", "bridge"]
        for key, value in (labels or {}).items():
            args.extend(["--label", f"{key}={value}"])
        self.execute([*args, network], check=False)
        logger.info("docker.network_created", network=network)


__all__ = ["DockerCli", "DockerCommandError", "DockerNotFoundError"]
