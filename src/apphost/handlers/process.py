"""Process handler - runs the hosted application as a child process.

The command line is the resource's ``command`` followed by its resolved
``args``. The child inherits the host environment plus the resource's
resolved environment (including injected ``ConnectionStrings__*`` and
``services__*`` entries). Output is captured line by line into a bounded
buffer that backs ``logs()`` and log-pattern readiness.

Readiness: FAILED once the process has exited; otherwise READY, or, when
the resource declares endpoints, READY once the first endpoint accepts
TCP connections.

Config options:
    working_dir: Working directory (defaults to the current one)
"""

from __future__ import annotations

import asyncio
import os
import subprocess
import threading
from collections import deque
from dataclasses import dataclass, field

from apphost.core.errors import DeclarationError
from apphost.core.logging import get_logger, redact_text
from apphost.core.secrets import reveal
from apphost.handlers.base import HandlerContext, ResourceHandler, run_to_completion
from apphost.handlers.container import env_string
from apphost.handlers.health import check_tcp
from apphost.orchestration.models import ReadinessStatus, Resource, ResourceHandle

logger = get_logger(__name__)


@dataclass
class _RunningProcess:
    popen: subprocess.Popen
    output: deque = field(default_factory=lambda: deque(maxlen=500))
    reader: threading.Thread | None = None


class ProcessHandler(ResourceHandler):
    """Handler for the ``process`` kind."""

    kind = "process"

    def __init__(self, output_lines: int = 500) -> None:
        self._output_lines = output_lines
        self._processes: dict[str, _RunningProcess] = {}
        self._lock = threading.Lock()

    def validate(self, resource: Resource) -> None:
        if not resource.command:
            raise DeclarationError(
                f"Resource '{resource.name}' of kind 'process' needs a command"
            ).with_context(resource=resource.name, kind=resource.kind)
        if resource.is_persistent:
            raise DeclarationError(
                f"Resource '{resource.name}': processes cannot have a persistent lifetime"
            ).with_context(resource=resource.name, kind=resource.kind)

    async def start(self, ctx: HandlerContext) -> ResourceHandle:
        return await run_to_completion(self._start_sync, ctx)

    def _start_sync(self, ctx: HandlerContext) -> ResourceHandle:
        resolved = ctx.resolved
        argv = [*ctx.resource.command, *(env_string(a) for a in resolved.args)]
        env = {**os.environ, **{k: env_string(v) for k, v in resolved.environment.items()}}
        cwd = resolved.config.get("working_dir")

        popen = subprocess.Popen(
            argv,
            cwd=reveal(cwd) if cwd else None,
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            stdin=subprocess.DEVNULL,
            text=True,
            bufsize=1,
        )
        running = _RunningProcess(popen, deque(maxlen=self._output_lines))
        running.reader = threading.Thread(
            target=self._pump_output,
            args=(ctx.name, running),
            name=f"apphost-output-{ctx.name}",
            daemon=True,
        )
        running.reader.start()
        with self._lock:
            self._processes[ctx.name] = running

        logger.info("process.started", resource=ctx.name, pid=popen.pid, program=argv[0])

        handle = ResourceHandle(
            resource=ctx.name,
            instance_id=str(popen.pid),
            details={"pid": popen.pid},
        )
        for endpoint in ctx.resource.endpoints:
            handle.ports[endpoint.name] = endpoint.port or endpoint.target_port
            handle.target_ports[endpoint.name] = endpoint.target_port
            handle.schemes[endpoint.name] = endpoint.scheme
        return handle

    @staticmethod
    def _pump_output(name: str, running: _RunningProcess) -> None:
        stream = running.popen.stdout
        if stream is None:
            return
        for line in stream:
            line = line.rstrip("\n")
            running.output.append(line)
            logger.debug("process.output", resource=name, line=redact_text(line))

    def _running(self, name: str) -> _RunningProcess | None:
        with self._lock:
            return self._processes.get(name)

    async def check_ready(self, ctx: HandlerContext, handle: ResourceHandle) -> ReadinessStatus:
        running = self._running(ctx.name)
        if running is None:
            handle.details["failure"] = "process not running"
            return ReadinessStatus.FAILED
        code = running.popen.poll()
        if code is not None:
            handle.details["failure"] = f"process exited with code {code}"
            return ReadinessStatus.FAILED
        if handle.ports:
            try:
                await check_tcp(handle.host, next(iter(handle.ports.values())))
            except (OSError, asyncio.TimeoutError):
                return ReadinessStatus.NOT_READY_YET
        return ReadinessStatus.READY

    async def stop(self, ctx: HandlerContext, handle: ResourceHandle | None) -> None:
        with self._lock:
            running = self._processes.pop(ctx.name, None)
        if running is None:
            return
        await asyncio.to_thread(self._terminate, running.popen, ctx.settings.stop_timeout_seconds)
        logger.info("process.stopped", resource=ctx.name, pid=running.popen.pid, returncode=running.popen.returncode)

    @staticmethod
    def _terminate(popen: subprocess.Popen, timeout: int) -> None:
        if popen.poll() is not None:
            return
        popen.terminate()
        try:
            popen.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            popen.kill()
            popen.wait()

    async def logs(self, ctx: HandlerContext, handle: ResourceHandle) -> str:
        running = self._running(ctx.name)
        if running is None:
            return ""
        return "\n".join(running.output)


__all__ = ["ProcessHandler"]
