"""Health-check callables shared by handlers and readiness criteria.

Each function is an ``async`` callable that returns ``True`` on success or
raises on failure, so callers decide how to map an exception (usually to
``ReadinessStatus.NOT_READY_YET``).

Examples:
    >>> from functools import partial
    >>> probe = partial(check_http, "http://localhost:6333/readyz")

Tags:
    health-checks, http, tcp, readiness
"""

from __future__ import annotations

import asyncio

import httpx

# ── Generic HTTP endpoint ────────────────────────────────────────────────


async def check_http(url: str, *, timeout: float = 3.0) -> bool:
    """``GET`` an HTTP endpoint and expect a 2xx response."""
    async with httpx.AsyncClient(timeout=timeout) as client:
        resp = await client.get(url)
        resp.raise_for_status()
        return True


# ── Raw TCP ──────────────────────────────────────────────────────────────


async def check_tcp(host: str, port: int, *, timeout: float = 3.0) -> bool:
    """Open (and close) a TCP connection to *host*:*port*."""
    _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout)
    writer.close()
    await writer.wait_closed()
    return True


__all__ = ["check_http", "check_tcp"]
