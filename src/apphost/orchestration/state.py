"""Per-resource run state and readiness signals.

The scheduler is the only writer; the prober, lifecycle manager and
dependent tasks read. Each resource has its own ``asyncio.Lock`` guarding
transitions and its own ``asyncio.Event`` that fires once the resource
settles (READY, FAILED or STOPPED), so unrelated branches never contend
on a shared lock.

Allowed transitions::

    PENDING  -> STARTING | FAILED
    STARTING -> READY | FAILED | STOPPED
    READY    -> FAILED | STOPPED
    FAILED   -> (terminal)
    STOPPED  -> (terminal)

Timestamps are ``time.monotonic()`` readings taken under the resource
lock, so "B started after A became ready" can be checked directly.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from apphost.orchestration.exceptions import DependencyFailedError, InvalidTransitionError
from apphost.orchestration.models import ResourceHandle, RunState

ALLOWED_TRANSITIONS: dict[RunState, frozenset[RunState]] = {
    RunState.PENDING: frozenset({RunState.STARTING, RunState.FAILED}),
    RunState.STARTING: frozenset({RunState.READY, RunState.FAILED, RunState.STOPPED}),
    RunState.READY: frozenset({RunState.FAILED, RunState.STOPPED}),
    RunState.FAILED: frozenset(),
    RunState.STOPPED: frozenset(),
}


@dataclass
class ResourceRunState:
    """Mutable run record for one resource."""

    name: str
    state: RunState = RunState.PENDING
    error: BaseException | None = None
    handle: ResourceHandle | None = None
    timestamps: dict[RunState, float] = field(default_factory=dict)
    wallclock: dict[RunState, datetime] = field(default_factory=dict)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    settled: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def attached(self) -> bool:
        return bool(self.handle and self.handle.attached)

    def at(self, state: RunState) -> float | None:
        """Monotonic time at which the resource entered *state*."""
        return self.timestamps.get(state)


class RunStateBoard:
    """All resource run states for one run.

    Must be created inside the running event loop.
    """

    def __init__(self, names: Iterable[str], clock=time.monotonic) -> None:
        self._clock = clock
        self._entries = {name: ResourceRunState(name) for name in names}
        now = clock()
        self.created_at = now
        for entry in self._entries.values():
            entry.timestamps[RunState.PENDING] = now
            entry.wallclock[RunState.PENDING] = datetime.now(UTC)

    def __getitem__(self, name: str) -> ResourceRunState:
        return self._entries[name]

    def __iter__(self):
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def state(self, name: str) -> RunState:
        return self._entries[name].state

    def names_in(self, *states: RunState) -> list[str]:
        return [e.name for e in self._entries.values() if e.state in states]

    async def transition(
        self,
        name: str,
        target: RunState,
        *,
        error: BaseException | None = None,
    ) -> RunState:
        """Move *name* to *target*; returns the previous state.

        Raises:
            InvalidTransitionError: target not reachable from the current state
        """
        entry = self._entries[name]
        async with entry.lock:
            return self._apply(entry, target, error)

    async def try_transition(
        self,
        name: str,
        target: RunState,
        *,
        error: BaseException | None = None,
    ) -> RunState | None:
        """Like transition() but returns None instead of raising when illegal."""
        entry = self._entries[name]
        async with entry.lock:
            if target not in ALLOWED_TRANSITIONS[entry.state]:
                return None
            return self._apply(entry, target, error)

    def _apply(
        self,
        entry: ResourceRunState,
        target: RunState,
        error: BaseException | None,
    ) -> RunState:
        previous = entry.state
        if target not in ALLOWED_TRANSITIONS[previous]:
            raise InvalidTransitionError(entry.name, previous, target)
        entry.state = target
        entry.timestamps[target] = self._clock()
        entry.wallclock[target] = datetime.now(UTC)
        if error is not None:
            entry.error = error
        if target.is_settled:
            entry.settled.set()
        return previous

    def set_handle(self, name: str, handle: ResourceHandle) -> None:
        self._entries[name].handle = handle

    async def wait_settled(self, name: str) -> RunState:
        """Suspend until *name* is READY, FAILED or STOPPED."""
        entry = self._entries[name]
        await entry.settled.wait()
        return entry.state

    async def wait_ready(self, name: str, waiter: str) -> ResourceHandle:
        """Suspend until *name* is READY and return its handle.

        Raises:
            DependencyFailedError: *name* settled in any other state
        """
        state = await self.wait_settled(name)
        entry = self._entries[name]
        if state is not RunState.READY or entry.handle is None:
            raise DependencyFailedError(waiter, name)
        return entry.handle


__all__ = ["ALLOWED_TRANSITIONS", "ResourceRunState", "RunStateBoard"]
