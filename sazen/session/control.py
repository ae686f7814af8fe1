"""Session concurrency control.

ExecutionControl tracks named pause sources and releases suspended callers
together once the last source is cleared. OperationQueue serializes a
session's mutating operations in submission order without letting one
failure block the ones queued behind it.
"""

import asyncio
import math
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")

DEFAULT_PAUSE_SOURCE = "api"


def _now_ms() -> float:
    return time.monotonic() * 1000


class ExecutionControl:
    """Named pause sources with accumulated paused time."""

    def __init__(self, clock: Callable[[], float] = _now_ms):
        self._clock = clock
        self._sources: set[str] = set()
        self._paused_since: Optional[float] = None
        self._paused_total_ms = 0
        self._waiters: list[asyncio.Future] = []

    @property
    def paused(self) -> bool:
        return bool(self._sources)

    @property
    def paused_ms(self) -> int:
        """Total paused time, including the interval in progress."""
        if not self._sources or self._paused_since is None:
            return self._paused_total_ms
        return self._paused_total_ms + int(max(0, self._clock() - self._paused_since))

    def pause(self, source: str = DEFAULT_PAUSE_SOURCE) -> dict:
        if source not in self._sources:
            if not self._sources:
                self._paused_since = self._clock()
            self._sources.add(source)
        return self.state()

    def resume(self, source: str = DEFAULT_PAUSE_SOURCE) -> dict:
        if source in self._sources:
            self._sources.discard(source)
            if not self._sources:
                started = self._paused_since if self._paused_since is not None else self._clock()
                # A completed interval always counts, even within one clock tick
                self._paused_total_ms += max(1, math.ceil(self._clock() - started))
                self._paused_since = None
                self._release_waiters()
        return self.state()

    def state(self) -> dict:
        return {
            "paused": self.paused,
            "pausedMs": self.paused_ms,
            "sources": sorted(self._sources),
        }

    async def wait_until_resumed(self) -> None:
        """Suspend while any pause source is active."""
        if not self._sources:
            return
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        await waiter

    def _release_waiters(self) -> None:
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(None)


class OperationQueue:
    """Per-session FIFO: each operation starts only after the previous one settles.

    Each submission gets a gate that opens once its operation and every
    earlier one have settled. A submission cancelled while waiting still
    holds its place, so later operations never overtake a running one.
    """

    def __init__(self, name: str = "session"):
        self._tail: Optional[asyncio.Future] = None
        self._pending = 0
        self.log = logger.bind(component="operation_queue", queue=name)

    @property
    def pending(self) -> int:
        """Submitted operations that have not settled yet."""
        return self._pending

    def submit(self, operation: Callable[[], Awaitable[T]]) -> "asyncio.Future[T]":
        """Queue ``operation``; the returned future resolves with its result."""
        previous = self._tail
        gate = asyncio.get_running_loop().create_future()
        self._pending += 1

        async def run() -> T:
            if previous is not None:
                # asyncio.wait leaves the shared gate intact if this task is cancelled
                await asyncio.wait({previous})
            return await operation()

        def settled(task: asyncio.Future) -> None:
            self._pending -= 1
            if task.cancelled():
                self.log.debug("Queued operation cancelled", pending=self._pending)
            if previous is None or previous.done():
                _open(gate)
            else:
                previous.add_done_callback(lambda _: _open(gate))

        task = asyncio.ensure_future(run())
        task.add_done_callback(settled)
        self._tail = gate
        return task

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        return await self.submit(operation)


def _open(gate: asyncio.Future) -> None:
    if not gate.done():
        gate.set_result(None)
