"""Periodic cycle that drives background jobs.

A Cycle owns one loop: run the job, wait for the next trigger, repeat. Runs
never overlap because the next wait starts only after the job returns. The
trigger is injectable so tests can step the loop deterministically.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Protocol

logger = logging.getLogger("ledgerscan.scheduler")

JobCallable = Callable[[], Awaitable[object]]


class Trigger(Protocol):
    """Decides when the next run is due."""

    async def wait(self) -> None:
        ...


class IntervalTrigger:
    """Fires once every ``seconds`` of wall-clock time."""

    def __init__(self, seconds: float):
        if seconds <= 0:
            raise ValueError("interval must be positive")
        self.seconds = seconds

    async def wait(self) -> None:
        await asyncio.sleep(self.seconds)


class ManualTrigger:
    """Fires only when ``fire()`` is called."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[None] = asyncio.Queue()

    def fire(self, times: int = 1) -> None:
        for _ in range(times):
            self._queue.put_nowait(None)

    async def wait(self) -> None:
        await self._queue.get()


class Cycle:
    """Single-owner periodic loop with start/stop semantics."""

    def __init__(self, interval: float, trigger: Optional[Trigger] = None):
        self._trigger: Trigger = trigger or IntervalTrigger(interval)
        self._interval = interval
        self._closed = asyncio.Event()
        self._wake = asyncio.Event()
        self._running = False
        self.runs = 0

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_closed(self) -> bool:
        return self._closed.is_set()

    async def run(self, fn: JobCallable) -> None:
        """Call ``fn`` now and then on every trigger until closed.

        An exception raised by ``fn`` stops the loop and propagates.
        """
        if self._running:
            raise RuntimeError("cycle is already running")

        self._running = True
        try:
            while not self._closed.is_set():
                await fn()
                self.runs += 1
                if not await self._wait_next():
                    return
        finally:
            self._running = False

    async def _wait_next(self) -> bool:
        """Wait for the trigger, an early wake-up or close. False means closed."""
        if self._closed.is_set():
            return False

        waiters = {
            asyncio.ensure_future(self._trigger.wait()),
            asyncio.ensure_future(self._wake.wait()),
            asyncio.ensure_future(self._closed.wait()),
        }
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
            await asyncio.gather(*waiters, return_exceptions=True)

        self._wake.clear()
        return not self._closed.is_set()

    def trigger_now(self) -> None:
        """Start the next run without waiting for the trigger."""
        self._wake.set()

    def close(self) -> None:
        """Stop before the next run. A run in progress completes first."""
        if not self._closed.is_set():
            logger.debug("Cycle closing")
        self._closed.set()
