"""Tests for the periodic Cycle."""
from __future__ import annotations

import asyncio

import pytest

from ledgerscan.scheduler import Cycle, IntervalTrigger, ManualTrigger


async def _until(predicate, timeout: float = 1.0) -> None:
    async def _poll():
        while not predicate():
            await asyncio.sleep(0)

    await asyncio.wait_for(_poll(), timeout)


class TestCycle:
    """Tests for Cycle.run()."""

    @pytest.mark.asyncio
    async def test_runs_immediately_then_per_trigger(self):
        """Should run once at start and once per trigger."""
        trigger = ManualTrigger()
        cycle = Cycle(60, trigger=trigger)
        calls = []

        async def job():
            calls.append(len(calls))

        task = asyncio.create_task(cycle.run(job))
        await _until(lambda: len(calls) == 1)

        trigger.fire(2)
        await _until(lambda: len(calls) == 3)

        cycle.close()
        await asyncio.wait_for(task, 1)
        assert cycle.runs == 3
        assert not cycle.is_running

    @pytest.mark.asyncio
    async def test_trigger_now(self):
        cycle = Cycle(3600, trigger=ManualTrigger())
        calls = []

        async def job():
            calls.append(1)

        task = asyncio.create_task(cycle.run(job))
        await _until(lambda: len(calls) == 1)
        cycle.trigger_now()
        await _until(lambda: len(calls) == 2)
        cycle.close()
        await asyncio.wait_for(task, 1)

    @pytest.mark.asyncio
    async def test_close_before_run(self):
        """Should not run the job once closed."""
        cycle = Cycle(1, trigger=ManualTrigger())
        cycle.close()
        calls = []

        async def job():
            calls.append(1)

        await cycle.run(job)
        assert calls == []
        assert cycle.is_closed

    @pytest.mark.asyncio
    async def test_runs_never_overlap(self):
        trigger = ManualTrigger()
        cycle = Cycle(1, trigger=trigger)
        active = 0
        peak = 0
        release = asyncio.Event()

        async def job():
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await release.wait()
            active -= 1

        task = asyncio.create_task(cycle.run(job))
        await _until(lambda: active == 1)
        trigger.fire(3)
        for _ in range(5):
            await asyncio.sleep(0)
        assert peak == 1

        release.set()
        await _until(lambda: cycle.runs >= 2)
        cycle.close()
        await asyncio.wait_for(task, 1)
        assert peak == 1

    @pytest.mark.asyncio
    async def test_job_exception_propagates(self):
        cycle = Cycle(1, trigger=ManualTrigger())

        async def job():
            raise RuntimeError("defect")

        with pytest.raises(RuntimeError, match="defect"):
            await cycle.run(job)
        assert not cycle.is_running

    @pytest.mark.asyncio
    async def test_rejects_second_runner(self):
        cycle = Cycle(1, trigger=ManualTrigger())
        started = asyncio.Event()

        async def job():
            started.set()

        task = asyncio.create_task(cycle.run(job))
        await asyncio.wait_for(started.wait(), 1)
        with pytest.raises(RuntimeError):
            await cycle.run(job)
        cycle.close()
        await asyncio.wait_for(task, 1)


class TestTriggers:
    def test_interval_must_be_positive(self):
        with pytest.raises(ValueError):
            IntervalTrigger(0)

    @pytest.mark.asyncio
    async def test_interval_trigger_waits(self):
        trigger = IntervalTrigger(0.01)
        await asyncio.wait_for(trigger.wait(), 1)

    @pytest.mark.asyncio
    async def test_manual_trigger_queues_fires(self):
        trigger = ManualTrigger()
        trigger.fire(2)
        await asyncio.wait_for(trigger.wait(), 1)
        await asyncio.wait_for(trigger.wait(), 1)
