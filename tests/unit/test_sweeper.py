import asyncio
from datetime import datetime, timezone

import pytest

from procflow.sweeper import ScheduledStepSweeper


class FakeEngine:
    def __init__(self, results):
        self.results = list(results)
        self.calls = []

    async def process_due_scheduled_steps(self, now=None):
        self.calls.append(now)
        result = self.results.pop(0) if self.results else 0
        if isinstance(result, Exception):
            raise result
        return result


@pytest.mark.asyncio
async def test_run_once_passes_now_through():
    engine = FakeEngine([3])
    sweeper = ScheduledStepSweeper(engine, interval=1)
    now = datetime(2024, 6, 1, tzinfo=timezone.utc)

    assert await sweeper.run_once(now) == 3
    assert engine.calls == [now]
    assert sweeper.passes == 1


@pytest.mark.asyncio
async def test_start_runs_until_lifespan_and_survives_errors():
    engine = FakeEngine([1, RuntimeError("database down"), 2])
    sweeper = ScheduledStepSweeper(engine, interval=0.01)

    await asyncio.wait_for(sweeper.start(lifespan=0.2), timeout=2)

    assert len(engine.calls) >= 3, f"Expected several sweeps, got {len(engine.calls)}"


@pytest.mark.asyncio
async def test_stop_ends_the_loop():
    engine = FakeEngine([])
    sweeper = ScheduledStepSweeper(engine, interval=10)

    task = asyncio.create_task(sweeper.start())
    await asyncio.sleep(0.05)
    sweeper.stop()
    await asyncio.wait_for(task, timeout=1)

    assert sweeper.passes == 1
