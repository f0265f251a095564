"""Periodic driver for due scheduled steps and business retries."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Optional

from .constants import DEFAULT_SWEEP_INTERVAL
from .engine import WorkflowEngine

logger = logging.getLogger(__name__)


class ScheduledStepSweeper:
    """Calls ``process_due_scheduled_steps`` every ``interval`` seconds.

    The engine owns no timers; run this in a worker process (``procflow
    sweep``) or embed it in an application's event loop.
    """

    def __init__(self, engine: WorkflowEngine, interval: float = DEFAULT_SWEEP_INTERVAL):
        self._engine = engine
        self.interval = interval
        self._stopped = asyncio.Event()
        self.passes = 0

    async def run_once(self, now: Optional[datetime] = None) -> int:
        """Run a single sweep and return the number of steps processed."""
        processed = await self._engine.process_due_scheduled_steps(now)
        self.passes += 1
        if processed:
            logger.info(f"Sweep processed {processed} due step(s)")
        return processed

    async def start(self, lifespan: Optional[float] = None) -> None:
        """Sweep until ``stop`` is called or ``lifespan`` seconds have passed.

        Args:
            lifespan: Maximum time in seconds to keep sweeping. If None, runs indefinitely.
        """
        self._stopped.clear()
        loop = asyncio.get_running_loop()
        start_time = loop.time()

        while not self._stopped.is_set():
            try:
                await self.run_once()
            except Exception:
                logger.exception("Sweep failed; will retry on next interval")

            wait = self.interval
            if lifespan is not None:
                remaining = lifespan - (loop.time() - start_time)
                if remaining <= 0:
                    break
                wait = min(wait, remaining)
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=wait)
            except asyncio.TimeoutError:
                pass

    def stop(self) -> None:
        self._stopped.set()
