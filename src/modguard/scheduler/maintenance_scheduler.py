"""Periodic housekeeping for the engine.

Each tick returns abandoned appeal investigations to pending and garbage
collects idle rate-window counters. Both jobs are cheap and run on the event
loop; neither is evaluated inline on the hot path.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Callable

from modguard.moderation.appeal_state_machine import AppealStateMachine
from modguard.moderation.rate_window_tracker import RateWindowTracker
from modguard.util.logger import get_logger

logger = get_logger("maintenance_scheduler")


class MaintenanceScheduler:
    """
    Background task running :meth:`run_once` every ``interval`` seconds.

    Args:
        appeals: Appeal state machine to sweep for abandoned investigations.
        tracker: Rate tracker to sweep for idle counters.
        get_interval: Callable returning the interval in seconds (called at start).
    """

    def __init__(
        self,
        appeals: AppealStateMachine,
        tracker: RateWindowTracker,
        get_interval: Callable[[], float],
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._appeals = appeals
        self._tracker = tracker
        self._get_interval = get_interval
        self._clock = clock
        self._task: asyncio.Task | None = None

    async def run_once(self) -> tuple[int, int]:
        """Run both sweeps once; returns (appeals reverted, counters collected)."""
        now = self._clock()
        reverted = await self._appeals.sweep_abandoned(now)
        collected = self._tracker.sweep(now)
        logger.debug("[MAINTENANCE] Reverted %d appeals, collected %d counters", len(reverted), collected)
        return len(reverted), collected

    async def _run_loop(self, interval: float) -> None:
        """Infinite loop: sweep, sleep, repeat."""
        logger.info("[MAINTENANCE] Starting periodic sweep (interval=%.1fs)", interval)
        try:
            while True:
                await asyncio.sleep(interval)
                try:
                    await self.run_once()
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    logger.error("[MAINTENANCE] Unexpected error during sweep: %s", exc)
        except asyncio.CancelledError:
            logger.info("[MAINTENANCE] Periodic sweep cancelled")
            raise

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the background sweep task if not already running."""
        if self.running:
            logger.warning("[MAINTENANCE] Sweep task already running")
            return
        interval = self._get_interval()
        self._task = asyncio.create_task(self._run_loop(interval), name="modguard-maintenance")

    async def shutdown(self) -> None:
        """Stop the task and wait for it to finish."""
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("[MAINTENANCE] Scheduler shutdown complete")
