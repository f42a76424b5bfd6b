"""
Periodic runner for the policy lifecycle sweeps.

Each sweep has its own lock: a run that is still in progress when the next tick
arrives (or when ``run_once`` is called) makes the newcomer wait, so runs of one
sweep never overlap. Different sweeps run independently.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from bazaruto.utils.config_loader import SchedulerConfig

logger = logging.getLogger(__name__)

EXPIRED_POLICIES = "expired_policies"
GRACE_PERIODS = "grace_periods"
AUTO_RENEWALS = "auto_renewals"
RENEWAL_REMINDERS = "renewal_reminders"

SWEEP_NAMES = (EXPIRED_POLICIES, GRACE_PERIODS, AUTO_RENEWALS, RENEWAL_REMINDERS)


class SweepScheduler:
    def __init__(self, lifecycle, config: Optional[SchedulerConfig] = None) -> None:
        self._config = config or SchedulerConfig()
        self._sweeps: Dict[str, Callable[[], Awaitable[int]]] = {
            EXPIRED_POLICIES: lifecycle.process_expired_policies,
            GRACE_PERIODS: lifecycle.process_grace_period_expirations,
            AUTO_RENEWALS: lifecycle.process_auto_renewals,
            RENEWAL_REMINDERS: lambda: lifecycle.send_renewal_reminders(self._config.reminder_days_ahead),
        }
        self._intervals = {
            EXPIRED_POLICIES: self._config.expired_policies_interval,
            GRACE_PERIODS: self._config.grace_periods_interval,
            AUTO_RENEWALS: self._config.auto_renewals_interval,
            RENEWAL_REMINDERS: self._config.renewal_reminders_interval,
        }
        self._locks: Dict[str, asyncio.Lock] = {}
        self._tasks: List[asyncio.Task] = []
        self.last_results: Dict[str, int] = {}

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def _lock_for(self, name: str) -> asyncio.Lock:
        if name not in self._locks:
            self._locks[name] = asyncio.Lock()
        return self._locks[name]

    async def run_once(self, name: str) -> int:
        """Run one sweep now and return how many policies it handled."""
        if name not in self._sweeps:
            raise ValueError(f"unknown sweep: {name}")
        async with self._lock_for(name):
            count = await self._sweeps[name]()
        self.last_results[name] = count
        return count

    async def run_all(self) -> Dict[str, int]:
        results = await asyncio.gather(*(self.run_once(name) for name in SWEEP_NAMES))
        return dict(zip(SWEEP_NAMES, results))

    async def _loop(self, name: str) -> None:
        interval = self._intervals[name]
        while True:
            try:
                await self.run_once(name)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Sweep %s failed: %s", name, e, exc_info=True)
            await asyncio.sleep(interval)

    def start(self) -> None:
        if self.running:
            return
        loop = asyncio.get_running_loop()
        self._tasks = [loop.create_task(self._loop(name), name=f"sweep:{name}") for name in SWEEP_NAMES]
        logger.info("Started sweep scheduler (%s)", ", ".join(f"{n}={self._intervals[n]:g}s" for n in SWEEP_NAMES))

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Stopped sweep scheduler")
