"""
Daily scheduler.

Runs the orchestrator for a fixed list of series once a day at a configured
UTC wall-clock time, pausing between series to respect exchange rate limits.
A failed run is retried after a fixed delay, and so is a live task that
stops: the pair is healed and its live task started again.
"""

import asyncio
import functools
from datetime import datetime, time as dt_time, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional

from .config import SyncConfig
from .console import c_key, c_var, log_error, log_info, log_success
from .intervals import SeriesKey
from .orchestrator import SyncOrchestrator, build_orchestrator

OrchestratorFactory = Callable[[SeriesKey], SyncOrchestrator]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def seconds_until_next_run(now: datetime, run_at: dt_time) -> float:
    """Seconds from ``now`` to the next ``run_at`` (UTC); tomorrow if already past."""
    now = now.astimezone(timezone.utc)
    next_run = now.replace(hour=run_at.hour, minute=run_at.minute, second=0, microsecond=0)
    if now >= next_run:
        next_run += timedelta(days=1)
    return (next_run - now).total_seconds()


class DailyScheduler:
    def __init__(
        self,
        pairs: List[SeriesKey],
        factory: OrchestratorFactory,
        *,
        run_at: dt_time,
        pair_delay_seconds: float = 60.0,
        retry_seconds: float = 300.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self.pairs = list(pairs)
        self.factory = factory
        self.run_at = run_at
        self.pair_delay_seconds = pair_delay_seconds
        self.retry_seconds = retry_seconds
        self._sleep = sleep
        self._now = now
        self._orchestrators: Dict[SeriesKey, SyncOrchestrator] = {}
        self._live: Dict[SeriesKey, asyncio.Task] = {}
        self._restarts: Dict[SeriesKey, asyncio.Task] = {}

    @classmethod
    def from_config(cls, config: SyncConfig) -> "DailyScheduler":
        return cls(
            config.pairs,
            lambda key: build_orchestrator(key, config),
            run_at=config.run_at,
            pair_delay_seconds=config.pair_delay_seconds,
            retry_seconds=config.retry_seconds,
        )

    def live_tasks(self) -> Dict[SeriesKey, asyncio.Task]:
        return dict(self._live)

    async def run_once(self) -> None:
        """Prepare every pair in order and make sure each has a live task."""
        for i, key in enumerate(self.pairs):
            if i:
                await self._sleep(self.pair_delay_seconds)

            orchestrator = self._orchestrators.get(key)
            if orchestrator is None:
                orchestrator = self._orchestrators[key] = self.factory(key)

            await orchestrator.prepare()
            self._start_live(key)

    def _start_live(self, key: SeriesKey) -> None:
        task = self._live.get(key)
        if task is not None and not task.done():
            return
        task = asyncio.create_task(self._orchestrators[key].run_live(), name=f"live:{key}")
        task.add_done_callback(functools.partial(self._on_live_done, key))
        self._live[key] = task
        log_info(f"{c_key(key)} Live sync started")

    def _on_live_done(self, key: SeriesKey, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        log_error(
            f"Live task {c_var(task.get_name())} stopped: {error or 'feed ended'}; "
            f"restarting in {c_var(f'{self.retry_seconds:.0f}s')}"
        )
        restart = self._restarts.get(key)
        if restart is None or restart.done():
            self._restarts[key] = asyncio.create_task(self._restart_live(key), name=f"restart:{key}")

    async def _restart_live(self, key: SeriesKey) -> None:
        """Heal and resume one pair after ``retry_seconds``, retrying until it is live again."""
        while True:
            await self._sleep(self.retry_seconds)
            task = self._live.get(key)
            if task is not None and not task.done():
                # A scheduled run already brought it back
                return
            try:
                await self._orchestrators[key].prepare()
            except Exception as e:
                log_error(f"{c_key(key)} Restart failed: {e}. Retrying in {c_var(f'{self.retry_seconds:.0f}s')}")
                continue
            self._start_live(key)
            return

    async def run_forever(self, max_runs: Optional[int] = None) -> None:
        runs = 0
        while max_runs is None or runs < max_runs:
            runs += 1
            try:
                await self.run_once()
            except Exception as e:
                log_error(f"Error in scheduled run: {e}. Retrying in {c_var(f'{self.retry_seconds:.0f}s')}")
                await self._sleep(self.retry_seconds)
                continue

            delay = seconds_until_next_run(self._now(), self.run_at)
            log_success(f"Next run scheduled in {c_var(int(delay // 60))} minutes")
            await self._sleep(delay)

    async def stop(self) -> None:
        tasks = list(self._live.values()) + list(self._restarts.values())
        self._live.clear()
        self._restarts.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
