"""
Sync orchestrator.

Composes the engine for one series: load-or-bootstrap the store, heal the
tail, then follow the live feed forever. Each series gets its own
orchestrator and shares nothing mutable with the others.
"""

import asyncio
from typing import Callable, List, Optional

from .adapters import ExchangeAdapter, get_adapter
from .aggregator import DEFAULT_DEBOUNCE_SECONDS, LiveAggregator
from .candle import Candle
from .config import SyncConfig
from .console import c_key, c_rows, fmt_mts, log_info, log_warn
from .errors import FetchError
from .fetcher import DEFAULT_MAX_COUNT, HistoricalFetcher
from .healer import GapHealer
from .intervals import SeriesKey, now_ms
from .persistence import FilePersistence, Persistence
from .store import CandleStore


class SyncOrchestrator:
    def __init__(
        self,
        key: SeriesKey,
        store: CandleStore,
        fetcher: HistoricalFetcher,
        feed: ExchangeAdapter,
        *,
        clock: Callable[[], int] = now_ms,
        bootstrap_count: int = DEFAULT_MAX_COUNT,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        heal_every_seconds: float = 0.0,
    ) -> None:
        self.key = key
        self.store = store
        self.fetcher = fetcher
        self.feed = feed
        self.clock = clock
        self.bootstrap_count = bootstrap_count
        self.debounce_seconds = debounce_seconds
        self.heal_every_seconds = heal_every_seconds
        self.healer = GapHealer(store, fetcher, clock=clock)
        self._bootstrapped = False

    def _seed(self) -> List[Candle]:
        return self.fetcher.fetch_recent(self.key.instrument, self.key.interval, self.bootstrap_count)

    async def prepare(self) -> List[Candle]:
        """Load or bootstrap durable state, then heal; completes before any live commit."""
        if not self._bootstrapped:
            # Later runs only heal: the in-memory store is live and authoritative
            await asyncio.to_thread(self.store.bootstrap, self._seed)
            self._bootstrapped = True
        await self.healer.heal()

        last = self.store.last()
        log_info(
            f"{c_key(self.key)} Current data has {c_rows(len(self.store))} candles, "
            f"latest {fmt_mts(last.open_time if last else None)}"
        )
        return self.store.candles

    async def run_live(self) -> None:
        """Run the live aggregator (and periodic healing, if enabled) until cancelled."""
        aggregator = LiveAggregator(
            self.store, self.feed, clock=self.clock, debounce_seconds=self.debounce_seconds
        )
        if self.heal_every_seconds <= 0:
            await aggregator.run()
            return

        healing = asyncio.create_task(self._heal_periodically())
        try:
            live = asyncio.create_task(aggregator.run())
            try:
                done, _ = await asyncio.wait({live, healing}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                live.cancel()
                await asyncio.gather(live, return_exceptions=True)
            for task in done:
                task.result()
        finally:
            healing.cancel()
            await asyncio.gather(healing, return_exceptions=True)

    async def _heal_periodically(self) -> None:
        while True:
            await asyncio.sleep(self.heal_every_seconds)
            try:
                await self.healer.heal()
            except FetchError as e:
                # Live aggregation keeps running; the next pass retries
                log_warn(f"{c_key(self.key)} Periodic heal failed: {e}")

    async def run(self) -> None:
        await self.prepare()
        await self.run_live()


def build_orchestrator(
    key: SeriesKey,
    config: SyncConfig,
    *,
    persistence: Optional[Persistence] = None,
    adapter: Optional[ExchangeAdapter] = None,
    clock: Callable[[], int] = now_ms,
) -> SyncOrchestrator:
    """Wire one series from configuration."""
    config.validate()
    adapter = adapter or get_adapter(config.exchange)
    persistence = persistence or FilePersistence(config.data_root, adapter.name)
    store = CandleStore(key, persistence, clock=clock)
    fetcher = HistoricalFetcher(adapter, max_count=config.max_count, clock=clock)
    return SyncOrchestrator(
        key,
        store,
        fetcher,
        adapter,
        clock=clock,
        bootstrap_count=config.bootstrap_count,
        debounce_seconds=config.debounce_seconds,
        heal_every_seconds=config.heal_every_seconds,
    )
