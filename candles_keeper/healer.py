"""
Gap healer.

Brings a store up to date: if the newest stored candle is at least one
interval old, fetch from it to now and merge the result. Long gaps are
fetched in consecutive windows no wider than the fetcher's ``max_count``.
"""

import asyncio
from typing import Callable, List

from .candle import Candle
from .console import c_key, c_rows, fmt_mts, log_error, log_info, log_update
from .fetcher import HistoricalFetcher
from .intervals import now_ms
from .store import CandleStore


class GapHealer:
    """
    Heals the tail of one store.

    Passes are serialized: a second ``heal()`` issued while one is running
    waits for it and then re-evaluates, so no two merges race.
    """

    def __init__(
        self,
        store: CandleStore,
        fetcher: HistoricalFetcher,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.store = store
        self.fetcher = fetcher
        self.clock = clock
        self._lock = asyncio.Lock()

    @property
    def key(self):
        return self.store.key

    async def heal(self) -> int:
        """Run one healing pass; returns the number of entries added or replaced."""
        async with self._lock:
            return await self._heal_once()

    async def _heal_once(self) -> int:
        key = self.key
        step = key.interval_ms
        dropped = False

        while True:
            last = self.store.last()
            if last is None:
                # Empty store: seeding is bootstrap's job
                break

            now = self.clock()
            if last.open_time > now:
                log_error(
                    f"{c_key(key)} Found future timestamp in data: {fmt_mts(last.open_time)} "
                    f"(now {fmt_mts(now)}); dropping it"
                )
                self.store.drop_last(persist=False)
                dropped = True
                continue

            if now - last.open_time < step:
                break

            changed = self.store.merge(await self._fetch_gap(last.open_time, now), persist=False)
            await self.store.save()
            log_update(
                f"{c_key(key)} Healed: {c_rows(changed)} candles added or finalized, "
                f"store now {c_rows(len(self.store))}, latest {fmt_mts(self.store.last().open_time)}"
            )
            return changed

        if dropped:
            await self.store.save()
        return 0

    async def _fetch_gap(self, start: int, end: int) -> List[Candle]:
        """Fetch [start, end] in windows the fetcher will not clamp."""
        key = self.key
        window = self.fetcher.max_count * key.interval_ms
        log_info(f"{c_key(key)} Detected gap from {fmt_mts(start)} to now {fmt_mts(end)}")

        fetched: List[Candle] = []
        cursor = start
        while cursor < end:
            chunk_end = min(cursor + window, end)
            fetched.extend(
                await asyncio.to_thread(self.fetcher.fetch, key.instrument, key.interval, cursor, chunk_end)
            )
            cursor = chunk_end
        return fetched
