"""
Candle store.

Ordered, deduplicated in-memory sequence of candles for one series, backed by
a durable record. After every mutation the sequence is strictly ascending by
``open_time``, has unique ``open_time`` values and holds nothing in the future.
"""

import asyncio
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from .candle import Candle
from .codec import decode_candles, encode_candles
from .console import c_key, c_rows, fmt_mts, log_info, log_new, log_warn
from .intervals import SeriesKey, now_ms
from .persistence import Persistence


def _supersedes(incoming: Candle, existing: Candle) -> bool:
    """Finalized data replaces provisional data; nothing else replaces anything."""
    return existing.provisional and not incoming.provisional


def merge_candles(
    existing: Iterable[Candle],
    incoming: Iterable[Candle],
    now: int,
    *,
    context: Optional[object] = None,
) -> List[Candle]:
    """
    Deterministic merge keyed by ``open_time``.

    On a duplicate key the existing entry wins unless it is provisional and
    the incoming one is not. Candles opening after ``now`` are discarded from
    both sides. The result is sorted ascending.
    """
    by_time: Dict[int, Candle] = {}

    for candle in existing:
        if candle.open_time > now:
            log_warn(
                f"{c_key(context)} Discarding stored future candle {fmt_mts(candle.open_time)} "
                f"(now {fmt_mts(now)})"
            )
            continue
        current = by_time.get(candle.open_time)
        if current is None or _supersedes(candle, current):
            by_time[candle.open_time] = candle

    for candle in incoming:
        if candle.open_time > now:
            log_warn(
                f"{c_key(context)} Rejecting future candle {fmt_mts(candle.open_time)} "
                f"(now {fmt_mts(now)})"
            )
            continue
        current = by_time.get(candle.open_time)
        if current is None or _supersedes(candle, current):
            by_time[candle.open_time] = candle

    return [by_time[t] for t in sorted(by_time)]


def _find(candles: Sequence[Candle], open_time: int) -> Optional[Candle]:
    # Lookups are almost always for the newest buckets, scan from the end
    for candle in reversed(candles):
        if candle.open_time == open_time:
            return candle
        if candle.open_time < open_time:
            break
    return None


class CandleStore:
    """
    Owns the candle sequence of exactly one series.

    Mutations (``merge``, ``append``, ``drop_last``, ``bootstrap`` seeding)
    persist synchronously by default; a failed write raises PersistenceError.
    Code on the event loop mutates with ``persist=False`` and then awaits
    ``save()``, which encodes and writes in a worker thread.
    """

    def __init__(
        self,
        key: SeriesKey,
        persistence: Persistence,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.key = key
        self.persistence = persistence
        self.clock = clock
        self._candles: List[Candle] = []
        self._save_lock = asyncio.Lock()

    # ------------------------------ Reads --------------------------------- #

    @property
    def candles(self) -> List[Candle]:
        return list(self._candles)

    def __len__(self) -> int:
        return len(self._candles)

    def last(self) -> Optional[Candle]:
        return self._candles[-1] if self._candles else None

    def get(self, open_time: int) -> Optional[Candle]:
        return _find(self._candles, open_time)

    def has_final(self, open_time: int) -> bool:
        candle = self.get(open_time)
        return candle is not None and not candle.provisional

    # ------------------------------ Durable state ------------------------- #

    def load(self) -> Optional[List[Candle]]:
        """Read durable state; None when nothing was ever persisted for the key."""
        data = self.persistence.read(self.key)
        if data is None:
            return None
        decoded = decode_candles(data, context=self.key)
        return merge_candles([], decoded, self.clock(), context=self.key)

    def bootstrap(self, seed_fetch: Callable[[], Sequence[Candle]]) -> List[Candle]:
        """Load durable state, or seed it with ``seed_fetch()`` and persist."""
        loaded = self.load()
        if loaded is not None:
            self._candles = loaded
            log_info(f"{c_key(self.key)} Loaded {c_rows(len(loaded))} candles from durable state")
            return self.candles

        log_warn(f"{c_key(self.key)} No durable state found, seeding from historical fetch")
        seeded = merge_candles([], seed_fetch(), self.clock(), context=self.key)
        self._candles = seeded
        self.persist()
        log_new(f"{c_key(self.key)} Seeded {c_rows(len(seeded))} candles")
        return self.candles

    def persist(self) -> None:
        self._write(self._candles)

    async def save(self) -> None:
        """
        Persist the current sequence from a worker thread.

        The sequence is captured before waiting, and saves complete in the
        order they were requested, so the newest state is always written last.
        """
        snapshot = list(self._candles)
        async with self._save_lock:
            await asyncio.to_thread(self._write, snapshot)

    def _write(self, candles: Sequence[Candle]) -> None:
        self.persistence.write(self.key, encode_candles(candles))

    # ------------------------------ Mutations ----------------------------- #

    def merge(self, incoming: Iterable[Candle], *, persist: bool = True) -> int:
        """
        Merge a batch into the store.

        Returns how many entries were added or replaced.
        """
        before = {c.open_time: c for c in self._candles}
        merged = merge_candles(self._candles, incoming, self.clock(), context=self.key)
        changed = sum(1 for c in merged if before.get(c.open_time) != c)
        self._candles = merged
        if persist:
            self.persist()
        return changed

    def append(self, candle: Candle, *, persist: bool = True) -> bool:
        """Insert a single candle under the merge rules; True when stored."""
        merged = merge_candles(self._candles, [candle], self.clock(), context=self.key)
        stored = _find(merged, candle.open_time) is candle
        self._candles = merged
        if persist:
            self.persist()
        return stored

    def drop_last(self, *, persist: bool = True) -> Optional[Candle]:
        if not self._candles:
            return None
        dropped = self._candles.pop()
        if persist:
            self.persist()
        return dropped
