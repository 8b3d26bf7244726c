"""Shared test fixtures and fakes."""

import asyncio
import threading
from typing import Dict, List, Optional

import pytest

from candles_keeper.candle import Candle
from candles_keeper.errors import FetchError, PersistenceError
from candles_keeper.intervals import SeriesKey
from candles_keeper.persistence import Persistence

MINUTE_MS = 60_000
# 2025-01-01 12:00:00 UTC
BASE_MS = 1_735_732_800_000


class FakeClock:
    """Injectable millisecond clock; tests move it by hand."""

    def __init__(self, now: int) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class MemoryPersistence(Persistence):
    """In-memory persistence that records every write."""

    def __init__(self, initial: Optional[Dict[SeriesKey, bytes]] = None) -> None:
        self.records: Dict[SeriesKey, bytes] = dict(initial or {})
        self.writes: List[SeriesKey] = []
        self.write_threads: List[int] = []
        self.fail_writes = False

    def read(self, key: SeriesKey) -> Optional[bytes]:
        return self.records.get(key)

    def write(self, key: SeriesKey, data: bytes) -> None:
        if self.fail_writes:
            raise PersistenceError("disk full")
        self.records[key] = data
        self.writes.append(key)
        self.write_threads.append(threading.get_ident())


class FakeSource:
    """Bulk-query collaborator stub with connection bookkeeping."""

    name = "FAKE"

    def __init__(self, candles: Optional[List[Candle]] = None, error: Optional[Exception] = None) -> None:
        self.candles = list(candles or [])
        self.error = error
        self.queries: List[tuple] = []
        self.connects = 0
        self.disconnects = 0

    def connect(self) -> None:
        self.connects += 1

    def disconnect(self) -> None:
        self.disconnects += 1

    def query(self, instrument, interval, start, end, include_partial=True):
        self.queries.append((instrument, interval, start, end, include_partial))
        if self.error is not None:
            raise self.error
        return list(self.candles)


class FakeFetcher:
    """Historical fetcher stub for the healer; counts concurrent calls."""

    def __init__(self, candles: Optional[List[Candle]] = None) -> None:
        self.max_count = 5000
        self.candles = list(candles or [])
        self.calls: List[tuple] = []
        self.active = 0
        self.max_active = 0
        self.delay = 0.0
        self._guard = threading.Lock()

    def fetch(self, instrument, interval, start, end):
        with self._guard:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                threading.Event().wait(self.delay)
            self.calls.append((instrument, interval, start, end))
            return list(self.candles)
        finally:
            with self._guard:
                self.active -= 1

    def fetch_recent(self, instrument, interval, count=None):
        self.calls.append((instrument, interval, "recent", count))
        return list(self.candles)


class FakeFeed:
    """Push-feed collaborator: hands the callback to the test and waits."""

    name = "FAKE"

    def __init__(self, end_immediately: bool = False) -> None:
        self.end_immediately = end_immediately
        self.callback = None
        self.subscribed = asyncio.Event()
        self.cancelled = False

    async def subscribe(self, instrument, interval, on_update):
        self.callback = on_update
        self.subscribed.set()
        if self.end_immediately:
            return
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise


def make_candle(t: int, close: str = "100", provisional: bool = False, volume: str = "1") -> Candle:
    return Candle(
        open_time=t,
        open="100",
        high="101",
        low="99",
        close=close,
        volume=volume,
        provisional=provisional,
    )


def snapshot(t: int, close="100", volume="1") -> dict:
    return {"open_time": t, "open": "100", "high": "101", "low": "99", "close": close, "volume": volume}


@pytest.fixture
def key():
    return SeriesKey("BTC-PERP", "1m")


@pytest.fixture
def clock():
    return FakeClock(BASE_MS)


@pytest.fixture
def persistence():
    return MemoryPersistence()


@pytest.fixture
def failing_source():
    return FakeSource(error=FetchError("connection reset"))
