"""Tests for the live aggregator."""

import asyncio
import threading
from unittest.mock import MagicMock

import pytest

from candles_keeper.aggregator import LiveAggregator
from candles_keeper.errors import FeedError, PersistenceError
from candles_keeper.store import CandleStore
from tests.conftest import BASE_MS, MINUTE_MS, FakeFeed, make_candle, snapshot


async def until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


async def start(aggregator, feed):
    task = asyncio.create_task(aggregator.run())
    await asyncio.wait_for(feed.subscribed.wait(), 1)
    return task


async def stop(task):
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)


def spied_store(key, persistence, clock, existing=()):
    store = CandleStore(key, persistence, clock=clock)
    if existing:
        store.merge(existing)
    store.append = MagicMock(wraps=store.append)
    return store


class TestTransitions:
    """Snapshot handling that never closes a bucket runs without the event loop."""

    def test_first_snapshot_starts_accumulating(self, key, clock, persistence):
        clock.now = BASE_MS + 30_000
        agg = LiveAggregator(spied_store(key, persistence, clock), FakeFeed(), clock=clock)
        assert agg.state == "idle"

        agg.on_snapshot(snapshot(BASE_MS, close="101"))
        agg.on_snapshot(snapshot(BASE_MS, close="102"))

        assert agg.state == "accumulating"
        assert agg._current.close == "102"

    def test_future_snapshot_is_dropped(self, key, clock, persistence, capsys):
        agg = LiveAggregator(spied_store(key, persistence, clock), FakeFeed(), clock=clock)

        agg.on_snapshot(snapshot(BASE_MS + MINUTE_MS))

        assert agg.state == "idle"
        assert "future bucket" in capsys.readouterr().out

    def test_malformed_snapshot_keeps_buffer(self, key, clock, persistence, capsys):
        clock.now = BASE_MS + 30_000
        agg = LiveAggregator(spied_store(key, persistence, clock), FakeFeed(), clock=clock)
        agg.on_snapshot(snapshot(BASE_MS, close="5"))

        agg.on_snapshot({"open_time": BASE_MS, "close": "6"})
        agg.on_snapshot(snapshot(BASE_MS, close="not-a-price"))
        agg.on_snapshot("garbage")

        assert agg._current.close == "5"
        assert capsys.readouterr().out.count("malformed") == 3

    def test_update_for_committed_bucket_is_ignored(self, key, clock, persistence):
        clock.now = BASE_MS + 30_000
        store = spied_store(key, persistence, clock, [make_candle(BASE_MS - MINUTE_MS)])
        agg = LiveAggregator(store, FakeFeed(), clock=clock)

        agg.on_snapshot(snapshot(BASE_MS - MINUTE_MS, close="999"))

        assert agg.state == "idle"
        assert store.get(BASE_MS - MINUTE_MS).close == "100"

    def test_stale_update_is_ignored(self, key, clock, persistence):
        clock.now = BASE_MS + 30_000
        agg = LiveAggregator(spied_store(key, persistence, clock), FakeFeed(), clock=clock)
        agg.on_snapshot(snapshot(BASE_MS, close="1"))

        agg.on_snapshot(snapshot(BASE_MS - MINUTE_MS, close="2"))

        assert agg._current.open_time == BASE_MS
        assert agg._current.close == "1"

    def test_provisional_store_entry_does_not_block(self, key, clock, persistence):
        clock.now = BASE_MS + 30_000
        store = spied_store(key, persistence, clock, [make_candle(BASE_MS, provisional=True)])
        agg = LiveAggregator(store, FakeFeed(), clock=clock)

        agg.on_snapshot(snapshot(BASE_MS, close="3"))

        assert agg.state == "accumulating"


class TestLiveAggregator:
    @pytest.mark.asyncio
    async def test_many_updates_then_next_bucket_commit_once(self, key, clock, persistence):
        clock.now = BASE_MS + 30_000
        feed = FakeFeed()
        store = spied_store(key, persistence, clock)
        agg = LiveAggregator(store, feed, clock=clock, debounce_seconds=0.01)
        task = await start(agg, feed)

        for i in range(50):
            feed.callback(snapshot(BASE_MS, close=str(100 + i)))
        await until(lambda: agg._current is not None and agg._current.close == "149")

        clock.now = BASE_MS + MINUTE_MS + 1_000
        feed.callback(snapshot(BASE_MS + MINUTE_MS, close="7"))
        await until(lambda: store.append.call_count == 1)
        await asyncio.sleep(0.05)

        assert store.append.call_count == 1
        assert store.get(BASE_MS) == make_candle(BASE_MS, close="149")
        assert agg.state == "accumulating"
        assert agg._current.open_time == BASE_MS + MINUTE_MS
        await stop(task)

    @pytest.mark.asyncio
    async def test_bucket_closes_when_clock_passes_its_end(self, key, clock, persistence):
        # 20ms of wall time left in the bucket
        clock.now = BASE_MS + MINUTE_MS - 20
        feed = FakeFeed()
        store = spied_store(key, persistence, clock)
        agg = LiveAggregator(store, feed, clock=clock, debounce_seconds=0.01)
        task = await start(agg, feed)

        feed.callback(snapshot(BASE_MS, close="42"))
        await until(lambda: store.has_final(BASE_MS))

        assert store.get(BASE_MS).close == "42"
        assert agg.state == "idle"
        await stop(task)

    @pytest.mark.asyncio
    async def test_late_correction_during_debounce_wins(self, key, clock, persistence):
        clock.now = BASE_MS + MINUTE_MS - 10
        feed = FakeFeed()
        store = spied_store(key, persistence, clock)
        agg = LiveAggregator(store, feed, clock=clock, debounce_seconds=0.2)
        task = await start(agg, feed)

        feed.callback(snapshot(BASE_MS, close="1"))
        await until(lambda: agg.state == "debouncing")
        feed.callback(snapshot(BASE_MS, close="2"))
        await until(lambda: store.has_final(BASE_MS))

        assert store.get(BASE_MS).close == "2"
        assert store.append.call_count == 1
        await stop(task)

    @pytest.mark.asyncio
    async def test_new_boundary_flushes_pending_commit(self, key, clock, persistence):
        clock.now = BASE_MS + MINUTE_MS - 10
        feed = FakeFeed()
        store = spied_store(key, persistence, clock)
        agg = LiveAggregator(store, feed, clock=clock, debounce_seconds=5)
        task = await start(agg, feed)

        feed.callback(snapshot(BASE_MS, close="1"))
        await until(lambda: agg.state == "debouncing")
        clock.now = BASE_MS + 3 * MINUTE_MS - 10
        feed.callback(snapshot(BASE_MS + MINUTE_MS, close="2"))
        feed.callback(snapshot(BASE_MS + 2 * MINUTE_MS, close="3"))
        await until(lambda: store.has_final(BASE_MS) and store.has_final(BASE_MS + MINUTE_MS))

        assert [c.close for c in store.candles] == ["1", "2"]
        await stop(task)

    @pytest.mark.asyncio
    async def test_finalized_entry_is_not_appended_twice(self, key, clock, persistence, capsys):
        clock.now = BASE_MS + MINUTE_MS - 50
        feed = FakeFeed()
        store = spied_store(key, persistence, clock)
        agg = LiveAggregator(store, feed, clock=clock, debounce_seconds=0.01)
        task = await start(agg, feed)

        feed.callback(snapshot(BASE_MS, close="1"))
        await until(lambda: agg.state == "accumulating")
        # A healing pass lands the finalized bucket first
        store.merge([make_candle(BASE_MS, close="7")])
        await until(lambda: agg.state == "idle")
        await asyncio.sleep(0.02)

        assert store.append.call_count == 0
        assert store.get(BASE_MS).close == "7"
        assert "already exists in dataset" in capsys.readouterr().out
        await stop(task)

    @pytest.mark.asyncio
    async def test_provisional_entry_is_superseded(self, key, clock, persistence):
        clock.now = BASE_MS + MINUTE_MS - 20
        feed = FakeFeed()
        store = spied_store(key, persistence, clock, [make_candle(BASE_MS, close="1", provisional=True)])
        agg = LiveAggregator(store, feed, clock=clock, debounce_seconds=0.01)
        task = await start(agg, feed)

        feed.callback(snapshot(BASE_MS, close="2"))
        await until(lambda: store.has_final(BASE_MS))

        assert store.candles == [make_candle(BASE_MS, close="2")]
        await stop(task)

    @pytest.mark.asyncio
    async def test_cancel_during_debounce_commits_nothing(self, key, clock, persistence):
        clock.now = BASE_MS + MINUTE_MS - 10
        feed = FakeFeed()
        store = spied_store(key, persistence, clock)
        agg = LiveAggregator(store, feed, clock=clock, debounce_seconds=0.2)
        task = await start(agg, feed)

        feed.callback(snapshot(BASE_MS))
        await until(lambda: agg.state == "debouncing")
        await stop(task)
        await asyncio.sleep(0.3)

        assert store.append.call_count == 0
        assert len(store) == 0
        assert feed.cancelled

    @pytest.mark.asyncio
    async def test_commit_is_written_off_the_event_loop(self, key, clock, persistence):
        clock.now = BASE_MS + MINUTE_MS - 20
        feed = FakeFeed()
        store = spied_store(key, persistence, clock)
        agg = LiveAggregator(store, feed, clock=clock, debounce_seconds=0.01)
        task = await start(agg, feed)

        feed.callback(snapshot(BASE_MS, close="5"))
        await until(lambda: persistence.writes)

        assert persistence.writes == [key]
        assert threading.get_ident() not in persistence.write_threads
        await stop(task)

    @pytest.mark.asyncio
    async def test_persistence_failure_ends_run(self, key, clock, persistence):
        clock.now = BASE_MS + MINUTE_MS - 10
        feed = FakeFeed()
        store = spied_store(key, persistence, clock)
        persistence.fail_writes = True
        agg = LiveAggregator(store, feed, clock=clock, debounce_seconds=0.01)
        task = await start(agg, feed)

        feed.callback(snapshot(BASE_MS))

        with pytest.raises(PersistenceError):
            await asyncio.wait_for(task, 2)
        assert feed.cancelled

    @pytest.mark.asyncio
    async def test_feed_end_is_surfaced(self, key, clock, persistence):
        feed = FakeFeed(end_immediately=True)
        agg = LiveAggregator(spied_store(key, persistence, clock), feed, clock=clock)

        with pytest.raises(FeedError):
            await asyncio.wait_for(agg.run(), 2)
