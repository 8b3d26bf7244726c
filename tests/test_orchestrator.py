"""Tests for the per-series orchestrator and its wiring."""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from candles_keeper.codec import encode_candles
from candles_keeper.config import SyncConfig
from candles_keeper.errors import FetchError, PersistenceError
from candles_keeper.fetcher import HistoricalFetcher
from candles_keeper.orchestrator import SyncOrchestrator, build_orchestrator
from candles_keeper.persistence import FilePersistence
from candles_keeper.store import CandleStore
from tests.conftest import BASE_MS, MINUTE_MS, FakeFeed, FakeFetcher, FakeSource, MemoryPersistence, make_candle


def make_orchestrator(key, clock, persistence, fetched=(), feed=None, **kwargs):
    store = CandleStore(key, persistence, clock=clock)
    fetcher = FakeFetcher(list(fetched))
    feed = feed or FakeFeed()
    return SyncOrchestrator(key, store, fetcher, feed, clock=clock, **kwargs), fetcher, feed


class TestPrepare:
    @pytest.mark.asyncio
    async def test_bootstrap_seeds_recent_history(self, key, clock, persistence):
        seed = [make_candle(BASE_MS - 2 * MINUTE_MS), make_candle(BASE_MS - MINUTE_MS)]
        orch, fetcher, _ = make_orchestrator(key, clock, persistence, seed, bootstrap_count=10)

        candles = await orch.prepare()

        assert fetcher.calls[0] == ("BTC-PERP", "1m", "recent", 10)
        assert candles == seed
        assert persistence.writes

    @pytest.mark.asyncio
    async def test_existing_state_is_healed(self, key, clock):
        persistence = MemoryPersistence({key: encode_candles([make_candle(BASE_MS - 3 * MINUTE_MS)])})
        missing = [make_candle(BASE_MS - i * MINUTE_MS) for i in (2, 1, 0)]
        orch, fetcher, _ = make_orchestrator(key, clock, persistence, missing)

        candles = await orch.prepare()

        assert fetcher.calls == [("BTC-PERP", "1m", BASE_MS - 3 * MINUTE_MS, BASE_MS)]
        assert [c.open_time for c in candles] == [BASE_MS - i * MINUTE_MS for i in (3, 2, 1, 0)]

    @pytest.mark.asyncio
    async def test_second_prepare_only_heals(self, key, clock, persistence):
        seed = [make_candle(BASE_MS - MINUTE_MS)]
        orch, fetcher, _ = make_orchestrator(key, clock, persistence, seed)

        await orch.prepare()
        clock.advance(2 * MINUTE_MS)
        await orch.prepare()

        recent = [call for call in fetcher.calls if call[2] == "recent"]
        assert len(recent) == 1
        assert fetcher.calls[-1][2:] == (BASE_MS - MINUTE_MS, BASE_MS + 2 * MINUTE_MS)


class TestRunLive:
    @pytest.mark.asyncio
    async def test_run_is_cancellable(self, key, clock, persistence):
        orch, _, feed = make_orchestrator(key, clock, persistence, [make_candle(BASE_MS - MINUTE_MS)])

        task = asyncio.create_task(orch.run())
        await asyncio.wait_for(feed.subscribed.wait(), 2)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert feed.cancelled

    @pytest.mark.asyncio
    async def test_periodic_healing_runs_alongside_live(self, key, clock, persistence):
        orch, _, feed = make_orchestrator(key, clock, persistence, heal_every_seconds=0.01)
        orch.healer.heal = AsyncMock(return_value=0)

        task = asyncio.create_task(orch.run_live())
        await asyncio.wait_for(feed.subscribed.wait(), 2)
        for _ in range(200):
            if orch.healer.heal.await_count >= 2:
                break
            await asyncio.sleep(0.01)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

        assert orch.healer.heal.await_count >= 2
        assert feed.cancelled

    @pytest.mark.asyncio
    async def test_transient_heal_failure_keeps_live_running(self, key, clock, persistence, capsys):
        orch, _, feed = make_orchestrator(key, clock, persistence, heal_every_seconds=0.01)
        orch.healer.heal = AsyncMock(side_effect=FetchError("boom"))

        task = asyncio.create_task(orch.run_live())
        await asyncio.wait_for(feed.subscribed.wait(), 2)
        for _ in range(200):
            if orch.healer.heal.await_count >= 2:
                break
            await asyncio.sleep(0.01)

        assert orch.healer.heal.await_count >= 2
        assert not task.done()
        assert "Periodic heal failed" in capsys.readouterr().out
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    @pytest.mark.asyncio
    async def test_persistence_failure_in_healing_stops_live(self, key, clock, persistence):
        orch, _, feed = make_orchestrator(key, clock, persistence, heal_every_seconds=0.01)
        orch.healer.heal = AsyncMock(side_effect=PersistenceError("disk full"))

        with pytest.raises(PersistenceError):
            await asyncio.wait_for(orch.run_live(), 2)
        assert feed.cancelled


class TestBuildOrchestrator:
    def test_wiring(self, tmp_path, key, clock):
        config = SyncConfig(data_root=tmp_path, max_count=300, bootstrap_count=200, debounce_ms=250)
        source = FakeSource()

        orch = build_orchestrator(key, config, adapter=source, clock=clock)

        assert isinstance(orch.store.persistence, FilePersistence)
        assert orch.store.persistence.path_for(key) == (
            Path(tmp_path) / "FAKE" / "candles" / "BTC-PERP" / "1m.csv"
        ).resolve()
        assert isinstance(orch.fetcher, HistoricalFetcher)
        assert orch.fetcher.max_count == 300
        assert orch.bootstrap_count == 200
        assert orch.debounce_seconds == 0.25
        assert orch.feed is source

    def test_default_adapter_comes_from_registry(self, key):
        orch = build_orchestrator(key, SyncConfig(), persistence=MemoryPersistence())
        assert orch.feed.name == "HYPERLIQUID"
