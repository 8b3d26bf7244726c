"""
Live aggregator.

Consumes partial-candle snapshots from the push feed and commits each bucket
to the store exactly once, shortly after the bucket closes.

States per series:

- idle:          no snapshot seen for the current bucket
- accumulating:  the latest snapshot of the current bucket is buffered,
                 every further update for that bucket overwrites it
- debouncing:    a bucket closed (a later bucket was reported, or the clock
                 passed its end); its snapshot is held for ``debounce_seconds``
                 to absorb last-moment corrections, then finalized and appended

Snapshots are fed through ``submit`` onto a queue drained by a single task,
so updates are processed in delivery order and never concurrently.
"""

import asyncio
from typing import Any, Callable, Optional, Set

from .adapters import ExchangeAdapter
from .candle import Candle
from .console import c_desc, c_key, fmt_mts, log_info, log_success, log_trace, log_warn
from .errors import FeedError
from .intervals import now_ms
from .store import CandleStore

DEFAULT_DEBOUNCE_SECONDS = 0.1


class _Failure:
    """Queue item carrying an error out of a background task."""

    def __init__(self, error: BaseException) -> None:
        self.error = error


class LiveAggregator:
    def __init__(
        self,
        store: CandleStore,
        feed: ExchangeAdapter,
        clock: Callable[[], int] = now_ms,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
    ) -> None:
        self.store = store
        self.feed = feed
        self.clock = clock
        self.debounce_seconds = float(debounce_seconds)

        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self._current: Optional[Candle] = None   # bucket being accumulated
        self._closing: Optional[Candle] = None   # bucket being debounced
        self._pending: Optional[asyncio.Task] = None
        self._saves: Set[asyncio.Task] = set()
        self._last_committed = next(
            (c.open_time for c in reversed(store.candles) if not c.provisional), -1
        )

    @property
    def key(self):
        return self.store.key

    @property
    def state(self) -> str:
        if self._closing is not None:
            return "debouncing"
        if self._current is not None:
            return "accumulating"
        return "idle"

    def submit(self, snapshot: Any) -> None:
        """Push-feed callback; may fire arbitrarily often per bucket."""
        self._queue.put_nowait(snapshot)

    async def run(self) -> None:
        """
        Subscribe to the feed and process snapshots until cancelled.

        Raises FeedError if the subscription ends, and PersistenceError if a
        commit cannot be written. Cancelling also cancels the subscription and
        any pending commit.
        """
        feed_task = asyncio.create_task(
            self.feed.subscribe(self.key.instrument, self.key.interval, self.submit)
        )
        feed_task.add_done_callback(self._on_feed_done)
        log_info(f"{c_key(self.key)} Live aggregation started")
        try:
            await self._consume()
        finally:
            feed_task.remove_done_callback(self._on_feed_done)
            feed_task.cancel()
            self._cancel_pending()
            # Committed candles still reach disk
            await asyncio.gather(feed_task, *self._saves, return_exceptions=True)
            log_info(f"{c_key(self.key)} Live aggregation stopped")

    async def _consume(self) -> None:
        while True:
            timeout = self._seconds_until_close()
            try:
                item = await asyncio.wait_for(self._queue.get(), timeout)
            except asyncio.TimeoutError:
                self._close_current()
                continue
            if isinstance(item, _Failure):
                raise item.error
            self.on_snapshot(item)

    def _seconds_until_close(self) -> Optional[float]:
        if self._current is None:
            return None
        end = self._current.open_time + self.key.interval_ms
        return max(0.0, (end - self.clock()) / 1000)

    # ------------------------------ Transitions --------------------------- #

    def on_snapshot(self, snapshot: Any) -> None:
        key = self.key
        try:
            candle = Candle.from_snapshot(snapshot, provisional=True)
        except ValueError as e:
            # The buffered state for the bucket is left untouched
            log_warn(f"{c_key(key)} Dropping malformed snapshot: {c_desc(e)}")
            return

        t = candle.open_time
        now = self.clock()
        if t > now:
            log_warn(f"{c_key(key)} Dropping snapshot for future bucket {fmt_mts(t)} (now {fmt_mts(now)})")
            return
        if t <= self._last_committed:
            log_trace(f"{c_key(key)} Ignoring update for committed bucket {fmt_mts(t)}")
            return

        if self._closing is not None:
            if t == self._closing.open_time:
                # Late correction while debouncing
                self._closing = candle
                return
            if t < self._closing.open_time:
                log_trace(f"{c_key(key)} Ignoring stale update for bucket {fmt_mts(t)}")
                return

        if self._current is None or t == self._current.open_time:
            self._current = candle
            return

        if t < self._current.open_time:
            log_trace(f"{c_key(key)} Ignoring stale update for bucket {fmt_mts(t)}")
            return

        # A later bucket was reported: the buffered one has closed
        self._close_current()
        self._current = candle

    def _close_current(self) -> None:
        candle, self._current = self._current, None
        if candle is None:
            return
        if self._pending is not None:
            # Never hold two buckets at once; flush the older one now
            self._cancel_pending()
            self._commit()
        self._closing = candle
        self._pending = asyncio.get_running_loop().create_task(self._commit_after_delay())
        self._pending.add_done_callback(self._on_commit_done)

    async def _commit_after_delay(self) -> None:
        await asyncio.sleep(self.debounce_seconds)
        self._pending = None
        self._commit()

    def _commit(self) -> None:
        candle, self._closing = self._closing, None
        if candle is None:
            return
        key = self.key
        final = candle.finalized()
        self._last_committed = max(self._last_committed, final.open_time)

        if self.store.has_final(final.open_time):
            log_info(f"{c_key(key)} Candle {fmt_mts(final.open_time)} already exists in dataset, skipping")
            return

        self.store.append(final, persist=False)
        self._save_soon()
        log_success(f"{c_key(key)} Candle closed {fmt_mts(final.open_time)} {c_desc(final.ohlcv_inline())}")

    def _save_soon(self) -> None:
        task = asyncio.get_running_loop().create_task(self.store.save())
        self._saves.add(task)
        task.add_done_callback(self._on_save_done)

    def _cancel_pending(self) -> None:
        task, self._pending = self._pending, None
        if task is not None and not task.done():
            task.remove_done_callback(self._on_commit_done)
            task.cancel()

    # ------------------------------ Background task results --------------- #

    def _on_commit_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._queue.put_nowait(_Failure(error))

    def _on_save_done(self, task: asyncio.Task) -> None:
        self._saves.discard(task)
        self._on_commit_done(task)

    def _on_feed_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            error: BaseException = FeedError(f"{self.key} feed subscription was cancelled")
        elif task.exception() is not None:
            error = FeedError(f"{self.key} feed failed: {task.exception()}")
        else:
            error = FeedError(f"{self.key} feed subscription ended")
        self._queue.put_nowait(_Failure(error))
