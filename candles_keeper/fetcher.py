"""
Historical fetcher.

Wraps the bulk-query collaborator: validates the request, bounds its size,
owns the connection lifecycle and screens what comes back.
"""

from dataclasses import replace
from typing import Callable, List, Optional

from .adapters import ExchangeAdapter
from .candle import Candle
from .console import c_key, c_rows, fmt_mts, log_info, log_warn
from .errors import ConfigurationError
from .intervals import SeriesKey, interval_ms, now_ms

DEFAULT_MAX_COUNT = 5000


class HistoricalFetcher:
    """
    Best-effort historical candles for a window.

    May return fewer candles than the window spans (near the present, or when
    the exchange has no trades). Collaborator failures propagate untouched;
    there is no retry here.
    """

    def __init__(
        self,
        source: ExchangeAdapter,
        max_count: int = DEFAULT_MAX_COUNT,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        if max_count < 1:
            raise ConfigurationError(f"max_count must be positive, got {max_count}")
        self.source = source
        self.max_count = int(max_count)
        self.clock = clock

    def fetch(self, instrument: str, interval: str, start: int, end: int) -> List[Candle]:
        """Candles with open time in [start, end]. Requires start < end."""
        key = SeriesKey(instrument, interval)
        start, end = int(start), int(end)
        if start >= end:
            raise ConfigurationError(
                f"Invalid time range for {key}: start {start} ({fmt_mts(start)}) "
                f"must be before end {end} ({fmt_mts(end)})"
            )

        step = key.interval_ms
        span = -(-(end - start) // step)  # buckets covered, rounded up
        if span > self.max_count:
            clamped = end - self.max_count * step
            log_warn(
                f"{c_key(key)} Requested {c_rows(span)} candles exceeds max {c_rows(self.max_count)}; "
                f"start moved {fmt_mts(start)} → {fmt_mts(clamped)}"
            )
            start = clamped

        log_info(f"{c_key(key)} Fetching candles {fmt_mts(start)} … {fmt_mts(end)}")

        self.source.connect()
        try:
            raw = self.source.query(key.instrument, key.interval, start, end, include_partial=True)
        finally:
            self.source.disconnect()

        return self._screen(key, raw, start, end)

    def fetch_recent(self, instrument: str, interval: str, count: Optional[int] = None) -> List[Candle]:
        """The most recent ``count`` buckets up to now (bounded by max_count)."""
        step = interval_ms(interval)
        count = self.max_count if count is None else min(int(count), self.max_count)
        if count < 1:
            raise ConfigurationError(f"Candle count must be positive, got {count}")
        end = self.clock()
        return self.fetch(instrument, interval, end - count * step, end)

    def _screen(self, key: SeriesKey, raw: List[Candle], start: int, end: int) -> List[Candle]:
        now = self.clock()
        step = key.interval_ms
        out: List[Candle] = []
        for candle in raw:
            t = candle.open_time
            if t < start or t > end:
                log_warn(
                    f"{c_key(key)} Discarding candle {fmt_mts(t)} outside requested range "
                    f"[{fmt_mts(start)}, {fmt_mts(end)}]"
                )
                continue
            # Buckets that have not closed yet are still moving
            out.append(replace(candle, provisional=t + step > now))
        return out
