"""
Interval registry.

Maps the small fixed set of symbolic interval names to their duration in
milliseconds and provides the bucket arithmetic used across the engine.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict

from .errors import ConfigurationError

INTERVAL_MS: Dict[str, int] = {
    "1m": 60_000,
    "5m": 5 * 60_000,
    "15m": 15 * 60_000,
    "1h": 3_600_000,
    "4h": 4 * 3_600_000,
    "1d": 86_400_000,
}

VALID_INTERVALS = tuple(INTERVAL_MS)


def to_interval_key(interval: str) -> str:
    # Guard against accidental whitespace
    key = (interval or "").strip()
    if key not in INTERVAL_MS:
        raise ConfigurationError(
            f"Unsupported interval: {interval!r}. Supported: {list(VALID_INTERVALS)}"
        )
    return key


def interval_ms(interval: str) -> int:
    return INTERVAL_MS[to_interval_key(interval)]


def now_ms() -> int:
    """Default wall-clock time source, in milliseconds since epoch."""
    return int(datetime.now(timezone.utc).timestamp() * 1000)


@dataclass(frozen=True, order=True)
class SeriesKey:
    """
    Identifies one candle series: an (instrument, interval) pair.

    Exactly one CandleStore and one durable record exist per key.
    """
    instrument: str
    interval: str

    def __post_init__(self) -> None:
        instrument = (self.instrument or "").strip()
        if not instrument:
            raise ConfigurationError("Instrument identifier must not be empty")
        object.__setattr__(self, "instrument", instrument)
        object.__setattr__(self, "interval", to_interval_key(self.interval))

    @property
    def interval_ms(self) -> int:
        return INTERVAL_MS[self.interval]

    @staticmethod
    def parse(text: str) -> "SeriesKey":
        """Parse ``INSTRUMENT:interval`` (as used in config pair lists)."""
        instrument, sep, interval = (text or "").strip().rpartition(":")
        if not sep:
            raise ConfigurationError(f"Invalid pair {text!r}; expected INSTRUMENT:interval")
        return SeriesKey(instrument, interval)

    def __str__(self) -> str:
        return f"{self.instrument}/{self.interval}"
