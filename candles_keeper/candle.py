"""
Candle model and canonical numbers.

Prices and volumes are carried as canonical decimal strings end to end.
Binary floats never enter a stored candle, so repeated merges cannot drift.
"""

import decimal
from dataclasses import dataclass, replace
from typing import Any, Mapping

PRICE_FIELDS = ("open", "high", "low", "close", "volume")


def canonical_num_str(x: object) -> str:
    """
    Render a number as a plain decimal string with trailing zeros stripped.

    Floats go through ``str`` first, which is their shortest round-tripping
    form. Raises ValueError for None, unparsable or non-finite input.
    """
    if x is None or isinstance(x, bool):
        raise ValueError(f"Not a number: {x!r}")
    try:
        d = decimal.Decimal(str(x).strip())
    except decimal.InvalidOperation:
        raise ValueError(f"Not a number: {x!r}") from None
    if not d.is_finite():
        raise ValueError(f"Not a finite number: {x!r}")
    s = format(d, "f")
    if "." in s:
        s = s.rstrip("0").rstrip(".")
    if s in ("", "-0"):
        return "0"
    return s


def to_open_time(x: object) -> int:
    """Integer millisecond timestamp; rejects booleans, fractions and junk."""
    if x is None or isinstance(x, bool):
        raise ValueError(f"Invalid timestamp: {x!r}")
    try:
        d = decimal.Decimal(str(x).strip())
    except decimal.InvalidOperation:
        raise ValueError(f"Invalid timestamp: {x!r}") from None
    if not d.is_finite() or d != d.to_integral_value():
        raise ValueError(f"Invalid timestamp: {x!r}")
    return int(d)


@dataclass(frozen=True)
class Candle:
    """OHLCV aggregate for one bucket of one series."""
    open_time: int  # milliseconds since epoch, bucket aligned
    open: str
    high: str
    low: str
    close: str
    volume: str
    provisional: bool = False

    @classmethod
    def build(
        cls,
        open_time: Any,
        open: Any,
        high: Any,
        low: Any,
        close: Any,
        volume: Any,
        provisional: bool = False,
    ) -> "Candle":
        """Construct from loosely typed values, canonicalizing every field."""
        return cls(
            open_time=to_open_time(open_time),
            open=canonical_num_str(open),
            high=canonical_num_str(high),
            low=canonical_num_str(low),
            close=canonical_num_str(close),
            volume=canonical_num_str(volume),
            provisional=bool(provisional),
        )

    @classmethod
    def from_snapshot(cls, snapshot: Mapping[str, Any], provisional: bool = True) -> "Candle":
        """
        Build a candle from a push-feed snapshot mapping.

        Expected keys: open_time, open, high, low, close, volume.
        Raises ValueError when a field is missing or unparsable.
        """
        if not isinstance(snapshot, Mapping):
            raise ValueError(f"Snapshot is not a mapping: {type(snapshot).__name__}")
        missing = [k for k in ("open_time",) + PRICE_FIELDS if snapshot.get(k) is None]
        if missing:
            raise ValueError(f"Snapshot missing fields: {missing}")
        return cls.build(
            snapshot["open_time"],
            snapshot["open"],
            snapshot["high"],
            snapshot["low"],
            snapshot["close"],
            snapshot["volume"],
            provisional=provisional,
        )

    def finalized(self) -> "Candle":
        if not self.provisional:
            return self
        return replace(self, provisional=False)

    def ohlcv_inline(self) -> str:
        return f"O:{self.open} H:{self.high} L:{self.low} C:{self.close} V:{self.volume}"
