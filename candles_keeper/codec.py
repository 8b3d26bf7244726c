"""
Persisted record format.

One record holds the full ordered candle sequence of a series as a canonical
CSV. Every column is handled as a string so numbers survive byte for byte.
"""

import io
from typing import List, Optional, Sequence

import pandas as pd

from .candle import Candle, canonical_num_str, to_open_time
from .console import c_key, c_rows, c_var, log_warn
from .errors import PersistenceError

CSV_COLUMNS = ["timestamp", "open", "close", "high", "low", "volume", "provisional"]


def encode_candles(candles: Sequence[Candle]) -> bytes:
    rows = [
        {
            "timestamp": str(c.open_time),
            "open": c.open,
            "close": c.close,
            "high": c.high,
            "low": c.low,
            "volume": c.volume,
            "provisional": "1" if c.provisional else "0",
        }
        for c in candles
    ]
    df = pd.DataFrame(rows, columns=CSV_COLUMNS, dtype=str)
    return df.to_csv(index=False).encode("utf-8")


def decode_candles(data: bytes, *, context: Optional[object] = None) -> List[Candle]:
    """
    Parse a persisted record.

    Rows with a non-numeric timestamp or unparsable prices are dropped with a
    warning; they will be backfilled by the next gap-heal pass. A record that
    is not CSV at all raises PersistenceError.
    """
    if not data or not data.strip():
        return []

    try:
        df = pd.read_csv(io.BytesIO(data), dtype=str, keep_default_na=False)
    except (pd.errors.ParserError, UnicodeDecodeError) as e:
        raise PersistenceError(f"Unreadable candle record for {context}: {e}") from e
    for col in CSV_COLUMNS:
        if col not in df.columns:
            df[col] = "0" if col == "provisional" else ""

    # Non-numeric timestamps are a data integrity anomaly, not a fatal error
    ts = pd.to_numeric(df["timestamp"], errors="coerce")
    bad_ts = df[ts.isna()]
    if len(bad_ts):
        log_warn(
            f"{c_key(context)} Dropped {c_rows(len(bad_ts))} persisted rows with non-numeric "
            f"timestamps: {c_var(bad_ts['timestamp'].tolist()[:5])}"
        )
    df = df[ts.notna()]

    candles: List[Candle] = []
    for row in df[CSV_COLUMNS].itertuples(index=False):
        try:
            candles.append(
                Candle(
                    open_time=to_open_time(row.timestamp),
                    open=canonical_num_str(row.open),
                    high=canonical_num_str(row.high),
                    low=canonical_num_str(row.low),
                    close=canonical_num_str(row.close),
                    volume=canonical_num_str(row.volume),
                    provisional=str(row.provisional).strip().lower() in ("1", "true"),
                )
            )
        except ValueError as e:
            log_warn(f"{c_key(context)} Dropped persisted row at {c_var(row.timestamp)}: {e}")
    return candles
