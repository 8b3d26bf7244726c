"""Configuration management."""

import os
from dataclasses import dataclass, field
from datetime import time as dt_time
from pathlib import Path
from typing import List, Mapping, Optional

from .errors import ConfigurationError
from .intervals import SeriesKey

ENV_PREFIX = "CANDLES_KEEPER_"

DEFAULT_DATA_ROOT = Path.home() / ".candles_keeper"
DEFAULT_EXCHANGE = "HYPERLIQUID"
DEFAULT_PAIRS = "BTC-PERP:1m,BTC-PERP:5m,BTC-PERP:15m"
# 04:00 UTC is 11:00 Bangkok time
DEFAULT_RUN_AT = "04:00"


def parse_pairs(text: str) -> List[SeriesKey]:
    """Parse ``BTC-PERP:1m,ETH-PERP:5m`` into series keys, keeping order."""
    pairs = [SeriesKey.parse(part) for part in (text or "").split(",") if part.strip()]
    if not pairs:
        raise ConfigurationError("At least one INSTRUMENT:interval pair is required")
    return pairs


def parse_run_at(text: str) -> dt_time:
    try:
        hour, minute = (int(p) for p in (text or "").strip().split(":"))
        return dt_time(hour, minute)
    except ValueError:
        raise ConfigurationError(f"Invalid run time {text!r}; expected HH:MM (UTC)") from None


@dataclass
class SyncConfig:
    """Engine and scheduler settings, from environment variables or defaults."""

    data_root: Path = DEFAULT_DATA_ROOT
    exchange: str = DEFAULT_EXCHANGE
    pairs: List[SeriesKey] = field(default_factory=lambda: parse_pairs(DEFAULT_PAIRS))
    max_count: int = 5000
    bootstrap_count: int = 5000
    debounce_ms: int = 100
    heal_every_seconds: float = 0.0
    run_at: dt_time = field(default_factory=lambda: parse_run_at(DEFAULT_RUN_AT))
    pair_delay_seconds: float = 60.0
    retry_seconds: float = 300.0

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "SyncConfig":
        """Load configuration from ``CANDLES_KEEPER_*`` variables.

        Unset variables fall back to the defaults. Fails immediately on
        values that cannot be parsed.
        """
        env = os.environ if environ is None else environ

        def get(name: str) -> Optional[str]:
            value = env.get(ENV_PREFIX + name)
            return value if value not in (None, "") else None

        def number(name: str, cast, default):
            raw = get(name)
            if raw is None:
                return default
            try:
                return cast(raw)
            except ValueError:
                raise ConfigurationError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}") from None

        defaults = cls()
        config = cls(
            data_root=Path(get("DATA_ROOT")).expanduser() if get("DATA_ROOT") else defaults.data_root,
            exchange=(get("EXCHANGE") or defaults.exchange).upper(),
            pairs=parse_pairs(get("PAIRS")) if get("PAIRS") else defaults.pairs,
            max_count=number("MAX_COUNT", int, defaults.max_count),
            bootstrap_count=number("BOOTSTRAP_COUNT", int, defaults.bootstrap_count),
            debounce_ms=number("DEBOUNCE_MS", int, defaults.debounce_ms),
            heal_every_seconds=number("HEAL_EVERY_SECONDS", float, defaults.heal_every_seconds),
            run_at=parse_run_at(get("RUN_AT")) if get("RUN_AT") else defaults.run_at,
            pair_delay_seconds=number("PAIR_DELAY_SECONDS", float, defaults.pair_delay_seconds),
            retry_seconds=number("RETRY_SECONDS", float, defaults.retry_seconds),
        )
        config.validate()
        return config

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000

    def validate(self) -> None:
        """Validate configuration."""
        if not self.exchange:
            raise ConfigurationError("Exchange is required")
        if not self.pairs:
            raise ConfigurationError("At least one pair is required")
        if self.max_count < 1:
            raise ConfigurationError("max_count must be positive")
        if not 1 <= self.bootstrap_count <= self.max_count:
            raise ConfigurationError("bootstrap_count must be between 1 and max_count")
        if self.debounce_ms < 0:
            raise ConfigurationError("debounce_ms must not be negative")
        if self.heal_every_seconds < 0:
            raise ConfigurationError("heal_every_seconds must not be negative (0 disables)")
        if self.pair_delay_seconds < 0 or self.retry_seconds < 0:
            raise ConfigurationError("Delays must not be negative")
