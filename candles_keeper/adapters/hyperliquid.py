"""
Hyperliquid exchange adapter.

API Documentation: https://hyperliquid.gitbook.io/hyperliquid-docs/for-developers/api
"""

from typing import Any, Dict, List, Optional

from ..candle import Candle
from .base import AdapterConfig, ExchangeAdapter, RateLimitConfig, Snapshot, snapshot_from_fields
from . import register_adapter


HYPERLIQUID_API_URL = "https://api.hyperliquid.xyz/info"
HYPERLIQUID_WS_URL = "wss://api.hyperliquid.xyz/ws"
API_LIMIT = 5000
BACKOFF_INITIAL_SECONDS = 5
BACKOFF_MAX_SECONDS = 60


@register_adapter
class HyperliquidAdapter(ExchangeAdapter):
    """
    Adapter for the Hyperliquid public info API and websocket.

    Candle format (REST and websocket alike):
    {"t": open_ms, "T": close_ms, "s": coin, "i": interval,
     "o": open, "c": close, "h": high, "l": low, "v": volume, "n": trades}

    REST prices arrive as strings; websocket prices may arrive as numbers.
    """

    @property
    def name(self) -> str:
        return "HYPERLIQUID"

    @property
    def config(self) -> AdapterConfig:
        return AdapterConfig(
            api_url=HYPERLIQUID_API_URL,
            ws_url=HYPERLIQUID_WS_URL,
            limit=API_LIMIT,
            timeout_seconds=30,
            rate_limit=RateLimitConfig(
                initial_backoff_seconds=BACKOFF_INITIAL_SECONDS,
                max_backoff_seconds=BACKOFF_MAX_SECONDS,
                rate_limit_status_codes=(429,),
            ),
        )

    def get_supported_intervals(self) -> Dict[str, str]:
        return {
            '1m': '1m',
            '5m': '5m',
            '15m': '15m',
            '1h': '1h',
            '4h': '4h',
            '1d': '1d',
        }

    def format_symbol(self, instrument: str) -> str:
        """
        Hyperliquid perpetuals are addressed by coin name: 'BTC-PERP' -> 'BTC'.
        Anything else (spot '@107', 'PURR/USDC') is passed through.
        """
        symbol = instrument.strip()
        if symbol.upper().endswith("-PERP"):
            return symbol[: -len("-PERP")].upper()
        return symbol

    def build_request(
        self,
        symbol: str,
        interval: str,
        start: int,
        end: int,
        limit: int,
    ) -> Dict[str, Any]:
        # The info endpoint has no limit parameter; it caps responses at API_LIMIT
        return {
            "method": "POST",
            "url": HYPERLIQUID_API_URL,
            "json": {
                "type": "candleSnapshot",
                "req": {
                    "coin": symbol,
                    "interval": interval,
                    "startTime": int(start),
                    "endTime": int(end),
                },
            },
        }

    def parse_response(self, data: Any) -> List[Candle]:
        if not data or not isinstance(data, list):
            return []

        candles = []
        for row in data:
            if not isinstance(row, dict):
                continue
            try:
                candles.append(
                    Candle.build(
                        open_time=row["t"],
                        open=row["o"],
                        high=row["h"],
                        low=row["l"],
                        close=row["c"],
                        volume=row["v"],
                    )
                )
            except (KeyError, ValueError):
                continue

        candles.sort(key=lambda c: c.open_time)
        return candles

    def build_subscription(self, symbol: str, interval: str) -> Optional[Dict[str, Any]]:
        return {
            "method": "subscribe",
            "subscription": {"type": "candle", "coin": symbol, "interval": interval},
        }

    def parse_snapshot(self, message: Any) -> Optional[Snapshot]:
        if not isinstance(message, dict) or message.get("channel") != "candle":
            return None
        data = message.get("data")
        if not isinstance(data, dict):
            return {}
        return snapshot_from_fields(data)
