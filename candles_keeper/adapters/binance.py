"""
Binance exchange adapter.

API Documentation: https://binance-docs.github.io/apidocs/spot/en/#kline-candlestick-data
Streams: https://binance-docs.github.io/apidocs/spot/en/#kline-candlestick-streams
"""

from typing import Any, Dict, List, Optional

from ..candle import Candle
from .base import AdapterConfig, ExchangeAdapter, RateLimitConfig, Snapshot, snapshot_from_fields
from . import register_adapter


BINANCE_API_URL = "https://api.binance.com/api/v3/klines"
BINANCE_WS_URL = "wss://stream.binance.com:9443/ws/{}@kline_{}"
API_LIMIT = 1000
BACKOFF_INITIAL_SECONDS = 10
BACKOFF_MAX_SECONDS = 120


@register_adapter
class BinanceAdapter(ExchangeAdapter):
    """
    Adapter for Binance public klines API and kline streams.

    REST kline format:
    [
        open_time, open, high, low, close, volume,
        close_time, quote_volume, trades, taker_buy_base, taker_buy_quote, ignore
    ]

    Stream payload: {"e": "kline", "s": "BTCUSDT", "k": {"t", "o", "h", "l", "c", "v", "x", ...}}
    """

    @property
    def name(self) -> str:
        return "BINANCE"

    @property
    def config(self) -> AdapterConfig:
        return AdapterConfig(
            api_url=BINANCE_API_URL,
            ws_url=BINANCE_WS_URL,
            limit=API_LIMIT,
            timeout_seconds=30,
            rate_limit=RateLimitConfig(
                initial_backoff_seconds=BACKOFF_INITIAL_SECONDS,
                max_backoff_seconds=BACKOFF_MAX_SECONDS,
                rate_limit_status_codes=(429, 418),  # 418 = IP ban
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
        Binance uses uppercase symbols without separators (e.g., BTCUSDT).
        """
        return instrument.upper().replace('-', '').replace('_', '').replace('/', '')

    def build_request(
        self,
        symbol: str,
        interval: str,
        start: int,
        end: int,
        limit: int,
    ) -> Dict[str, Any]:
        return {
            "method": "GET",
            "url": BINANCE_API_URL,
            "params": {
                "symbol": symbol,
                "interval": interval,
                "startTime": int(start),
                "endTime": int(end),
                "limit": min(int(limit), API_LIMIT),
            },
        }

    def parse_response(self, data: Any) -> List[Candle]:
        if not data or not isinstance(data, list):
            return []

        candles = []
        for row in data:
            if not isinstance(row, (list, tuple)) or len(row) < 6:
                continue
            try:
                # Binance order: open_time, open, high, low, close, volume, ...
                candles.append(
                    Candle.build(
                        open_time=row[0],
                        open=row[1],
                        high=row[2],
                        low=row[3],
                        close=row[4],
                        volume=row[5],
                    )
                )
            except ValueError:
                continue

        candles.sort(key=lambda c: c.open_time)
        return candles

    def build_ws_url(self, symbol: str, interval: str) -> str:
        return BINANCE_WS_URL.format(symbol.lower(), interval)

    def build_subscription(self, symbol: str, interval: str) -> Optional[Dict[str, Any]]:
        # Single-stream URLs subscribe on connect
        return None

    def parse_snapshot(self, message: Any) -> Optional[Snapshot]:
        if not isinstance(message, dict) or message.get("e") != "kline":
            return None
        kline = message.get("k")
        if not isinstance(kline, dict):
            return {}
        return snapshot_from_fields(kline)
