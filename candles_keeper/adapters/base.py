"""
Base adapter classes for exchange integrations.

An adapter is the engine's only view of an exchange. It provides two
collaborator operations:

- ``query``: bulk historical candles for a time window (pull, over HTTP)
- ``subscribe``: live partial-candle snapshots (push, over a websocket)

Exchange specific URL building, payloads and message parsing live in the
concrete subclasses.
"""

import asyncio
import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

import requests
import websockets

from ..candle import Candle
from ..console import c_desc, c_rows, c_var, fmt_mts, log_error, log_info, log_success, log_warn
from ..errors import ConfigurationError, FetchError
from ..intervals import interval_ms, now_ms

USER_AGENT = "CandlesKeeper/1.0"
HEADERS = {"User-Agent": USER_AGENT}

Snapshot = Dict[str, Any]
SnapshotCallback = Callable[[Snapshot], None]


@dataclass(frozen=True)
class RateLimitConfig:
    """Rate limiting configuration for an adapter."""
    initial_backoff_seconds: float = 30.0
    max_backoff_seconds: float = 300.0
    max_attempts: int = 5
    rate_limit_status_codes: tuple = (429,)


@dataclass(frozen=True)
class AdapterConfig:
    """Configuration for an exchange adapter."""
    api_url: str
    ws_url: str
    limit: int = 1000
    timeout_seconds: int = 30
    ws_ping_interval_seconds: float = 20.0
    ws_reconnect_initial_seconds: float = 1.0
    ws_reconnect_max_seconds: float = 60.0
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)


class ExchangeAdapter(ABC):
    """
    Abstract base class for exchange adapters.

    Each adapter encapsulates exchange-specific logic for:
    - Request construction and response parsing for historical candles
    - Websocket subscription messages and snapshot parsing
    - Symbol formatting
    - Interval translation
    """

    def __init__(self) -> None:
        self._session: Optional[requests.Session] = None

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the canonical name of this exchange (uppercase)."""
        pass

    @property
    @abstractmethod
    def config(self) -> AdapterConfig:
        """Return the adapter configuration."""
        pass

    @abstractmethod
    def get_supported_intervals(self) -> Dict[str, str]:
        """
        Return mapping of internal interval keys to exchange-specific formats.

        Internal keys: '1m', '5m', '15m', '1h', '4h', '1d'
        """
        pass

    def translate_interval(self, interval: str) -> str:
        """
        Translate internal interval to exchange-specific format.

        Raises ConfigurationError if the interval is not supported.
        """
        supported = self.get_supported_intervals()
        if interval not in supported:
            raise ConfigurationError(
                f"Interval '{interval}' not supported by {self.name}. "
                f"Supported: {list(supported.keys())}"
            )
        return supported[interval]

    @abstractmethod
    def format_symbol(self, instrument: str) -> str:
        """Format an instrument identifier (e.g. 'BTC-PERP') for this exchange's API."""
        pass

    @abstractmethod
    def build_request(
        self,
        symbol: str,
        interval: str,
        start: int,
        end: int,
        limit: int,
    ) -> Dict[str, Any]:
        """
        Build keyword arguments for ``requests.Session.request``.

        Must include at least ``method`` and ``url``.
        """
        pass

    @abstractmethod
    def parse_response(self, data: Any) -> List[Candle]:
        """
        Parse API response data into Candle objects.

        Rows that cannot be parsed are skipped. Result is ascending by open time.
        """
        pass

    @abstractmethod
    def build_subscription(self, symbol: str, interval: str) -> Optional[Dict[str, Any]]:
        """Subscription message to send after connecting, or None if the URL subscribes."""
        pass

    def build_ws_url(self, symbol: str, interval: str) -> str:
        return self.config.ws_url

    @abstractmethod
    def parse_snapshot(self, message: Any) -> Optional[Snapshot]:
        """
        Map a decoded websocket message to a snapshot mapping with keys
        open_time, open, high, low, close, volume.

        Returns None for messages that are not candle updates (acks, pings).
        Field values are passed through unvalidated.
        """
        pass

    def is_rate_limited(self, status_code: int) -> bool:
        """Check if a response status code indicates rate limiting."""
        return status_code in self.config.rate_limit.rate_limit_status_codes

    # ------------------------------ Bulk query ---------------------------- #

    def connect(self) -> None:
        if self._session is None:
            self._session = requests.Session()
            self._session.headers.update(HEADERS)

    def disconnect(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None

    def _request_page(self, request: Dict[str, Any]) -> Any:
        """Perform one HTTP request, backing off on rate limits."""
        if self._session is None:
            raise FetchError(f"{self.name} adapter is not connected")

        rate_limit = self.config.rate_limit
        delay = rate_limit.initial_backoff_seconds

        for attempt in range(1, rate_limit.max_attempts + 1):
            try:
                resp = self._session.request(timeout=self.config.timeout_seconds, **request)
            except requests.RequestException as e:
                raise FetchError(f"{self.name} network error: {e}") from e

            if resp.status_code == 200:
                try:
                    return resp.json()
                except ValueError as e:
                    raise FetchError(f"{self.name} returned undecodable JSON: {e}") from e

            if self.is_rate_limited(resp.status_code) and attempt < rate_limit.max_attempts:
                log_warn(
                    f"Rate limit ({resp.status_code}) from {self.name}. "
                    f"Retrying in {c_var(f'{delay}s')}..."
                )
                time.sleep(delay)
                delay = min(rate_limit.max_backoff_seconds, delay * 2)
                continue

            raise FetchError(f"{self.name} HTTP {resp.status_code}: {resp.text[:200]}")

        raise FetchError(f"{self.name} still rate limited after {rate_limit.max_attempts} attempts")

    def query(
        self,
        instrument: str,
        interval: str,
        start: int,
        end: int,
        include_partial: bool = True,
    ) -> List[Candle]:
        """
        Fetch candles with open time in [start, end], paging by ``config.limit``.

        When ``include_partial`` is False the still-open current bucket is left out.
        """
        symbol = self.format_symbol(instrument)
        ex_interval = self.translate_interval(interval)
        step = interval_ms(interval)
        limit = self.config.limit

        out: List[Candle] = []
        cur = int(start)
        while cur <= end:
            request = self.build_request(symbol, ex_interval, cur, int(end), limit)
            log_info(f"{request.get('method', 'GET')} {c_var(request.get('url'))} {c_desc(symbol)} {fmt_mts(cur)}")
            page = self.parse_response(self._request_page(request))
            if not page:
                break

            out.extend(page)
            last_ts = page[-1].open_time
            # Safety: should never go backwards
            if last_ts < cur:
                log_error(f"{self.name} returned candles older than start cursor. Stopping.")
                break
            # Fewer than limit candles means we reached the end of available data
            if len(page) < limit:
                break
            cur = last_ts + step

        if out:
            log_success(
                f"Received {c_rows(len(out))} candles ({fmt_mts(out[0].open_time)} … {fmt_mts(out[-1].open_time)})"
            )
        else:
            log_warn(f"{self.name} returned 0 candles.")

        if not include_partial:
            now = now_ms()
            out = [c for c in out if c.open_time + step <= now]
        return out

    # ------------------------------ Live feed ----------------------------- #

    async def subscribe(self, instrument: str, interval: str, on_update: SnapshotCallback) -> None:
        """
        Stream snapshots to ``on_update`` until cancelled.

        The adapter owns the connection: it reconnects with exponential
        backoff whenever the socket drops.
        """
        symbol = self.format_symbol(instrument)
        ex_interval = self.translate_interval(interval)
        url = self.build_ws_url(symbol, ex_interval)
        subscription = self.build_subscription(symbol, ex_interval)
        cfg = self.config
        delay = cfg.ws_reconnect_initial_seconds

        while True:
            try:
                async with websockets.connect(url, ping_interval=cfg.ws_ping_interval_seconds) as ws:
                    if subscription is not None:
                        await ws.send(json.dumps(subscription))
                    log_info(f"Connected to {c_var(url)} ({c_desc(symbol)} {ex_interval})")
                    delay = cfg.ws_reconnect_initial_seconds
                    async for raw in ws:
                        try:
                            message = json.loads(raw)
                        except ValueError:
                            log_warn(f"{self.name} sent a non-JSON frame, ignoring")
                            continue
                        snapshot = self.parse_snapshot(message)
                        if snapshot is not None:
                            on_update(snapshot)
            except (websockets.exceptions.WebSocketException, OSError) as e:
                log_warn(f"{self.name} feed disconnected: {c_desc(e)}. Reconnecting in {c_var(f'{delay}s')}...")
            else:
                log_warn(f"{self.name} feed closed by server. Reconnecting in {c_var(f'{delay}s')}...")
            await asyncio.sleep(delay)
            delay = min(cfg.ws_reconnect_max_seconds, delay * 2)


def snapshot_from_fields(data: Mapping[str, Any]) -> Snapshot:
    """Shared mapping for exchanges using the t/o/h/l/c/v field names."""
    return {
        "open_time": data.get("t"),
        "open": data.get("o"),
        "high": data.get("h"),
        "low": data.get("l"),
        "close": data.get("c"),
        "volume": data.get("v"),
    }
