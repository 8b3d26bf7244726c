from .adapters import ExchangeAdapter, get_adapter, list_adapters
from .aggregator import LiveAggregator
from .candle import Candle
from .config import SyncConfig
from .fetcher import HistoricalFetcher
from .healer import GapHealer
from .intervals import INTERVAL_MS, SeriesKey, interval_ms
from .orchestrator import SyncOrchestrator, build_orchestrator
from .persistence import FilePersistence, Persistence
from .scheduler import DailyScheduler
from .store import CandleStore, merge_candles

__version__ = "0.1.0"
__all__ = [
    "Candle",
    "CandleStore",
    "DailyScheduler",
    "ExchangeAdapter",
    "FilePersistence",
    "GapHealer",
    "HistoricalFetcher",
    "INTERVAL_MS",
    "LiveAggregator",
    "Persistence",
    "SeriesKey",
    "SyncConfig",
    "SyncOrchestrator",
    "build_orchestrator",
    "get_adapter",
    "interval_ms",
    "list_adapters",
    "merge_candles",
]
