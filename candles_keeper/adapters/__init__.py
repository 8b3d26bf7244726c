"""
Exchange adapter registry and factory.

Usage:
    from candles_keeper.adapters import get_adapter, list_adapters

    adapter = get_adapter('hyperliquid')
    print(list_adapters())  # ['BINANCE', 'HYPERLIQUID']
"""

from typing import Dict, List, Type

from .base import AdapterConfig, ExchangeAdapter, RateLimitConfig, Snapshot, SnapshotCallback
from ..errors import ConfigurationError

# Registry of all available adapters
_ADAPTERS: Dict[str, Type[ExchangeAdapter]] = {}


def register_adapter(cls: Type[ExchangeAdapter]) -> Type[ExchangeAdapter]:
    """
    Decorator to register an adapter class in the global registry.

    Usage:
        @register_adapter
        class MyAdapter(ExchangeAdapter):
            ...
    """
    # Instantiate temporarily to get the name
    instance = cls()
    name = instance.name.upper()
    _ADAPTERS[name] = cls
    return cls


def get_adapter(exchange: str) -> ExchangeAdapter:
    """
    Factory function to get a fresh adapter instance by exchange name.

    Raises:
        ConfigurationError: If no adapter is registered for the exchange
    """
    name = (exchange or "").upper()
    if name not in _ADAPTERS:
        available = list(_ADAPTERS.keys())
        raise ConfigurationError(
            f"No adapter registered for exchange '{exchange}'. "
            f"Available adapters: {available}"
        )
    return _ADAPTERS[name]()


def list_adapters() -> List[str]:
    """Return sorted list of all registered adapter names."""
    return sorted(_ADAPTERS.keys())


# Import adapters to trigger registration
from . import hyperliquid  # noqa: E402
from . import binance  # noqa: E402

__all__ = [
    'ExchangeAdapter',
    'AdapterConfig',
    'RateLimitConfig',
    'Snapshot',
    'SnapshotCallback',
    'register_adapter',
    'get_adapter',
    'list_adapters',
]
