"""Exception hierarchy for candles-keeper."""


class CandlesKeeperError(Exception):
    """Base exception for all candles-keeper errors."""

    pass


class ConfigurationError(CandlesKeeperError, ValueError):
    """Unsupported interval, invalid time range or bad settings.

    Fatal to the current operation only.
    """

    pass


class FetchError(CandlesKeeperError):
    """Transient failure of the bulk historical query (network, HTTP, decode)."""

    pass


class FeedError(CandlesKeeperError):
    """The live push subscription ended or failed."""

    pass


class PersistenceError(CandlesKeeperError):
    """Durable write or read failed; the pair cannot continue safely."""

    pass
