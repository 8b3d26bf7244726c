"""
Durable key-value persistence.

The store only needs ``read(key)`` and ``write(key, bytes)``; the file backend
below keeps one CSV per series and swaps it in atomically.
"""

import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

from .errors import PersistenceError
from .intervals import SeriesKey


class Persistence(ABC):
    """Durable record storage, atomic per key."""

    @abstractmethod
    def read(self, key: SeriesKey) -> Optional[bytes]:
        """Return the stored bytes, or None when no record exists."""
        pass

    @abstractmethod
    def write(self, key: SeriesKey, data: bytes) -> None:
        """Replace the record for ``key``. Readers never see a partial write."""
        pass


def _safe_join_and_assert_within_root(root: Path, *parts: str) -> Path:
    """Prevent path traversal via user-controlled segments."""
    candidate = root
    for p in parts:
        candidate = candidate / p
    resolved = candidate.resolve()
    try:
        resolved.relative_to(root.resolve())
    except ValueError:
        raise PersistenceError("Invalid path components: resolved path escapes data root")
    return resolved


class FilePersistence(Persistence):
    """
    One file per series: ``<root>/<exchange>/candles/<instrument>/<interval>.csv``.

    Writes go to a sibling ``.tmp`` file which is fsynced and then renamed over
    the target. Writes for the same key are serialized.
    """

    def __init__(self, root: Path, exchange: str) -> None:
        self.root = Path(root).expanduser()
        self.exchange = (exchange or "").upper()
        self._locks: Dict[SeriesKey, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def path_for(self, key: SeriesKey) -> Path:
        return _safe_join_and_assert_within_root(
            self.root, self.exchange, "candles", key.instrument, f"{key.interval}.csv"
        )

    def _lock_for(self, key: SeriesKey) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def read(self, key: SeriesKey) -> Optional[bytes]:
        path = self.path_for(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PersistenceError(f"Failed to read {path}: {e}") from e

    def write(self, key: SeriesKey, data: bytes) -> None:
        path = self.path_for(key)
        tmp_path = path.with_name(path.name + ".tmp")
        with self._lock_for(key):
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                with open(tmp_path, "wb") as f:
                    f.write(data)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, path)
            except OSError as e:
                raise PersistenceError(f"Failed to write {path}: {e}") from e
