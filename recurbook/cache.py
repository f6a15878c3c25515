"""Dataset cache with TTL and the coordinator that invalidates it."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Optional

from . import constants

logger = logging.getLogger(__name__)


@dataclass
class _CacheEntry:
    value: Any
    stored_at: float


class DataCache:
    """Key/value cache keyed by logical dataset name, with a fixed TTL.

    Expired entries are kept around so readers can fall back to them when
    the backend is unreachable; :meth:`get` ignores them, :meth:`get_stale`
    does not.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, _CacheEntry] = {}

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value if present and fresh."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.stored_at > self.ttl:
            logger.debug("Cache entry '%s' expired", key)
            return None
        return entry.value

    def get_stale(self, key: str) -> Optional[Any]:
        """Return the cached value regardless of age."""
        entry = self._entries.get(key)
        return entry.value if entry is not None else None

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = _CacheEntry(value=value, stored_at=self._clock())

    def invalidate(self, key: str) -> None:
        """Drop a single dataset."""
        if self._entries.pop(key, None) is not None:
            logger.debug("Invalidated cache entry '%s'", key)

    def clear(self) -> None:
        """Drop every dataset."""
        self._entries.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._entries


class CacheCoordinator:
    """Drops cached datasets whose backing data was just mutated."""

    def __init__(self, cache: DataCache):
        self.cache = cache

    def rules_changed(self) -> None:
        self.cache.invalidate(constants.DATASET_RECURRING)

    def ledger_changed(self) -> None:
        self.cache.invalidate(constants.DATASET_TRANSACTIONS)

    def batch_processed(self) -> None:
        """A processing batch may have touched both rules and ledger."""
        self.rules_changed()
        self.ledger_changed()

    def reset(self) -> None:
        """Forget everything, used before a forced reload."""
        self.cache.clear()
        logger.debug("Cleared all cached datasets")
