"""
Staleness cache

Time-boxed memoization for analytics results. Entries expire after the TTL
or when an invalidation tag they carry is signalled, whichever comes first.
Stale entries are kept so callers can fall back to them when recomputation
fails.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Hashable, Iterable, Optional

from app.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    value: Any
    stored_at: float
    tags: FrozenSet[str] = field(default_factory=frozenset)
    invalidated: bool = False


class StalenessCache:
    """In-process cache of key -> {value, timestamp, tags}"""

    def __init__(self, ttl_seconds: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = float(settings.ANALYTICS_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds)
        self._clock = clock
        self._entries: Dict[Hashable, CacheEntry] = {}
        self._hits = 0
        self._misses = 0
        self._invalidations = 0

    def _is_fresh(self, entry: CacheEntry) -> bool:
        if entry.invalidated:
            return False
        return (self._clock() - entry.stored_at) < self.ttl_seconds

    def get(self, key: Hashable) -> Optional[Any]:
        """Return the cached value when fresh, otherwise None"""
        entry = self._entries.get(key)
        if entry is not None and self._is_fresh(entry):
            self._hits += 1
            return entry.value
        self._misses += 1
        return None

    def get_stale(self, key: Hashable) -> Optional[Any]:
        """Return the cached value regardless of freshness"""
        entry = self._entries.get(key)
        return entry.value if entry is not None else None

    def set(self, key: Hashable, value: Any, tags: Iterable[str] = ()) -> None:
        self._entries[key] = CacheEntry(value=value, stored_at=self._clock(), tags=frozenset(tags))

    def invalidate(self, tag: Optional[str] = None) -> int:
        """
        Force a miss on the next read of every entry carrying ``tag``.

        With no tag every entry is invalidated. Returns the number of entries
        affected.
        """
        affected = 0
        for entry in self._entries.values():
            if entry.invalidated:
                continue
            if tag is None or tag in entry.tags:
                entry.invalidated = True
                affected += 1

        self._invalidations += 1
        logger.debug(f"Cache invalidation tag={tag!r} affected {affected} entr(y/ies)")
        return affected

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> Dict[str, float]:
        return {
            "entries": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
            "invalidations": self._invalidations,
            "ttl_seconds": self.ttl_seconds,
        }
