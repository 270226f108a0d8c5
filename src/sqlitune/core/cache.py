"""Small in-memory cache with time-to-live and size bound.

Used for the schema snapshot, the migration file listing, the applied
migration listing and memoised checksums. Entries expire ``ttl`` seconds
after they were stored; when ``max_size`` is reached the oldest entry is
evicted.

Example:
    >>> cache = TTLCache(ttl=5.0)
    >>> cache.set("files", files)
    >>> cache.get("files")
"""

import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Generic, Hashable, Optional, Tuple, TypeVar

V = TypeVar("V")

_MISSING = object()


class TTLCache(Generic[V]):
    """Time-bounded, size-bounded cache with hit/miss statistics.

    Args:
        ttl: Lifetime of an entry in seconds, or None for no expiry
        max_size: Maximum number of entries, or None for no bound
        clock: Monotonic time source, replaceable in tests
    """

    def __init__(
        self,
        *,
        ttl: Optional[float] = None,
        max_size: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl is not None and ttl <= 0:
            raise ValueError("ttl must be positive")
        if max_size is not None and max_size <= 0:
            raise ValueError("max_size must be positive")

        self.ttl = ttl
        self.max_size = max_size
        self._clock = clock
        self._entries: "OrderedDict[Hashable, Tuple[float, V]]" = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def _is_expired(self, stored_at: float) -> bool:
        if self.ttl is None:
            return False
        return (self._clock() - stored_at) >= self.ttl

    def get(self, key: Hashable, default: Optional[V] = None) -> Optional[V]:
        """Return the cached value, or ``default`` when absent or expired."""
        entry = self._entries.get(key, _MISSING)
        if entry is _MISSING:
            self._misses += 1
            return default

        stored_at, value = entry
        if self._is_expired(stored_at):
            del self._entries[key]
            self._misses += 1
            return default

        self._hits += 1
        return value

    def set(self, key: Hashable, value: V) -> None:
        """Store a value, evicting the oldest entry when full."""
        if key in self._entries:
            del self._entries[key]
        elif self.max_size is not None and len(self._entries) >= self.max_size:
            self._entries.popitem(last=False)
            self._evictions += 1
        self._entries[key] = (self._clock(), value)

    def invalidate(self, key: Hashable) -> None:
        """Drop a single entry if present."""
        self._entries.pop(key, None)

    def clear(self) -> None:
        """Drop every entry."""
        self._entries.clear()

    def __contains__(self, key: Hashable) -> bool:
        entry = self._entries.get(key, _MISSING)
        return entry is not _MISSING and not self._is_expired(entry[0])

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        lookups = self._hits + self._misses
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "ttl": self.ttl,
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
            "hit_rate": (self._hits / lookups * 100) if lookups else 0.0,
        }
