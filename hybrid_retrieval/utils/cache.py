"""Bounded result cache with an explicit eviction policy."""

import copy
import json
import threading
import time
from collections import OrderedDict
from typing import Any, Dict, Optional, Tuple

from ..utils.logging import get_logger

logger = get_logger(__name__)

EVICTION_POLICIES = ("fifo", "lru")


def make_cache_key(query: str, options: Optional[Dict[str, Any]] = None) -> str:
    """Cache key: lowercased trimmed query plus options as sorted-key JSON."""
    serialized = json.dumps(options or {}, sort_keys=True, ensure_ascii=False, default=str)
    return f"{query.strip().lower()}_{serialized}"


class ResultCache:
    """Bounded key-value cache.

    ``fifo`` evicts the oldest inserted key and never reorders on reads;
    ``lru`` evicts the least recently read or written key. Values are deep
    copied on the way in and out so callers never share result objects.
    """

    def __init__(self, max_size: int = 100, eviction_policy: str = "fifo",
                 default_ttl: Optional[float] = None, copy_values: bool = True):
        """Initialize the cache.

        Args:
            max_size: Maximum number of entries
            eviction_policy: ``fifo`` or ``lru``
            default_ttl: Seconds before an entry expires (None disables expiry)
            copy_values: Deep copy values on set and get

        Raises:
            ValueError: On an unknown policy or a non-positive size
        """
        if eviction_policy not in EVICTION_POLICIES:
            raise ValueError(f"Unknown eviction policy '{eviction_policy}', expected one of {EVICTION_POLICIES}")
        if max_size <= 0:
            raise ValueError("max_size must be positive")

        self.max_size = max_size
        self.eviction_policy = eviction_policy
        self.default_ttl = default_ttl
        self.copy_values = copy_values
        self._entries: "OrderedDict[str, Tuple[Any, Optional[float]]]" = OrderedDict()
        self._lock = threading.Lock()
        self._stats = {"hits": 0, "misses": 0, "sets": 0, "deletes": 0, "evictions": 0, "expirations": 0}

    def _copy(self, value: Any) -> Any:
        return copy.deepcopy(value) if self.copy_values else value

    def get(self, key: str) -> Optional[Any]:
        """Return a copy of the cached value, or None on miss or expiry."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats["misses"] += 1
                return None

            if self._expired(entry):
                del self._entries[key]
                self._stats["expirations"] += 1
                self._stats["misses"] += 1
                return None

            if self.eviction_policy == "lru":
                self._entries.move_to_end(key)
            self._stats["hits"] += 1
            value = entry[0]

        return self._copy(value)

    @staticmethod
    def _expired(entry: Tuple[Any, Optional[float]]) -> bool:
        expires_at = entry[1]
        return expires_at is not None and time.monotonic() >= expires_at

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store a copy of ``value``, evicting one entry when full."""
        ttl = ttl if ttl is not None else self.default_ttl
        expires_at = time.monotonic() + ttl if ttl else None
        stored = (self._copy(value), expires_at)

        with self._lock:
            if key in self._entries:
                self._entries[key] = stored
                if self.eviction_policy == "lru":
                    self._entries.move_to_end(key)
            else:
                while len(self._entries) >= self.max_size:
                    evicted, _ = self._entries.popitem(last=False)
                    self._stats["evictions"] += 1
                    logger.debug(f"Evicted cache entry '{evicted}' ({self.eviction_policy})")
                self._entries[key] = stored
            self._stats["sets"] += 1

    def delete(self, key: str) -> bool:
        with self._lock:
            if key in self._entries:
                del self._entries[key]
                self._stats["deletes"] += 1
                return True
        return False

    def has(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
        return entry is not None and not self._expired(entry)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def keys(self):
        with self._lock:
            return list(self._entries.keys())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.has(key)

    def get_stats(self) -> Dict[str, Any]:
        """Hit/miss/eviction counters and the current hit rate."""
        with self._lock:
            stats = dict(self._stats)
            size = len(self._entries)
        lookups = stats["hits"] + stats["misses"]
        stats.update({
            "size": size,
            "max_size": self.max_size,
            "eviction_policy": self.eviction_policy,
            "hit_rate": stats["hits"] / lookups if lookups else 0.0,
        })
        return stats
