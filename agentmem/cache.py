"""
Small TTL + LRU cache for query embeddings.

Query vectors are deterministic for a given provider, so repeated searches
for the same text (common when several agents share a topic) skip the model.
Each EmbeddingService owns its own cache instance.
"""

import time
import logging
from collections import OrderedDict
from typing import Any, Dict, Hashable, Tuple
from threading import Lock

logger = logging.getLogger(__name__)


class TTLCache:
    """
    A thread-safe TTL cache with least-recently-used eviction.

    Attributes:
        ttl: Time-to-live in seconds for cache entries (0 disables caching)
        maxsize: Maximum number of entries
    """

    def __init__(self, ttl: float = 300.0, maxsize: int = 512):
        self.ttl = ttl
        self.maxsize = maxsize
        self._cache: "OrderedDict[Hashable, Tuple[float, Any]]" = OrderedDict()
        self._lock = Lock()
        self._hits = 0
        self._misses = 0

    def get(self, key: Hashable) -> Tuple[bool, Any]:
        """
        Look up a key.

        Returns:
            Tuple of (found, value). Expired entries count as misses.
        """
        with self._lock:
            item = self._cache.get(key)
            if item is None:
                self._misses += 1
                return False, None

            stored_at, value = item
            if time.monotonic() - stored_at > self.ttl:
                del self._cache[key]
                self._misses += 1
                return False, None

            self._cache.move_to_end(key)
            self._hits += 1
            return True, value

    def set(self, key: Hashable, value: Any) -> None:
        if self.ttl <= 0:
            return
        with self._lock:
            self._cache[key] = (time.monotonic(), value)
            self._cache.move_to_end(key)
            while len(self._cache) > self.maxsize:
                self._cache.popitem(last=False)

    def clear(self) -> int:
        """Clear all entries. Returns the number of entries removed."""
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
            return count

    @property
    def stats(self) -> Dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "size": len(self._cache),
                "maxsize": self.maxsize,
                "ttl": self.ttl,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": self._hits / total if total > 0 else 0.0
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)
