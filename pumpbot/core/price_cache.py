"""
In-process price cache with TTL.

First link of the valuation cache chain: answers repeated lookups for the same
asset within a few seconds without touching Redis or the RPC.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """Single cache entry with TTL"""
    value: Any
    timestamp: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.timestamp > self.ttl


class PriceCache:
    """TTL-based cache keyed by asset."""

    def __init__(self, ttl: float = 3.0, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._cache: Dict[str, CacheEntry] = {}
        self._stats = {
            "hits": 0,
            "misses": 0,
        }

    def get(self, key: str) -> Optional[Any]:
        """
        Get cached value if exists and not expired.

        Returns:
            Cached value or None if not found/expired
        """
        entry = self._cache.get(key)

        if entry is None:
            self._stats["misses"] += 1
            return None

        if entry.is_expired(self._clock()):
            del self._cache[key]
            self._stats["misses"] += 1
            return None

        self._stats["hits"] += 1
        return entry.value

    def set(self, key: str, value: Any):
        self._cache[key] = CacheEntry(value=value, timestamp=self._clock(), ttl=self.ttl)

    def invalidate(self, key: str):
        self._cache.pop(key, None)

    def cleanup_expired(self) -> int:
        """Remove all expired entries"""
        now = self._clock()
        expired = [k for k, v in self._cache.items() if v.is_expired(now)]
        for k in expired:
            del self._cache[k]

        if expired:
            logger.debug("📦 Cleaned up %d expired price entries", len(expired))
        return len(expired)

    def get_stats(self) -> Dict:
        """Get cache statistics"""
        total = self._stats["hits"] + self._stats["misses"]
        hit_rate = (self._stats["hits"] / total * 100) if total > 0 else 0

        return {
            "entries": len(self._cache),
            "hits": self._stats["hits"],
            "misses": self._stats["misses"],
            "hit_rate_pct": round(hit_rate, 1),
        }
