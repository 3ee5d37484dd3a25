"""
Plan cache with TTL for planner output. Avoids asking the model again for a
goal it has already planned in the same workspace.
LRU eviction, in-memory only.
"""

import copy
import hashlib
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class PlanCache:
    """Thread-safe cache of raw plans keyed by (goal, workspace)."""

    def __init__(
        self,
        ttl_seconds: int = 3600,
        max_size: int = 128,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Args:
            ttl_seconds: Time-to-live for cached plans in seconds (default 1 hour).
            max_size: Max entries; 0 = unbounded (no LRU eviction).
            clock: Time source, injectable for tests.
        """
        self._ttl_seconds = ttl_seconds
        self._max_size = max_size
        self._clock = clock
        self._cache: Dict[str, Dict[str, Any]] = {}
        self._access_order: List[str] = []  # LRU tracking
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, goal: str, workspace: str) -> Optional[Dict[str, Any]]:
        """Return a copy of the cached plan, or None on miss or expiry."""
        key = self._key(goal, workspace)
        with self._lock:
            entry = self._cache.get(key)
            if entry is not None:
                if self._clock() - entry["cached_at"] >= self._ttl_seconds:
                    del self._cache[key]
                    self._mark_accessed(key, remove_only=True)
                    self._misses += 1
                    logger.debug("Plan cache expired for: %s", goal[:50])
                    return None
                self._mark_accessed(key)
                self._hits += 1
                logger.debug("Plan cache hit for: %s", goal[:50])
                return copy.deepcopy(entry["plan"])
            self._misses += 1
        logger.debug("Plan cache miss for: %s", goal[:50])
        return None

    def set(self, goal: str, workspace: str, plan: Dict[str, Any]) -> None:
        key = self._key(goal, workspace)
        with self._lock:
            # Evict oldest if at capacity
            if self._max_size > 0 and key not in self._cache:
                while self._access_order and len(self._cache) >= self._max_size:
                    oldest_key = self._access_order.pop(0)
                    if self._cache.pop(oldest_key, None) is not None:
                        logger.debug("Evicted plan cache entry: %s", oldest_key[:8])
            self._cache[key] = {"plan": copy.deepcopy(plan), "cached_at": self._clock()}
            self._mark_accessed(key)

    def clear(self) -> None:
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
            self._access_order.clear()
        logger.info("Plan cache cleared (%d entries removed)", count)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "hits": self._hits,
                "misses": self._misses,
                "total_queries": total,
                "hit_rate_percent": (self._hits / total * 100.0) if total > 0 else 0.0,
                "cached_entries": len(self._cache),
            }

    def _mark_accessed(self, key: str, remove_only: bool = False) -> None:
        """Update LRU access order."""
        if key in self._access_order:
            self._access_order.remove(key)
        if not remove_only:
            self._access_order.append(key)

    @staticmethod
    def _key(goal: str, workspace: str) -> str:
        raw = f"{goal.strip().lower()}\x00{workspace}"
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()
