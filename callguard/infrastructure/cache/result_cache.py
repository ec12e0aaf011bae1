"""Concrete implementation of the in-memory result cache.

Stores idempotent read results with a per-entry TTL. Capacity is bounded:
inserting a new key into a full cache first drops the 10% of entries closest
to expiry. Expired entries are removed lazily, when a read finds them.
"""

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from callguard.domain.interfaces.cache import CacheService
from callguard.domain.models.common import CacheHealth, CacheKey, CachePrefix, CacheStats

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 5 * 60
DEFAULT_MAX_ENTRIES = 1000
EVICTION_FRACTION = 0.1

@dataclass
class CacheEntry:
    """Internal representation of a cache entry with expiry."""
    value: Any
    expires_at: float # Clock reading when the entry expires

class ResultCache(CacheService):
    """Capacity-bounded TTL cache with token-based invalidation."""

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.time,
    ):
        """Initializes the cache.

        Args:
            default_ttl: TTL in seconds applied when ``set`` gets none.
            max_entries: Maximum number of entries held at once.
            clock: Clock returning seconds.
        """
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive.")
        if max_entries <= 0:
            raise ValueError("max_entries must be positive.")
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._lock = threading.Lock()
        self._reset_stats()
        logger.info(f"ResultCache initialized (ttl={default_ttl}s, max={max_entries})")

    def _reset_stats(self) -> None:
        self.hits = 0
        self.misses = 0
        self.sets = 0
        self.deletes = 0
        self.evictions = 0

    @staticmethod
    def generate_key(prefix: CachePrefix, *params: Any) -> CacheKey:
        """Builds a composite key such as ``calendarEvents:cal-1:2024-05-01``."""
        return CacheKey(":".join([str(prefix), *map(str, params)]))

    # --- Internal helpers (caller holds the lock) ---

    def _remove(self, key: CacheKey) -> bool:
        if self._entries.pop(key, None) is None:
            return False
        self.deletes += 1
        return True

    def _evict_nearest_expiry(self) -> int:
        """Drops the entries closest to expiry to make room for an insert."""
        to_evict = max(1, math.ceil(self.max_entries * EVICTION_FRACTION))
        victims = sorted(self._entries, key=lambda k: self._entries[k].expires_at)[:to_evict]
        for key in victims:
            self._remove(key)
        self.evictions += len(victims)
        logger.debug(f"Evicted {len(victims)} cache items nearest to expiry")
        return len(victims)

    # --- CacheService Interface Implementation ---

    def get(self, key: CacheKey, default: Any = None) -> Any:
        """Returns the cached value while ``now < expires_at``, else ``default``."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                if self._clock() < entry.expires_at:
                    self.hits += 1
                    logger.debug(f"Cache hit: {key}")
                    return entry.value
                self._remove(key)
                logger.debug(f"Cache entry expired: {key}")
            self.misses += 1
            logger.debug(f"Cache miss: {key}")
            return default

    def set(self, key: CacheKey, value: Any, ttl: Optional[float] = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError(f"TTL must be positive, got {ttl}")
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_entries:
                self._evict_nearest_expiry()
            self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)
            self.sets += 1
        logger.debug(f"Cached: {key} (TTL: {ttl}s)")

    def delete(self, key: CacheKey) -> bool:
        with self._lock:
            deleted = self._remove(key)
        if deleted:
            logger.debug(f"Cache deleted: {key}")
        return deleted

    def invalidate_by_token(self, token: str) -> int:
        """Removes every entry whose key contains ``token`` as a substring.

        Lets a write against, say, a calendar id drop every cached listing that
        mentions it regardless of the composite key layout.
        """
        if not token:
            raise ValueError("Invalidation token must be a non-empty string.")
        with self._lock:
            matching = [key for key in self._entries if token in key]
            for key in matching:
                self._remove(key)
        logger.info(f"Invalidated {len(matching)} cache entries for token '{token}'")
        return len(matching)

    def clear(self) -> None:
        """Removes all entries; statistics are kept."""
        with self._lock:
            size = len(self._entries)
            self._entries.clear()
        logger.info(f"Cache cleared: {size} items removed")

    def reset(self) -> None:
        """Removes all entries and zeroes the statistics."""
        with self._lock:
            self._entries.clear()
            self._reset_stats()
        logger.info("Cache reset.")

    # --- Diagnostics ---

    def stats(self) -> CacheStats:
        with self._lock:
            total = self.hits + self.misses
            hit_rate_value = (self.hits / total) * 100 if total else 0.0
            return CacheStats(
                hits=self.hits,
                misses=self.misses,
                sets=self.sets,
                deletes=self.deletes,
                evictions=self.evictions,
                total=total,
                hit_rate=f"{hit_rate_value:.2f}%" if total else "0%",
                hit_rate_value=hit_rate_value,
                current_size=len(self._entries),
                max_size=self.max_entries,
            )

    def health_check(self) -> CacheHealth:
        """Counts expired-but-unevicted entries without removing them."""
        now = self._clock()
        with self._lock:
            total_items = len(self._entries)
            expired_items = sum(1 for entry in self._entries.values() if now >= entry.expires_at)
        return CacheHealth(
            total_items=total_items,
            expired_items=expired_items,
            valid_items=total_items - expired_items,
            stats=self.stats(),
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and self._clock() < entry.expires_at
