"""Interface for result caching.

Defines the contract for storing, retrieving and invalidating cached read
results with a per-entry TTL.
"""

import abc
from typing import Any, Optional

from callguard.domain.models.common import CacheHealth, CacheKey, CacheStats


class CacheService(abc.ABC):
    """Abstract Base Class for caching operations."""

    @abc.abstractmethod
    def get(self, key: CacheKey, default: Any = None) -> Any:
        """Retrieves an item from the cache.

        Args:
            key: The cache key to retrieve.
            default: Returned when the key is absent or expired.

        Returns:
            The cached item if found and not expired, otherwise ``default``.
        """
        pass

    @abc.abstractmethod
    def set(self, key: CacheKey, value: Any, ttl: Optional[float] = None) -> None:
        """Stores an item in the cache.

        Args:
            key: The cache key to store the item under.
            value: The item to store.
            ttl: Time-to-live in seconds (uses the cache default if None).
        """
        pass

    @abc.abstractmethod
    def delete(self, key: CacheKey) -> bool:
        """Deletes an item, returning whether anything was removed."""
        pass

    @abc.abstractmethod
    def invalidate_by_token(self, token: str) -> int:
        """Deletes every entry whose key contains ``token``; returns the count removed."""
        pass

    @abc.abstractmethod
    def clear(self) -> None:
        """Clears all items from the cache."""
        pass

    @abc.abstractmethod
    def stats(self) -> CacheStats:
        """Returns running hit/miss statistics."""
        pass

    @abc.abstractmethod
    def health_check(self) -> CacheHealth:
        """Returns a read-only diagnostic of the cache contents."""
        pass
