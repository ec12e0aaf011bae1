"""Application service for guarded outbound calls.

Composes the call path: cache lookup, rate gate admission and retry, call
timing, monitor recording, cache store, and cache invalidation after writes.
"""

import logging
import time
from typing import Any, Awaitable, Callable, Iterable, Optional, TypeVar

from callguard.domain.interfaces.cache import CacheService
from callguard.domain.models.common import CacheKey, EndpointName, MethodName, MonitorStatus
from callguard.infrastructure.monitoring.call_monitor import CallMonitor
from callguard.infrastructure.resilience.rate_gate import RateGate

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MISS = object()


class CallGuardService:
    """Runs outbound operations through the rate gate, cache and monitor."""

    def __init__(
        self,
        rate_gate: RateGate,
        cache: Optional[CacheService] = None,
        monitor: Optional[CallMonitor] = None,
    ):
        self.rate_gate = rate_gate
        self.cache = cache
        self.monitor = monitor

    async def _dispatch(
        self,
        endpoint: EndpointName,
        method: MethodName,
        operation: Callable[[], Awaitable[T]],
        timeout: Optional[float],
    ) -> T:
        monitor = self.monitor

        async def attempt() -> T:
            try:
                return await operation()
            except Exception as e:
                # Every attempt, including ones the gate goes on to retry
                monitor.record_attempt_failure(endpoint, e)
                raise

        start_time = time.perf_counter()
        try:
            result = await self.rate_gate.execute(
                attempt if monitor is not None else operation, timeout=timeout
            )
        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            if monitor is not None:
                monitor.record(
                    endpoint, method, duration_ms, success=False, error=e, count_quota_warning=False,
                )
            raise
        duration_ms = (time.perf_counter() - start_time) * 1000
        if monitor is not None:
            monitor.record(endpoint, method, duration_ms, success=True)
        return result

    async def call(
        self,
        endpoint: EndpointName,
        method: MethodName,
        operation: Callable[[], Awaitable[T]],
        *,
        cache_key: Optional[CacheKey] = None,
        ttl: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> T:
        """Executes a read, serving it from cache when possible.

        Args:
            endpoint: Logical endpoint name used for monitoring.
            method: Operation verb used for monitoring.
            operation: Zero-argument callable returning an awaitable.
            cache_key: Cache the successful result under this key.
            ttl: Cache TTL in seconds (cache default if None).
            timeout: Overall time limit in seconds for the guarded call.

        Returns:
            The cached or freshly fetched result.
        """
        use_cache = self.cache is not None and cache_key is not None
        if use_cache:
            cached = self.cache.get(cache_key, _MISS)
            if cached is not _MISS:
                logger.debug(f"Serving {method} {endpoint} from cache ({cache_key})")
                return cached

        result = await self._dispatch(endpoint, method, operation, timeout)
        if use_cache:
            self.cache.set(cache_key, result, ttl)
        return result

    async def write(
        self,
        endpoint: EndpointName,
        method: MethodName,
        operation: Callable[[], Awaitable[T]],
        *,
        invalidate: Iterable[str] = (),
        timeout: Optional[float] = None,
    ) -> T:
        """Executes a mutating call, then drops cache entries mentioning any ``invalidate`` token."""
        result = await self._dispatch(endpoint, method, operation, timeout)
        if self.cache is not None:
            for token in invalidate:
                self.cache.invalidate_by_token(token)
        return result

    def status(self) -> Optional[MonitorStatus]:
        """Composite status from the monitor, or None when no monitor is attached."""
        if self.monitor is None:
            return None
        return self.monitor.status()
