"""Adaptive rate gate for outbound API calls.

Spaces outgoing requests by an adaptive delay, enforces a per-second and a
per-100-seconds quota window, and retries rate-limited calls with
exponential backoff. Delay shrinks slowly on success (x0.9) and grows faster
on failure (x1.5).
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

from callguard.domain.events.api_events import (
    ApiCallDeferred, ApiCallFailed, ApiCallSucceeded, DomainEvent,
    EventListener, RetryScheduled,
)
from callguard.domain.models.common import GateStatus
from callguard.domain.models.errors import (
    CallTimeoutError, FailureKind, classify_failure, extract_retry_after,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MIN_DELAY_MS = 100.0
DEFAULT_MAX_DELAY_MS = 5000.0
DEFAULT_QUERIES_PER_SECOND = 100
DEFAULT_QUERIES_PER_100_SECONDS = 10000
DEFAULT_MAX_CONSECUTIVE_FAILURES = 3

DELAY_DECAY_FACTOR = 0.9
DELAY_GROWTH_FACTOR = 1.5
BACKOFF_BASE = 2

SECOND_WINDOW_S = 1.0
HUNDRED_SECOND_WINDOW_S = 100.0


class RateGate:
    """Serializes admission of outbound calls and adapts spacing to failures."""

    def __init__(
        self,
        min_delay_ms: float = DEFAULT_MIN_DELAY_MS,
        max_delay_ms: float = DEFAULT_MAX_DELAY_MS,
        queries_per_second: int = DEFAULT_QUERIES_PER_SECOND,
        queries_per_100_seconds: int = DEFAULT_QUERIES_PER_100_SECONDS,
        max_consecutive_failures: int = DEFAULT_MAX_CONSECUTIVE_FAILURES,
        match_quota_messages: bool = False,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initializes the rate gate.

        Args:
            min_delay_ms: Floor of the adaptive inter-request delay.
            max_delay_ms: Ceiling of the adaptive delay and of any backoff.
            queries_per_second: Calls admitted per 1-second window.
            queries_per_100_seconds: Calls admitted per 100-second window.
            max_consecutive_failures: Retries allowed for a rate-limited call.
            match_quota_messages: Also classify quota/limit wording in error messages as rate limiting.
            clock: Monotonic clock returning seconds.
            sleep: Coroutine function used for every wait.
        """
        if min_delay_ms < 0 or max_delay_ms < min_delay_ms:
            raise ValueError("Delays must satisfy 0 <= min_delay_ms <= max_delay_ms.")
        if queries_per_second <= 0 or queries_per_100_seconds <= 0:
            raise ValueError("Quota ceilings must be positive.")
        if max_consecutive_failures < 0:
            raise ValueError("max_consecutive_failures must not be negative.")

        self.min_delay_ms = float(min_delay_ms)
        self.max_delay_ms = float(max_delay_ms)
        self.queries_per_second = queries_per_second
        self.queries_per_100_seconds = queries_per_100_seconds
        self.max_consecutive_failures = max_consecutive_failures
        self.match_quota_messages = match_quota_messages
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._listeners: List[EventListener] = []
        self._reset_state()

        logger.info(
            f"RateGate initialized: delay={self.min_delay_ms:.0f}-{self.max_delay_ms:.0f}ms, "
            f"{queries_per_second}/s, {queries_per_100_seconds}/100s, "
            f"max_retries={max_consecutive_failures}"
        )

    def _reset_state(self) -> None:
        now = self._clock()
        self.request_count = 0
        self.current_delay_ms = self.min_delay_ms
        self.consecutive_failures = 0
        self.last_request_at: Optional[float] = None
        self.requests_this_second = 0
        self.requests_this_100_seconds = 0
        self.second_window_started_at = now
        self.hundred_second_window_started_at = now

    # --- Events ---

    def subscribe(self, listener: EventListener) -> None:
        """Registers a callable that receives every domain event emitted by the gate."""
        self._listeners.append(listener)

    def _dispatch_event(self, event: DomainEvent) -> None:
        logger.debug(f"EVENT: {event}")
        for listener in self._listeners:
            listener(event)

    # --- Admission ---

    async def _wait_for_spacing(self, attempt: int) -> None:
        if self.last_request_at is not None:
            elapsed_ms = (self._clock() - self.last_request_at) * 1000
            if elapsed_ms < self.current_delay_ms:
                wait_ms = self.current_delay_ms - elapsed_ms
                logger.debug(f"Rate limiting: waiting {wait_ms:.0f}ms before next request")
                self._dispatch_event(ApiCallDeferred(reason="spacing", wait_ms=wait_ms, attempt_number=attempt))
                await self._sleep(wait_ms / 1000)
        self.last_request_at = self._clock()

    async def _wait_for_second_window(self, attempt: int) -> None:
        elapsed = self._clock() - self.second_window_started_at
        if elapsed >= SECOND_WINDOW_S:
            self.requests_this_second = 0
            self.second_window_started_at = self._clock()
        elif self.requests_this_second >= self.queries_per_second:
            wait_s = SECOND_WINDOW_S - elapsed
            logger.debug(f"Second quota limit reached, waiting {wait_s * 1000:.0f}ms")
            self._dispatch_event(ApiCallDeferred(reason="per_second_quota", wait_ms=wait_s * 1000, attempt_number=attempt))
            await self._sleep(wait_s)
            self.requests_this_second = 0
            self.second_window_started_at = self._clock()

    async def _wait_for_hundred_second_window(self, attempt: int) -> None:
        elapsed = self._clock() - self.hundred_second_window_started_at
        if elapsed >= HUNDRED_SECOND_WINDOW_S:
            self.requests_this_100_seconds = 0
            self.hundred_second_window_started_at = self._clock()
        elif self.requests_this_100_seconds >= self.queries_per_100_seconds:
            wait_s = HUNDRED_SECOND_WINDOW_S - elapsed
            logger.warning(f"100-second quota limit reached, waiting {wait_s:.1f}s")
            self._dispatch_event(ApiCallDeferred(reason="per_100_seconds_quota", wait_ms=wait_s * 1000, attempt_number=attempt))
            await self._sleep(wait_s)
            self.requests_this_100_seconds = 0
            self.hundred_second_window_started_at = self._clock()

    async def _admit(self, attempt: int) -> None:
        """Runs spacing and quota checks under the lock and reserves a quota slot."""
        async with self._lock:
            await self._wait_for_spacing(attempt)
            await self._wait_for_second_window(attempt)
            await self._wait_for_hundred_second_window(attempt)
            self.requests_this_second += 1
            self.requests_this_100_seconds += 1

    # --- Execution ---

    def backoff_delay_ms(self, base_delay_ms: float, retry_number: int) -> float:
        """Backoff before retry ``retry_number`` (1-based): min(max_delay, base * 2^n)."""
        return min(self.max_delay_ms, base_delay_ms * BACKOFF_BASE ** retry_number)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        timeout: Optional[float] = None,
    ) -> T:
        """Runs ``operation`` through spacing, quota and backoff handling.

        Args:
            operation: Zero-argument callable returning an awaitable.
            timeout: Optional overall limit in seconds covering waits, dispatch and backoff.

        Returns:
            The operation's result.

        Raises:
            CallTimeoutError: If ``timeout`` expires first.
            Exception: The operation's own failure once it is terminal.
        """
        if timeout is None:
            return await self._execute_with_retry(operation)
        try:
            return await asyncio.wait_for(self._execute_with_retry(operation), timeout)
        except asyncio.TimeoutError:
            logger.error(f"Guarded call timed out after {timeout:.3f}s")
            raise CallTimeoutError(timeout) from None

    async def _execute_with_retry(self, operation: Callable[[], Awaitable[T]]) -> T:
        base_delay_ms = self.current_delay_ms
        attempt = 0
        while True:
            await self._admit(attempt)
            started = self._clock()
            try:
                result = await operation()
            except Exception as e:
                self.consecutive_failures += 1
                kind = classify_failure(e, self.match_quota_messages)
                if kind is FailureKind.RATE_LIMITED and attempt < self.max_consecutive_failures:
                    retry_number = attempt + 1
                    delay_ms = self.backoff_delay_ms(base_delay_ms, retry_number)
                    retry_after = extract_retry_after(e)
                    retry_after_ms = retry_after * 1000 if retry_after is not None else None
                    if retry_after_ms is not None:
                        delay_ms = min(self.max_delay_ms, max(delay_ms, retry_after_ms))
                    logger.warning(
                        f"Quota/rate limit error: {e}. Backing off for {delay_ms:.0f}ms "
                        f"(retry {retry_number}/{self.max_consecutive_failures})"
                    )
                    self._dispatch_event(RetryScheduled(
                        attempt_number=retry_number, delay_ms=delay_ms, retry_after_ms=retry_after_ms,
                    ))
                    await self._sleep(delay_ms / 1000)
                    self.current_delay_ms = delay_ms
                    attempt = retry_number
                    continue

                self.current_delay_ms = min(self.max_delay_ms, self.current_delay_ms * DELAY_GROWTH_FACTOR)
                rate_limited = kind is FailureKind.RATE_LIMITED
                if rate_limited:
                    logger.error(f"Rate limit retries exhausted after {attempt + 1} attempts: {e}")
                else:
                    logger.error(f"Guarded call failed ({type(e).__name__}): {e}")
                self._dispatch_event(ApiCallFailed(
                    error_type=type(e).__name__, error_message=str(e), rate_limited=rate_limited,
                    attempts=attempt + 1, current_delay_ms=self.current_delay_ms,
                ))
                e.gate_status = self.status()
                e.attempts = attempt + 1
                raise

            self.request_count += 1
            self.consecutive_failures = 0
            self.current_delay_ms = max(self.min_delay_ms, self.current_delay_ms * DELAY_DECAY_FACTOR)
            latency_ms = (self._clock() - started) * 1000
            logger.debug(
                f"Request successful ({self.request_count} total, delay: {self.current_delay_ms:.0f}ms)"
            )
            self._dispatch_event(ApiCallSucceeded(
                attempt_number=attempt, latency_ms=latency_ms, current_delay_ms=self.current_delay_ms,
            ))
            return result

    # --- Diagnostics ---

    def status(self) -> GateStatus:
        """Returns a read-only snapshot of the gate counters."""
        return GateStatus(
            request_count=self.request_count,
            current_delay_ms=self.current_delay_ms,
            consecutive_failures=self.consecutive_failures,
            requests_this_second=self.requests_this_second,
            requests_this_100_seconds=self.requests_this_100_seconds,
            last_request_at=self.last_request_at,
            min_delay_ms=self.min_delay_ms,
            max_delay_ms=self.max_delay_ms,
            queries_per_second=self.queries_per_second,
            queries_per_100_seconds=self.queries_per_100_seconds,
        )

    def reset(self) -> None:
        """Resets counters and delay to their initial values (listeners are kept)."""
        self._reset_state()
        logger.info("RateGate counters reset.")
