"""Domain Events related to guarded API calls.

Emitted by the rate gate when calls are deferred, retried, fail, or succeed.
"""

from dataclasses import dataclass, field
import time
from typing import Any, Callable, Optional

@dataclass
class DomainEvent:
    """Base class for domain events."""
    pass

# Listener signature accepted by event producers
EventListener = Callable[[DomainEvent], Any]

# --- Specific API Events ---

@dataclass
class ApiCallDeferred(DomainEvent):
    """Event triggered when a call is held back before dispatch."""
    reason: str # 'spacing', 'per_second_quota', 'per_100_seconds_quota'
    wait_ms: float
    attempt_number: int = 0
    timestamp: float = field(default_factory=time.time)

@dataclass
class ApiCallSucceeded(DomainEvent):
    """Event triggered when a dispatched call succeeds."""
    attempt_number: int
    latency_ms: float
    current_delay_ms: float
    timestamp: float = field(default_factory=time.time)

@dataclass
class ApiCallFailed(DomainEvent):
    """Event triggered when a call fails definitively (no further retries)."""
    error_type: str
    error_message: str
    rate_limited: bool
    attempts: int
    current_delay_ms: float
    timestamp: float = field(default_factory=time.time)

@dataclass
class RetryScheduled(DomainEvent):
    """Event triggered when a rate-limited call is scheduled for retry."""
    attempt_number: int # The retry about to run (1 for the first retry)
    delay_ms: float
    retry_after_ms: Optional[float] = None
    timestamp: float = field(default_factory=time.time)
