"""Defines common Value Objects used across the guard's contexts.

These objects describe cache keys, endpoints and the read-only status
snapshots that the rate gate, the result cache and the call monitor expose.
"""

from typing import Any, Dict, List, NewType, Optional, TypedDict

# === Core Value Objects ===

EndpointName = NewType("EndpointName", str)    # Logical endpoint, e.g. 'events.insert'
MethodName = NewType("MethodName", str)        # Operation verb, e.g. 'POST'

# === Caching Context ===
CacheKey = NewType("CacheKey", str)            # Unique key for a cache entry
CachePrefix = NewType("CachePrefix", str)      # Prefix for categorizing cache keys (e.g., 'calendarEvents')

# --- Rate Gate Snapshots ---

class GateStatus(TypedDict):
    """Point-in-time view of the rate gate counters."""
    request_count: int
    current_delay_ms: float
    consecutive_failures: int
    requests_this_second: int
    requests_this_100_seconds: int
    last_request_at: Optional[float]
    min_delay_ms: float
    max_delay_ms: float
    queries_per_second: int
    queries_per_100_seconds: int

# --- Cache Snapshots ---

class CacheStats(TypedDict):
    """Running cache statistics; ``deletes`` counts every removal, evictions included."""
    hits: int
    misses: int
    sets: int
    deletes: int
    evictions: int
    total: int
    hit_rate: str
    hit_rate_value: float
    current_size: int
    max_size: int

class CacheHealth(TypedDict):
    """Read-only diagnostic of cache contents."""
    total_items: int
    expired_items: int
    valid_items: int
    stats: CacheStats

# --- Monitor Snapshots ---

class ApiStats(TypedDict):
    """Aggregated call statistics."""
    total: int
    last_hour: int
    last_24_hours: int
    successful: int
    failed: int
    success_rate: str
    success_rate_value: float
    average_duration: str
    average_duration_ms: float
    uptime: str

class ErrorStats(TypedDict):
    """Failure breakdown across the call log."""
    total_errors: int
    error_types: Dict[str, int]
    status_codes: Dict[int, int]
    recent_errors: List[Dict[str, Any]]

class QuotaWarningStats(TypedDict):
    """Rate-limit warning breakdown."""
    total: int
    recent: List[Dict[str, Any]]
    by_endpoint: Dict[str, int]

class MonitorStatus(TypedDict):
    """Composite status combining the monitor's logs and its peers' snapshots."""
    timestamp: float
    api: ApiStats
    errors: ErrorStats
    quota: QuotaWarningStats
    rate_gate: Optional[GateStatus]
    cache: Optional[CacheStats]
