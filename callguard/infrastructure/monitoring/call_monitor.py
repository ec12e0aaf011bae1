"""Call monitoring and health reporting.

Keeps a bounded log of guarded calls and of rate-limit warnings, derives
statistics from them, and combines those with read-only snapshots of a rate
gate and a result cache into status and health reports.
"""

import logging
import threading
import time
from collections import Counter, deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional

from callguard.domain.interfaces.cache import CacheService
from callguard.domain.models.common import (
    ApiStats, EndpointName, ErrorStats, MethodName, MonitorStatus, QuotaWarningStats,
)
from callguard.domain.models.errors import extract_status_code, is_rate_limited
from callguard.infrastructure.resilience.rate_gate import RateGate

logger = logging.getLogger(__name__)

DEFAULT_CALL_LOG_CAPACITY = 1000
DEFAULT_WARNING_LOG_CAPACITY = 500

RECENT_ERRORS_LIMIT = 10
RECENT_WARNINGS_LIMIT = 20
HOUR_S = 60 * 60
DAY_S = 24 * HOUR_S

# Health thresholds
MIN_HEALTHY_SUCCESS_RATE = 95.0
MAX_HEALTHY_ERRORS = 10
MAX_HEALTHY_QUOTA_WARNINGS = 5


@dataclass
class CallRecord:
    """One completed call attempt as seen by the caller."""
    timestamp: float
    endpoint: EndpointName
    method: MethodName
    duration_ms: float
    success: bool
    error_message: Optional[str] = None
    status_code: Optional[int] = None


@dataclass
class QuotaWarning:
    """A call that failed for rate/quota reasons."""
    timestamp: float
    endpoint: EndpointName
    error_message: str
    status_code: Optional[int] = None


def format_uptime(seconds: float) -> str:
    """Formats a duration as '1d 2h 3m', '2h 3m', '3m 4s' or '4s'."""
    total_seconds = int(seconds)
    minutes, secs = divmod(total_seconds, 60)
    hours, minutes = divmod(minutes, 60)
    days, hours = divmod(hours, 24)
    if days > 0:
        return f"{days}d {hours}h {minutes}m"
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def _top(counts: Dict[Any, int], limit: int = 3) -> List[tuple]:
    return sorted(counts.items(), key=lambda item: item[1], reverse=True)[:limit]


@dataclass
class HealthReport:
    """Pass/fail judgment over the monitor status."""
    healthy: bool
    issues: List[str]
    status: MonitorStatus = field(repr=False)

    def render(self) -> str:
        """Renders the report as plain multi-line text."""
        status = self.status
        api = status["api"]
        generated = datetime.fromtimestamp(status["timestamp"], tz=timezone.utc).isoformat()
        lines = [
            "API HEALTH REPORT",
            "=" * 50,
            f"Generated: {generated}",
            f"Uptime: {api['uptime']}",
            "",
            "API STATISTICS",
            f"   Total Calls: {api['total']}",
            f"   Last Hour: {api['last_hour']}",
            f"   Last 24h: {api['last_24_hours']}",
            f"   Success Rate: {api['success_rate']}",
            f"   Avg Duration: {api['average_duration']}",
            "",
        ]

        gate = status["rate_gate"]
        if gate is not None:
            lines += [
                "RATE GATE STATUS",
                f"   Current Delay: {gate['current_delay_ms']:.0f}ms",
                f"   Consecutive Failures: {gate['consecutive_failures']}",
                f"   Requests This Second: {gate['requests_this_second']}",
                f"   Requests This 100s: {gate['requests_this_100_seconds']}",
                "",
            ]

        cache = status["cache"]
        if cache is not None:
            lines += [
                "CACHE STATUS",
                f"   Hit Rate: {cache['hit_rate']}",
                f"   Current Size: {cache['current_size']}/{cache['max_size']}",
                f"   Hits: {cache['hits']}, Misses: {cache['misses']}",
                "",
            ]

        errors = status["errors"]
        if errors["total_errors"] > 0:
            lines += ["ERROR SUMMARY", f"   Total Errors: {errors['total_errors']}"]
            lines += [f"   {message}: {count}" for message, count in _top(errors["error_types"])]
            lines.append("")

        quota = status["quota"]
        if quota["total"] > 0:
            lines += ["QUOTA WARNINGS", f"   Total Warnings: {quota['total']}"]
            lines += [f"   {endpoint}: {count} warnings" for endpoint, count in _top(quota["by_endpoint"])]
            lines.append("")

        lines += ["OVERALL HEALTH STATUS", f"   Status: {'HEALTHY' if self.healthy else 'NEEDS ATTENTION'}"]
        if not self.healthy:
            lines.append("   Issues detected:")
            lines += [f"   - {issue}" for issue in self.issues]
        return "\n".join(lines)


class CallMonitor:
    """Aggregates call events into statistics and health judgments.

    Reads the rate gate and the cache through their status methods only;
    it never changes their state.
    """

    def __init__(
        self,
        rate_gate: Optional[RateGate] = None,
        cache: Optional[CacheService] = None,
        call_log_capacity: int = DEFAULT_CALL_LOG_CAPACITY,
        warning_log_capacity: int = DEFAULT_WARNING_LOG_CAPACITY,
        match_quota_messages: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        if call_log_capacity <= 0 or warning_log_capacity <= 0:
            raise ValueError("Log capacities must be positive.")
        self.rate_gate = rate_gate
        self.cache = cache
        self.call_log_capacity = call_log_capacity
        self.warning_log_capacity = warning_log_capacity
        self.match_quota_messages = match_quota_messages
        self._clock = clock
        self._lock = threading.Lock()
        self._calls: Deque[CallRecord] = deque(maxlen=call_log_capacity)
        self._quota_warnings: Deque[QuotaWarning] = deque(maxlen=warning_log_capacity)
        self.started_at = self._clock()
        logger.info(
            f"CallMonitor initialized (call log={call_log_capacity}, warning log={warning_log_capacity})"
        )

    def record(
        self,
        endpoint: EndpointName,
        method: MethodName,
        duration_ms: float,
        success: bool,
        error: Optional[BaseException] = None,
        count_quota_warning: bool = True,
    ) -> CallRecord:
        """Appends a call record, plus a quota warning when ``error`` is rate-limited.

        Callers that already reported each failed attempt through
        ``record_attempt_failure`` pass ``count_quota_warning=False``.
        """
        now = self._clock()
        call = CallRecord(
            timestamp=now,
            endpoint=endpoint,
            method=method,
            duration_ms=duration_ms,
            success=success,
            error_message=str(error) if error is not None else None,
            status_code=extract_status_code(error) if error is not None else None,
        )
        warning = None
        if count_quota_warning and is_rate_limited(error, self.match_quota_messages):
            warning = QuotaWarning(
                timestamp=now,
                endpoint=endpoint,
                error_message=str(error),
                status_code=call.status_code,
            )
        with self._lock:
            self._calls.append(call)
            if warning is not None:
                self._quota_warnings.append(warning)
        if warning is not None:
            logger.warning(f"Quota warning on {endpoint}: {warning.error_message}")
        else:
            logger.debug(f"Recorded {method} {endpoint}: success={success}, {duration_ms:.1f}ms")
        return call

    def record_attempt_failure(self, endpoint: EndpointName, error: BaseException) -> Optional[QuotaWarning]:
        """Logs a quota warning for one failed attempt when ``error`` is rate-limited.

        Covers attempts the rate gate retries, which never reach ``record``.
        """
        if not is_rate_limited(error, self.match_quota_messages):
            return None
        warning = QuotaWarning(
            timestamp=self._clock(),
            endpoint=endpoint,
            error_message=str(error),
            status_code=extract_status_code(error),
        )
        with self._lock:
            self._quota_warnings.append(warning)
        logger.warning(f"Quota warning on {endpoint}: {warning.error_message}")
        return warning

    def _snapshot(self):
        with self._lock:
            return list(self._calls), list(self._quota_warnings)

    # --- Statistics ---

    def api_stats(self) -> ApiStats:
        calls, _ = self._snapshot()
        now = self._clock()
        total = len(calls)
        successful = sum(1 for call in calls if call.success)
        success_rate_value = (successful / total) * 100 if total else 0.0
        average_ms = sum(call.duration_ms for call in calls) / total if total else 0.0
        return ApiStats(
            total=total,
            last_hour=sum(1 for call in calls if call.timestamp > now - HOUR_S),
            last_24_hours=sum(1 for call in calls if call.timestamp > now - DAY_S),
            successful=successful,
            failed=total - successful,
            success_rate=f"{success_rate_value:.2f}%" if total else "0%",
            success_rate_value=success_rate_value,
            average_duration=f"{average_ms:.2f}ms",
            average_duration_ms=average_ms,
            uptime=format_uptime(now - self.started_at),
        )

    def error_stats(self) -> ErrorStats:
        calls, _ = self._snapshot()
        failures = [call for call in calls if not call.success]
        error_types = Counter(call.error_message or "Unknown" for call in failures)
        status_codes = Counter(call.status_code for call in failures if call.status_code is not None)
        return ErrorStats(
            total_errors=len(failures),
            error_types=dict(error_types),
            status_codes=dict(status_codes),
            recent_errors=[asdict(call) for call in reversed(failures[-RECENT_ERRORS_LIMIT:])],
        )

    def quota_warnings(self) -> QuotaWarningStats:
        _, warnings = self._snapshot()
        return QuotaWarningStats(
            total=len(warnings),
            recent=[asdict(warning) for warning in reversed(warnings[-RECENT_WARNINGS_LIMIT:])],
            by_endpoint=dict(Counter(warning.endpoint for warning in warnings)),
        )

    def status(self) -> MonitorStatus:
        """Composite snapshot of the monitor and, when attached, the gate and cache."""
        return MonitorStatus(
            timestamp=self._clock(),
            api=self.api_stats(),
            errors=self.error_stats(),
            quota=self.quota_warnings(),
            rate_gate=self.rate_gate.status() if self.rate_gate is not None else None,
            cache=self.cache.stats() if self.cache is not None else None,
        )

    def health_report(self) -> HealthReport:
        """Healthy iff success rate >= 95%, fewer than 10 errors and fewer than 5 quota warnings."""
        status = self.status()
        issues = []
        if status["api"]["success_rate_value"] < MIN_HEALTHY_SUCCESS_RATE:
            issues.append("Low API success rate")
        if status["errors"]["total_errors"] >= MAX_HEALTHY_ERRORS:
            issues.append("High error count")
        if status["quota"]["total"] >= MAX_HEALTHY_QUOTA_WARNINGS:
            issues.append("Multiple quota warnings")
        return HealthReport(healthy=not issues, issues=issues, status=status)

    def export_data(self) -> Dict[str, Any]:
        """Status plus the raw logs, as plain data for external monitoring."""
        calls, warnings = self._snapshot()
        return {
            "status": self.status(),
            "raw_data": {
                "api_calls": [asdict(call) for call in calls],
                "errors": [asdict(call) for call in calls if not call.success],
                "quota_warnings": [asdict(warning) for warning in warnings],
            },
        }

    def reset(self) -> None:
        """Clears both logs and restarts the uptime clock."""
        with self._lock:
            self._calls.clear()
            self._quota_warnings.clear()
            self.started_at = self._clock()
        logger.info("CallMonitor logs cleared.")
