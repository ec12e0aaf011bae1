"""Error types and failure classification for guarded calls.

Wrapped operations signal rate limiting by raising ``RateLimitedError`` (or
any exception carrying HTTP status 429). Message matching on quota
vocabulary is kept only as an opt-in fallback for clients that expose
nothing better.
"""

import enum
import re
from typing import Optional

TOO_MANY_REQUESTS = 429

# Legacy vocabulary used when message matching is enabled
QUOTA_MESSAGE_PATTERN = re.compile(r"quota|limit|rate", re.IGNORECASE)


class CallGuardError(Exception):
    """Base class for errors raised by the call guard."""


class RateLimitedError(CallGuardError):
    """Raised by a wrapped operation when the remote API rejects a call for rate/quota reasons.

    Attributes:
        status_code: HTTP status reported by the remote side (429 by default).
        retry_after: Optional server hint, in seconds, before retrying.
    """

    def __init__(
        self,
        message: str = "Too many requests",
        status_code: Optional[int] = TOO_MANY_REQUESTS,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


class CallTimeoutError(CallGuardError):
    """Raised when a caller-supplied timeout expires during waits or dispatch."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Guarded call timed out after {timeout:.3f}s")


class FailureKind(str, enum.Enum):
    """Classification of a failed attempt."""

    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    OTHER = "other"


def extract_status_code(error: BaseException) -> Optional[int]:
    """Returns the HTTP status carried by an exception, if any.

    Looks at ``error.status_code`` first, then at ``error.response.status_code``
    and ``error.response.status`` (httpx/requests/aiohttp style errors).
    """
    status = getattr(error, "status_code", None)
    if status is None:
        response = getattr(error, "response", None)
        if response is not None:
            status = getattr(response, "status_code", None)
            if status is None:
                status = getattr(response, "status", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def extract_retry_after(error: BaseException) -> Optional[float]:
    """Returns the retry-after hint (seconds) carried by an exception, if any."""
    retry_after = getattr(error, "retry_after", None)
    if retry_after is None:
        return None
    try:
        return max(0.0, float(retry_after))
    except (TypeError, ValueError):
        return None


def classify_failure(error: BaseException, match_messages: bool = False) -> FailureKind:
    """Classifies a failure raised by a wrapped operation.

    Args:
        error: The exception raised by the operation.
        match_messages: Also treat quota/limit vocabulary in the message as rate limiting.

    Returns:
        The failure kind.
    """
    if isinstance(error, CallTimeoutError):
        return FailureKind.TIMEOUT
    if isinstance(error, RateLimitedError):
        return FailureKind.RATE_LIMITED
    if extract_status_code(error) == TOO_MANY_REQUESTS:
        return FailureKind.RATE_LIMITED
    if match_messages and QUOTA_MESSAGE_PATTERN.search(str(error)):
        return FailureKind.RATE_LIMITED
    return FailureKind.OTHER


def is_rate_limited(error: Optional[BaseException], match_messages: bool = False) -> bool:
    """Convenience predicate over ``classify_failure``."""
    if error is None:
        return False
    return classify_failure(error, match_messages) is FailureKind.RATE_LIMITED
