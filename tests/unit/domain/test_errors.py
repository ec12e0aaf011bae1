from types import SimpleNamespace

import pytest

from callguard.domain.models.errors import (
    CallTimeoutError, FailureKind, RateLimitedError, classify_failure,
    extract_retry_after, extract_status_code, is_rate_limited,
)


class ResponseError(Exception):
    def __init__(self, response):
        super().__init__("request failed")
        self.response = response


def test_rate_limited_error_defaults():
    error = RateLimitedError()
    assert str(error) == "Too many requests"
    assert error.status_code == 429
    assert error.retry_after is None


def test_call_timeout_error_message():
    error = CallTimeoutError(0.25)
    assert error.timeout == 0.25
    assert str(error) == "Guarded call timed out after 0.250s"


@pytest.mark.parametrize("error, expected", [
    (RateLimitedError(status_code=403), 403),
    (ResponseError(SimpleNamespace(status_code=429)), 429),
    (ResponseError(SimpleNamespace(status="503")), 503),
    (ResponseError(None), None),
    (RuntimeError("plain"), None),
])
def test_extract_status_code(error, expected):
    assert extract_status_code(error) == expected


def test_extract_retry_after():
    assert extract_retry_after(RateLimitedError(retry_after=2)) == 2.0
    assert extract_retry_after(RateLimitedError(retry_after=-1)) == 0.0
    assert extract_retry_after(RuntimeError("x")) is None


@pytest.mark.parametrize("error, kind", [
    (RateLimitedError(), FailureKind.RATE_LIMITED),
    (ResponseError(SimpleNamespace(status_code=429)), FailureKind.RATE_LIMITED),
    (CallTimeoutError(1.0), FailureKind.TIMEOUT),
    (RuntimeError("Quota exceeded for quota metric"), FailureKind.OTHER),
    (ValueError("bad request"), FailureKind.OTHER),
])
def test_classify_failure(error, kind):
    assert classify_failure(error) is kind


def test_message_matching_is_opt_in():
    error = RuntimeError("User Rate Limit Exceeded")
    assert classify_failure(error, match_messages=True) is FailureKind.RATE_LIMITED
    assert is_rate_limited(error, match_messages=True) is True
    assert is_rate_limited(error) is False
    assert is_rate_limited(None) is False
