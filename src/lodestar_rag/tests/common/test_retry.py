import time
import warnings

import pytest

from lodestar_rag.common.errors import ConfigurationError, MalformedInputError, RateLimitError
from lodestar_rag.common.retry import RetryPolicy, retry_with_backoff

FAST = RetryPolicy(max_attempts=3, initial_delay=0.0, max_delay=0.0, jitter=0.0)


def test_retry_succeeds_after_transient_failures():
    """Retryable errors are retried until the operation succeeds."""
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise RateLimitError("slow down")
        return "ok"

    assert retry_with_backoff(flaky, FAST) == "ok"
    assert len(calls) == 3


def test_retry_reraises_last_error_when_attempts_exhausted():
    calls = []

    def always_limited():
        calls.append(1)
        raise RateLimitError("slow down")

    with pytest.raises(RateLimitError):
        retry_with_backoff(always_limited, FAST)
    assert len(calls) == 3


def test_non_retryable_errors_propagate_immediately():
    """Malformed input is never retried."""
    calls = []

    def malformed():
        calls.append(1)
        raise MalformedInputError("bad text")

    with pytest.raises(MalformedInputError):
        retry_with_backoff(malformed, FAST)
    assert len(calls) == 1


def test_retry_policy_validation_and_config():
    with pytest.raises(ConfigurationError):
        RetryPolicy(max_attempts=0)
    with pytest.raises(ConfigurationError):
        RetryPolicy(initial_delay=-1.0)

    policy = RetryPolicy.from_config({"max_attempts": 5, "initial_delay": 0.1})
    assert policy.max_attempts == 5
    assert policy.initial_delay == pytest.approx(0.1)
    assert RetryPolicy.from_config(None) == RetryPolicy()


def test_backoff_doubles_up_to_max_delay_without_deprecation_warnings(monkeypatch):
    """Delays grow from ``initial_delay`` and are capped at ``max_delay``."""
    sleeps = []
    monkeypatch.setattr(time, "sleep", sleeps.append)
    policy = RetryPolicy(max_attempts=4, initial_delay=0.5, max_delay=1.0, jitter=0.0)
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) < 4:
            raise RateLimitError("slow down")
        return "ok"

    with warnings.catch_warnings():
        warnings.simplefilter("error", DeprecationWarning)
        assert retry_with_backoff(flaky, policy) == "ok"

    assert sleeps == pytest.approx([0.5, 1.0, 1.0])
