"""
Tests for retry and error classification.
Acceptance Criteria:
- Transient failures are retried with exponential backoff (max 3 attempts)
- Non-retryable errors propagate immediately
- 429, 408 and 5xx (except 501) are retryable
"""
import pytest

from crmsync.services.resilience import (
    RetryConfig,
    call_with_retry,
    is_retryable_status,
    retry_sync,
)

pytestmark = pytest.mark.unit


class TestCallWithRetry:
    """Test the retry loop."""

    def test_succeeds_without_retry(self):
        sleeps = []
        assert call_with_retry(lambda: "ok", sleep=sleeps.append) == "ok"
        assert sleeps == []

    def test_retries_then_succeeds(self):
        """Should retry transient errors with backoff."""
        attempts = []
        sleeps = []

        def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise ConnectionError("reset")
            return "ok"

        result = call_with_retry(flaky, RetryConfig(max_attempts=3, base_delay=1.0), sleep=sleeps.append)
        assert result == "ok"
        assert sleeps == [1.0, 2.0]

    def test_raises_after_max_attempts(self):
        attempts = []

        def always_fails():
            attempts.append(1)
            raise TimeoutError("slow")

        with pytest.raises(TimeoutError):
            call_with_retry(always_fails, RetryConfig(max_attempts=3), sleep=lambda s: None)
        assert len(attempts) == 3

    def test_non_retryable_raises_immediately(self):
        attempts = []

        def bad_input():
            attempts.append(1)
            raise ValueError("nope")

        with pytest.raises(ValueError):
            call_with_retry(bad_input, sleep=lambda s: None)
        assert len(attempts) == 1

    def test_custom_predicate(self):
        attempts = []

        def fails():
            attempts.append(1)
            raise ValueError("retry me")

        with pytest.raises(ValueError):
            call_with_retry(
                fails,
                RetryConfig(max_attempts=2),
                should_retry=lambda e: isinstance(e, ValueError),
                sleep=lambda s: None,
            )
        assert len(attempts) == 2

    def test_delay_capped(self):
        config = RetryConfig(base_delay=4.0, max_delay=10.0)
        assert [config.delay_for(n) for n in (1, 2, 3)] == [4.0, 8.0, 10.0]


class TestRetrySyncDecorator:
    def test_decorator(self, monkeypatch):
        monkeypatch.setattr("crmsync.services.resilience.time.sleep", lambda s: None)
        calls = []

        @retry_sync(RetryConfig(max_attempts=2))
        def flaky(x):
            calls.append(x)
            if len(calls) == 1:
                raise ConnectionError()
            return x * 2

        assert flaky(21) == 42
        assert flaky.__name__ == "flaky"


class TestRetryableStatus:
    """Test HTTP status classification."""

    @pytest.mark.parametrize("status", [500, 502, 503, 504, 429, 408])
    def test_retryable(self, status):
        assert is_retryable_status(status)

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 410, 501])
    def test_not_retryable(self, status):
        assert not is_retryable_status(status)
