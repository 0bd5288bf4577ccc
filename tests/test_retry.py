"""
Tests for bounded retry with backoff and its breaker interplay.
"""
import random

import pytest

from voice_pipeline.core.config import CircuitConfig, RetryConfig
from voice_pipeline.core.errors import (
    CircuitOpenError,
    ProviderAuthError,
    ProviderTransientError,
)
from voice_pipeline.resilience.circuit import CircuitBreaker, CircuitState
from voice_pipeline.resilience.retry import RetryPolicy, call_with_retry
from voice_pipeline.utils.timing import Deadline, cap_timeout

from conftest import FakeClock


class _Script:
    """Callable raising or returning scripted outcomes."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        item = self.outcomes.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _policy(sleeps, **kwargs):
    return RetryPolicy(RetryConfig(**kwargs), sleep=sleeps.append, rng=random.Random(7))


class TestDelays:
    """Backoff schedule."""

    def test_exponential_with_bounded_jitter(self):
        """Delays double and jitter stays within the ratio."""
        policy = RetryPolicy(RetryConfig(base_delay_ms=500, max_delay_ms=5000, jitter_ratio=0.25))
        for _ in range(50):
            assert 500 <= policy.delay_ms(0) <= 625
            assert 1000 <= policy.delay_ms(1) <= 1250

    def test_capped_at_max(self):
        """Large attempt numbers never exceed max_delay_ms."""
        policy = RetryPolicy(RetryConfig(base_delay_ms=500, max_delay_ms=2000))
        assert policy.delay_ms(10) == 2000

    def test_retry_after_floor(self):
        """A vendor Retry-After raises the delay."""
        policy = RetryPolicy(RetryConfig(base_delay_ms=100, jitter_ratio=0.0))
        assert policy.delay_ms(0, retry_after_ms=3000) == 3000

    def test_wait_capped_by_deadline(self):
        """Sleeps never run past the deadline."""
        sleeps = []
        clock = FakeClock()
        policy = RetryPolicy(sleep=sleeps.append)
        policy.wait(5000, Deadline(1.5, clock=clock))
        assert sleeps == [1.5]


class TestCallWithRetry:
    """call_with_retry outcomes."""

    def test_recovers_after_transient(self):
        """A transient failure is retried and the success resets the breaker."""
        sleeps = []
        breaker = CircuitBreaker("cloudPrimary", clock=FakeClock())
        fn = _Script(ProviderTransientError("502"), b"audio")

        assert call_with_retry(fn, breaker, _policy(sleeps)) == b"audio"
        assert fn.calls == 2
        assert len(sleeps) == 1
        assert breaker.snapshot().consecutive_failures == 0

    def test_exhausts_attempts(self):
        """After max_attempts the last transient error is raised."""
        sleeps = []
        breaker = CircuitBreaker("cloudPrimary", CircuitConfig(failure_threshold=5), clock=FakeClock())
        fn = _Script(*[ProviderTransientError(f"fail {i}") for i in range(3)])

        with pytest.raises(ProviderTransientError, match="fail 2"):
            call_with_retry(fn, breaker, _policy(sleeps, max_attempts=3))
        assert fn.calls == 3
        assert len(sleeps) == 2
        assert breaker.snapshot().consecutive_failures == 3

    def test_auth_error_not_retried(self):
        """Auth failures raise at once and leave the breaker alone."""
        breaker = CircuitBreaker("cloudPrimary", clock=FakeClock())
        fn = _Script(ProviderAuthError("bad key"))
        with pytest.raises(ProviderAuthError):
            call_with_retry(fn, breaker, _policy([]))
        assert fn.calls == 1
        assert breaker.snapshot().consecutive_failures == 0

    def test_breaker_opens_mid_retry(self):
        """Once the breaker opens the remaining attempts are refused."""
        breaker = CircuitBreaker("cloudPrimary", CircuitConfig(failure_threshold=2), clock=FakeClock())
        fn = _Script(ProviderTransientError("a"), ProviderTransientError("b"), b"never")
        with pytest.raises(CircuitOpenError):
            call_with_retry(fn, breaker, _policy([], max_attempts=3))
        assert fn.calls == 2
        assert breaker.state == CircuitState.OPEN

    def test_long_retry_after_surfaces(self):
        """A Retry-After beyond max_delay_ms is not waited out."""
        sleeps = []
        breaker = CircuitBreaker("cloudPrimary", clock=FakeClock())
        fn = _Script(ProviderTransientError("429", retry_after_ms=60000), b"never")
        with pytest.raises(ProviderTransientError) as exc:
            call_with_retry(fn, breaker, _policy(sleeps, max_delay_ms=5000))
        assert exc.value.retry_after_ms == 60000
        assert sleeps == []
        assert fn.calls == 1

    def test_expired_deadline(self):
        """No attempt starts after the deadline."""
        clock = FakeClock()
        deadline = Deadline(0, clock=clock)
        fn = _Script(b"never")
        with pytest.raises(ProviderTransientError) as exc:
            call_with_retry(fn, CircuitBreaker("cloudPrimary"), _policy([]), deadline)
        assert exc.value.details == {"reason": "deadline"}
        assert exc.value.counts_toward_breaker is False
        assert fn.calls == 0

    def test_deadline_failure_not_recorded(self):
        """Failures flagged as caller-deadline are released, not counted."""
        breaker = CircuitBreaker("cloudPrimary", clock=FakeClock())
        fn = _Script(ProviderTransientError("timeout", counts_toward_breaker=False))
        with pytest.raises(ProviderTransientError):
            call_with_retry(fn, breaker, _policy([]))
        assert fn.calls == 1
        assert breaker.snapshot().consecutive_failures == 0


class TestCapTimeout:
    """Deadline-bounded timeouts."""

    def test_no_deadline(self):
        assert cap_timeout(60.0, None) == (60.0, False)

    def test_capped(self):
        """The remaining time wins when shorter."""
        clock = FakeClock()
        assert cap_timeout(60.0, Deadline(15.0, clock=clock)) == (15.0, True)
        assert cap_timeout(5.0, Deadline(15.0, clock=clock)) == (5.0, False)
