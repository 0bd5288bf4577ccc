"""
Bounded Retry with Exponential Backoff.

Transient vendor failures (timeouts, transport errors, 429, 5xx) are
retried up to max_attempts times in total. Delay before retry n
(0-based) is:

    min(base_delay_ms * 2**n + jitter, max_delay_ms)

where jitter is uniform in [0, jitter_ratio * base_delay_ms * 2**n].
With the defaults: ~500-625 ms, then ~1000-1250 ms.

Retry-After:
    A 429 carrying Retry-After waits at least that long. When the vendor
    asks for more than max_delay_ms, the error is surfaced immediately
    with its retry_after_ms instead of holding the request thread.

Breaker Interplay (call_with_retry):
    Every attempt passes through breaker.acquire() first. Transient
    failures are recorded on the breaker; other pipeline errors release
    the slot unjudged and are raised at once. Deadline-caused failures
    are released, not recorded.

Deadlines:
    No attempt starts after the deadline has passed, and backoff sleeps
    are cut to the time remaining.
"""
from __future__ import annotations

import random
import time
from typing import Callable, Optional, TypeVar

from voice_pipeline.core.config import RetryConfig
from voice_pipeline.core.errors import PipelineError, ProviderTransientError
from voice_pipeline.core.logging import get_logger, verbose, warn
from voice_pipeline.core.metrics import metrics
from voice_pipeline.resilience.circuit import CircuitBreaker
from voice_pipeline.utils.timing import Deadline

_LOG = get_logger("voice-pipeline.retry")

T = TypeVar("T")


def deadline_exceeded() -> ProviderTransientError:
    return ProviderTransientError(
        "Request deadline exceeded",
        details={"reason": "deadline"},
        counts_toward_breaker=False,
    )


class RetryPolicy:
    """
    Backoff schedule plus the sleep used to wait it out.

    Args:
        config: Attempts and delays.
        sleep: Blocking sleep, injectable for tests.
        rng: Random source for jitter.
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.config = config or RetryConfig()
        self._sleep = sleep
        self._rng = rng or random.Random()

    @property
    def max_attempts(self) -> int:
        return self.config.max_attempts

    def delay_ms(self, attempt: int, retry_after_ms: Optional[int] = None) -> int:
        """Backoff before retry number `attempt` (0-based)."""
        exp = self.config.base_delay_ms * (2 ** attempt)
        jitter = self._rng.uniform(0, self.config.jitter_ratio * exp)
        delay = min(int(exp + jitter), self.config.max_delay_ms)
        if retry_after_ms:
            delay = max(delay, int(retry_after_ms))
        return delay

    def wait(self, delay_ms: int, deadline: Optional[Deadline] = None) -> None:
        seconds = delay_ms / 1000.0
        if deadline is not None:
            seconds = min(seconds, deadline.remaining())
        if seconds > 0:
            self._sleep(seconds)


def call_with_retry(
    fn: Callable[[], T],
    breaker: CircuitBreaker,
    policy: RetryPolicy,
    deadline: Optional[Deadline] = None,
) -> T:
    """
    Run fn through breaker with bounded retries.

    Raises:
        CircuitOpenError: The breaker refused an attempt.
        ProviderTransientError: All attempts failed transiently, the vendor
            asked to wait longer than max_delay_ms, or the deadline passed.
        PipelineError: Any non-transient pipeline failure, unretried.
    """
    provider = breaker.name
    for attempt in range(policy.max_attempts):
        if deadline is not None and deadline.expired:
            raise deadline_exceeded()

        breaker.acquire()
        try:
            result = fn()
        except ProviderTransientError as e:
            if e.counts_toward_breaker:
                breaker.record_failure()
            else:
                breaker.release()
            metrics.record_provider_attempt(provider, "transient")

            last_attempt = attempt + 1 >= policy.max_attempts
            if last_attempt or not e.counts_toward_breaker:
                raise
            if e.retry_after_ms and e.retry_after_ms > policy.config.max_delay_ms:
                warn(_LOG, "retry_after_too_long", provider=provider, retry_after_ms=e.retry_after_ms)
                raise

            delay = policy.delay_ms(attempt, e.retry_after_ms)
            warn(
                _LOG, "provider_retry",
                provider=provider, attempt=attempt + 1, delay_ms=delay, error=e.message,
            )
            policy.wait(delay, deadline)
            continue
        except PipelineError as e:
            breaker.release()
            metrics.record_provider_attempt(provider, e.kind)
            raise
        except BaseException:
            breaker.release()
            metrics.record_provider_attempt(provider, "error")
            raise

        breaker.record_success()
        metrics.record_provider_attempt(provider, "success")
        verbose(_LOG, "provider_attempt_ok", provider=provider, attempt=attempt + 1)
        return result

    # max_attempts is validated positive, so the loop always returns or raises
    raise deadline_exceeded()
