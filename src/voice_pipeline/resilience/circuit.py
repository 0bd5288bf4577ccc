"""
Per-Provider Circuit Breakers.

One breaker per vendor stops the pipeline from hammering a vendor that
is already failing, and turns its outage into a fast CircuitOpen answer
(or a fall-through to the other vendor).

States:
    CLOSED:
        Calls pass. Consecutive transient failures are counted; a success
        resets the count. Reaching failure_threshold opens the breaker.

    OPEN:
        check() and acquire() raise CircuitOpenError with retry_after_ms,
        the time left until reset_timeout_s has elapsed since opening.
        Once it has, the breaker moves to HALF_OPEN.

    HALF_OPEN:
        acquire() admits at most half_open_max_calls trial calls. A trial
        success closes the breaker, a trial failure reopens it and restarts
        the timeout. release() hands a trial slot back without a verdict
        (auth/validation errors and caller deadlines say nothing about the
        vendor's health).

Only transient failures (timeouts, transport errors, 429, 5xx) are
recorded as failures. The orchestrator decides which outcome to report.

Usage:
    registry = CircuitRegistry(config.circuit)
    breaker = registry.get("cloudPrimary")

    breaker.acquire()
    try:
        audio = client.synthesize(...)
    except ProviderTransientError:
        breaker.record_failure()
        raise
    except PipelineError:
        breaker.release()
        raise
    breaker.record_success()
"""
from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Optional

from voice_pipeline.core.config import CircuitConfig
from voice_pipeline.core.errors import CircuitOpenError
from voice_pipeline.core.logging import get_logger, info, success, verbose, warn
from voice_pipeline.core.metrics import metrics

_LOG = get_logger("voice-pipeline.circuit")

PROVIDER_DISPLAY_NAMES = {
    "cloudPrimary": "Fish Audio",
    "cloudFallback": "Chatterbox",
}


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitSnapshot:
    provider: str
    state: CircuitState
    consecutive_failures: int
    retry_after_ms: int
    half_open_in_flight: int
    times_opened: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "state": self.state.value,
            "consecutiveFailures": self.consecutive_failures,
            "retryAfterMs": self.retry_after_ms,
            "halfOpenInFlight": self.half_open_in_flight,
            "timesOpened": self.times_opened,
        }


class CircuitBreaker:
    """
    Thread-safe breaker for one provider.

    Args:
        name: Provider key (a ProviderKind value).
        config: Thresholds and timing.
        display_name: Vendor name used in user-facing messages.
        clock: Monotonic clock.
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitConfig] = None,
        display_name: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config or CircuitConfig()
        self.display_name = display_name or PROVIDER_DISPLAY_NAMES.get(name, name)
        self._clock = clock
        self._lock = threading.RLock()

        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at: Optional[float] = None
        self._half_open_calls = 0
        self._times_opened = 0

    # ── State ────────────────────────────────────────────────────────────

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._check_state_transition()
            return self._state

    def _check_state_transition(self) -> None:
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return
        if self._clock() - self._opened_at >= self.config.reset_timeout_s:
            self._transition(CircuitState.HALF_OPEN)

    def _transition(self, new_state: CircuitState) -> None:
        old = self._state
        if old == new_state:
            return
        self._state = new_state

        if new_state == CircuitState.OPEN:
            self._opened_at = self._clock()
            self._half_open_calls = 0
            self._times_opened += 1
            warn(
                _LOG, "circuit_opened",
                provider=self.name, state=new_state.value, previous=old.value,
                failures=self._failures,
            )
        elif new_state == CircuitState.HALF_OPEN:
            self._half_open_calls = 0
            info(_LOG, "circuit_half_open", provider=self.name, state=new_state.value)
        else:
            self._failures = 0
            self._opened_at = None
            self._half_open_calls = 0
            success(_LOG, "circuit_closed", provider=self.name, state=new_state.value)

        metrics.set_circuit_state(self.name, new_state.value)

    def _retry_after_ms(self) -> int:
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            left = self.config.reset_timeout_s - (self._clock() - self._opened_at)
            return max(1, int(math.ceil(left * 1000)))
        # HALF_OPEN with every trial slot taken: the trial will settle soon
        return 1000

    def _open_error(self) -> CircuitOpenError:
        retry_after_ms = self._retry_after_ms()
        seconds = int(math.ceil(retry_after_ms / 1000))
        return CircuitOpenError(
            f"{self.display_name} service is temporarily unavailable. "
            f"Please try again in {seconds} seconds.",
            provider=self.name,
            retry_after_ms=retry_after_ms,
        )

    def _refuses(self) -> bool:
        if self._state == CircuitState.OPEN:
            return True
        if self._state == CircuitState.HALF_OPEN:
            return self._half_open_calls >= self.config.half_open_max_calls
        return False

    # ── Gate ─────────────────────────────────────────────────────────────

    def check(self) -> None:
        """
        Raise CircuitOpenError if a call would be refused right now.

        Takes no trial slot.
        """
        with self._lock:
            self._check_state_transition()
            if self._refuses():
                raise self._open_error()

    def retry_after_ms(self) -> int:
        """Time until the breaker admits a call, 0 if it does now."""
        with self._lock:
            self._check_state_transition()
            return self._retry_after_ms() if self._refuses() else 0

    def acquire(self) -> None:
        """
        Admit one call or raise CircuitOpenError.

        In HALF_OPEN this takes a trial slot that the caller must settle
        with record_success(), record_failure() or release().
        """
        with self._lock:
            self._check_state_transition()
            if self._refuses():
                raise self._open_error()
            if self._state == CircuitState.HALF_OPEN:
                self._half_open_calls += 1
                verbose(_LOG, "circuit_trial", provider=self.name, in_flight=self._half_open_calls)

    # ── Verdicts ─────────────────────────────────────────────────────────

    def record_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.CLOSED)
            else:
                self._failures = 0

    def record_failure(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN)
                return
            if self._state == CircuitState.OPEN:
                return
            self._failures += 1
            verbose(
                _LOG, "circuit_failure",
                provider=self.name, failures=self._failures, threshold=self.config.failure_threshold,
            )
            if self._failures >= self.config.failure_threshold:
                self._transition(CircuitState.OPEN)

    def release(self) -> None:
        """Return a trial slot without judging the provider."""
        with self._lock:
            if self._state == CircuitState.HALF_OPEN and self._half_open_calls > 0:
                self._half_open_calls -= 1

    def reset(self) -> None:
        with self._lock:
            self._failures = 0
            self._transition(CircuitState.CLOSED)

    def snapshot(self) -> CircuitSnapshot:
        with self._lock:
            self._check_state_transition()
            return CircuitSnapshot(
                provider=self.name,
                state=self._state,
                consecutive_failures=self._failures,
                retry_after_ms=self._retry_after_ms() if self._refuses() else 0,
                half_open_in_flight=self._half_open_calls,
                times_opened=self._times_opened,
            )


class CircuitRegistry:
    """
    One breaker per provider key, created on first use.

    Args:
        config: Applied to every breaker.
        clock: Shared monotonic clock (tests inject a fake).
    """

    def __init__(self, config: Optional[CircuitConfig] = None, clock: Callable[[], float] = time.monotonic):
        self.config = config or CircuitConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._breakers: Dict[str, CircuitBreaker] = {}

    def get(self, provider: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(provider)
            if breaker is None:
                breaker = CircuitBreaker(provider, self.config, clock=self._clock)
                self._breakers[provider] = breaker
                metrics.set_circuit_state(provider, CircuitState.CLOSED.value)
            return breaker

    def all_refusing(self, providers: Iterable[str]) -> Optional[CircuitOpenError]:
        """
        If every listed breaker refuses calls, return the CircuitOpenError
        with the smallest retry_after_ms. Otherwise None.
        """
        errors = []
        for provider in providers:
            try:
                self.get(provider).check()
            except CircuitOpenError as e:
                errors.append(e)
                continue
            return None
        if not errors:
            return None
        return min(errors, key=lambda e: e.retry_after_ms or 0)

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            breakers = list(self._breakers.values())
        return {b.name: b.snapshot().to_dict() for b in breakers}

    def reset_all(self) -> None:
        with self._lock:
            breakers = list(self._breakers.values())
        for b in breakers:
            b.reset()
