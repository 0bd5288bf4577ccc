"""
Per-User Rate Limiting.

Fixed-window counters keyed "operation:user". Independent of credits:
a user with a large balance is still throttled, which protects the shared
vendor quota from one client's burst.

Defaults:
    tts    20 requests / 60 s
    clone   3 requests / 60 s

Windows:
    A window opens on the first request for a key and lasts window_s.
    Requests past max_requests inside it are refused with retry_after_ms
    set to the time left in the window. Each key's counter is updated
    under that key's own lock.

Cleanup:
    Expired windows are removed opportunistically: at most once per
    cleanup_interval_s, the request that notices the interval elapsed
    sweeps the table.

Usage:
    limiter = RateLimiter(config.rate_limit)
    result = limiter.check_rate_limit(user_id, "tts")
    if not result.allowed:
        raise RateLimitedError("...", retry_after_ms=result.retry_after_ms)
"""
from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from voice_pipeline.core.config import RateLimitConfig, RateLimitRule
from voice_pipeline.core.logging import get_logger, debug, verbose
from voice_pipeline.core.metrics import metrics
from voice_pipeline.resilience.locks import KeyedLocks

_LOG = get_logger("voice-pipeline.rate_limit")


@dataclass
class RateLimitResult:
    """
    Attributes:
        allowed: Whether this request was admitted.
        remaining: Requests left in the current window.
        reset_at: Epoch milliseconds when the window ends.
        retry_after_ms: Wait before retrying (0 when allowed).
    """
    allowed: bool
    remaining: int
    reset_at: int
    retry_after_ms: int = 0
    limit: int = 0

    def headers(self) -> Dict[str, str]:
        """Standard X-RateLimit-* headers, plus Retry-After when refused."""
        out = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_at / 1000)),
        }
        if not self.allowed:
            out["Retry-After"] = str(math.ceil(self.retry_after_ms / 1000))
        return out


@dataclass
class _Window:
    started_at: float
    count: int = 0


class RateLimiter:
    """
    Fixed-window limiter for the "tts" and "clone" operations.

    Args:
        config: Per-operation rules and sweep interval.
        clock: Monotonic clock for window arithmetic.
        wall_clock: Epoch clock for reset_at.
    """

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ):
        self._config = config or RateLimitConfig()
        self._rules: Dict[str, RateLimitRule] = {
            "tts": self._config.tts,
            "clone": self._config.clone,
        }
        self._clock = clock
        self._wall_clock = wall_clock

        self._locks = KeyedLocks()
        self._table_lock = threading.Lock()
        self._windows: Dict[str, _Window] = {}

        self._sweep_lock = threading.Lock()
        self._last_sweep = clock()

    def rule_for(self, operation: str) -> RateLimitRule:
        try:
            return self._rules[operation]
        except KeyError:
            raise ValueError(f"unknown rate-limited operation: {operation!r}")

    def check_rate_limit(self, user_id: str, operation: str) -> RateLimitResult:
        """
        Count one request against the (user, operation) window.

        Raises:
            ValueError: operation is not "tts" or "clone".
        """
        rule = self.rule_for(operation)
        key = f"{operation}:{user_id}"
        now = self._clock()
        self._maybe_sweep(now)

        with self._locks.hold(key):
            with self._table_lock:
                window = self._windows.get(key)
                if window is None or now - window.started_at >= rule.window_s:
                    window = _Window(started_at=now)
                    self._windows[key] = window

            left_s = max(0.0, window.started_at + rule.window_s - now)
            reset_at = int((self._wall_clock() + left_s) * 1000)

            if window.count >= rule.max_requests:
                retry_after_ms = max(1, int(math.ceil(left_s * 1000)))
                metrics.record_rate_limited(operation)
                verbose(_LOG, "rate_limited", key=key, retry_after_ms=retry_after_ms)
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_at=reset_at,
                    retry_after_ms=retry_after_ms,
                    limit=rule.max_requests,
                )

            window.count += 1
            return RateLimitResult(
                allowed=True,
                remaining=rule.max_requests - window.count,
                reset_at=reset_at,
                limit=rule.max_requests,
            )

    def _maybe_sweep(self, now: float) -> None:
        with self._sweep_lock:
            if now - self._last_sweep < self._config.cleanup_interval_s:
                return
            self._last_sweep = now
        self.cleanup_expired(now)

    def cleanup_expired(self, now: Optional[float] = None) -> int:
        """Drop windows that have ended. Returns the number removed."""
        now = self._clock() if now is None else now
        removed = 0
        with self._table_lock:
            for key in list(self._windows):
                operation = key.split(":", 1)[0]
                rule = self._rules.get(operation)
                window = self._windows[key]
                if rule is None or now - window.started_at >= rule.window_s:
                    del self._windows[key]
                    removed += 1
        if removed:
            debug(_LOG, "rate_windows_swept", removed=removed)
        return removed

    def reset(self, user_id: Optional[str] = None) -> None:
        """Forget windows for one user, or for everyone."""
        with self._table_lock:
            if user_id is None:
                self._windows.clear()
                return
            for key in [k for k in self._windows if k.split(":", 1)[1] == user_id]:
                del self._windows[key]

    def __len__(self) -> int:
        with self._table_lock:
            return len(self._windows)
