"""
Timing Utilities: stage timers and request deadlines.

Two tools are provided:
    1. timeit: context manager measuring a code block
    2. Deadline: a monotonic point in time a request must finish by

Example Usage:
    with timeit("decode") as t:
        audio = decode_provider_audio(payload, "mp3")
    verbose(_LOG, "stage", event="decode", seconds=t.timing.seconds)

    deadline = Deadline.after_ms(15000)
    timeout, capped = cap_timeout(60.0, deadline)   # (15.0, True)

Precision:
    timeit uses time.perf_counter(); Deadline uses time.monotonic() unless a
    clock is injected (tests pass a fake clock).
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from time import perf_counter
from typing import Any, Callable, Dict, Optional, Tuple


@dataclass
class Timing:
    """
    Timing measurement result.

    Attributes:
        name: Identifier for what was timed (e.g., "decode", "provider_call").
        seconds: Duration in seconds.
        meta: Optional metadata dictionary.
    """
    name: str
    seconds: float
    meta: Optional[Dict[str, Any]] = None


class timeit:
    """
    Context manager for timing code blocks.

    Example:
        with timeit("load_profile") as t:
            profile = cache.get_or_load(user_id, voice_id, loader)
        print(f"took {t.timing.seconds:.3f}s")
    """

    def __init__(self, name: str, meta: Optional[Dict[str, Any]] = None):
        self.name = name
        self.meta = meta
        self._t0: float | None = None
        self.timing: Timing | None = None

    def __enter__(self) -> "timeit":
        self._t0 = perf_counter()
        return self

    def elapsed(self) -> float:
        """Seconds since the block was entered; usable inside the block."""
        assert self._t0 is not None
        return perf_counter() - self._t0

    def __exit__(self, exc_type, exc, tb) -> None:
        t1 = perf_counter()
        assert self._t0 is not None
        self.timing = Timing(name=self.name, seconds=(t1 - self._t0), meta=self.meta)


class Deadline:
    """
    Absolute deadline for one pipeline request.

    The deadline bounds every HTTP timeout, backoff sleep and poll wait
    made on behalf of the request.

    Attributes:
        expires_at: Clock reading after which the request is out of time.
    """

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.expires_at = clock() + max(0.0, seconds)

    @classmethod
    def after_ms(cls, ms: int, clock: Callable[[], float] = time.monotonic) -> "Deadline":
        return cls(ms / 1000.0, clock=clock)

    def remaining(self) -> float:
        """Seconds left, never negative."""
        return max(0.0, self.expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0

    def __repr__(self) -> str:
        return f"Deadline(remaining={self.remaining():.3f}s)"


def cap_timeout(timeout: float, deadline: Optional[Deadline]) -> Tuple[float, bool]:
    """
    Bound a configured timeout by the time a request has left.

    Args:
        timeout: Configured timeout in seconds.
        deadline: Caller deadline, or None for no deadline.

    Returns:
        (effective_timeout, capped). capped is True when the deadline,
        not the configured timeout, is the binding limit.
    """
    if deadline is None:
        return timeout, False
    remaining = deadline.remaining()
    if remaining < timeout:
        return remaining, True
    return timeout, False
