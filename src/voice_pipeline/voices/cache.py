"""
Voice Profile Cache.

Read-through LRU cache of (user_id, voice_id) -> VoiceProfile with TTL.
Profiles change rarely, so every synthesis request would otherwise pay
a store round trip for data that is almost always the same.

Features:
    - TTL expiry (1 hour default), checked lazily on get
    - Background sweeper thread removing entries nobody reads again
    - LRU eviction past max_items
    - Single-flight loads: concurrent misses for one key run the loader once
    - Statistics (hits, misses, expirations, loads)

Staleness:
    Writes to the store do not reach this cache. After a re-clone a
    reader may get the previous profile until its entry expires. The
    clone flow evicts its own entry only when voice_cache.invalidate_on_write
    is enabled.

Example:
    >>> cache = VoiceProfileCache(ttl_seconds=3600)
    >>> profile = cache.get_or_load("u1", "v1", lambda: store.load_voice_profile("u1", "v1"))
"""
from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from voice_pipeline.core.config import Defaults
from voice_pipeline.core.logging import get_logger, debug, info, verbose
from voice_pipeline.core.metrics import metrics
from voice_pipeline.core.models import VoiceProfile
from voice_pipeline.resilience.locks import KeyedLocks

_LOG = get_logger("voice-pipeline.voice_cache")

CacheKey = Tuple[str, str]


@dataclass
class CacheEntry:
    profile: VoiceProfile
    created_at: float


class VoiceProfileCache:
    """
    Thread-safe TTL cache for voice profiles.

    Args:
        ttl_seconds: Entry lifetime.
        max_items: Capacity before LRU eviction.
        sweep_interval_s: Period of the background sweeper.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        ttl_seconds: int = Defaults.VOICE_CACHE_TTL_SECONDS,
        max_items: int = Defaults.VOICE_CACHE_MAX_ITEMS,
        sweep_interval_s: float = Defaults.VOICE_CACHE_SWEEP_INTERVAL_S,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_items = max_items
        self.sweep_interval_s = sweep_interval_s
        self._clock = clock

        self._d: "OrderedDict[CacheKey, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._load_locks = KeyedLocks()

        self._hits = 0
        self._misses = 0
        self._expirations = 0
        self._loads = 0

        self._sweeper: Optional[threading.Thread] = None
        self._stop = threading.Event()

    def get(self, user_id: str, voice_id: str) -> Optional[VoiceProfile]:
        """Cached profile, or None if absent or expired."""
        key = (user_id, voice_id)
        with self._lock:
            entry = self._d.get(key)
            if entry is None:
                self._misses += 1
                metrics.record_cache("miss")
                return None

            age = self._clock() - entry.created_at
            if age >= self.ttl_seconds:
                del self._d[key]
                self._expirations += 1
                self._misses += 1
                metrics.record_cache("miss")
                verbose(_LOG, "expired", voice_id=voice_id, age=round(age, 1))
                return None

            self._d.move_to_end(key)
            self._hits += 1
        metrics.record_cache("hit")
        debug(_LOG, "hit", voice_id=voice_id)
        return entry.profile

    def set(self, profile: VoiceProfile) -> None:
        key = (profile.user_id, profile.id)
        with self._lock:
            self._d[key] = CacheEntry(profile=profile, created_at=self._clock())
            self._d.move_to_end(key)
            while len(self._d) > self.max_items:
                self._d.popitem(last=False)

    def get_or_load(
        self,
        user_id: str,
        voice_id: str,
        loader: Callable[[], Optional[VoiceProfile]],
    ) -> Optional[VoiceProfile]:
        """
        Read through to loader on a miss.

        Concurrent misses for one key serialize on that key's lock; the
        first runs the loader and the rest find its result cached.
        A None from the loader is not cached.
        """
        profile = self.get(user_id, voice_id)
        if profile is not None:
            return profile

        with self._load_locks.hold((user_id, voice_id)):
            with self._lock:
                entry = self._d.get((user_id, voice_id))
                if entry is not None and self._clock() - entry.created_at < self.ttl_seconds:
                    return entry.profile

            profile = loader()
            with self._lock:
                self._loads += 1
            if profile is not None:
                self.set(profile)
            return profile

    def invalidate(self, user_id: str, voice_id: str) -> bool:
        with self._lock:
            return self._d.pop((user_id, voice_id), None) is not None

    def clear(self) -> int:
        with self._lock:
            count = len(self._d)
            self._d.clear()
            return count

    def cleanup_expired(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        cutoff = self._clock() - self.ttl_seconds
        with self._lock:
            expired = [k for k, e in self._d.items() if e.created_at <= cutoff]
            for k in expired:
                del self._d[k]
            self._expirations += len(expired)

        if expired:
            verbose(_LOG, "cleanup", removed=len(expired))
        return len(expired)

    # ── Background sweeper ───────────────────────────────────────────────

    def start_sweeper(self) -> None:
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop,
            daemon=True,
            name="voice-cache-sweeper",
        )
        self._sweeper.start()
        info(_LOG, "sweeper_started", interval_s=self.sweep_interval_s)

    def stop_sweeper(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout)
            self._sweeper = None

    def _sweep_loop(self) -> None:
        while not self._stop.wait(self.sweep_interval_s):
            self.cleanup_expired()

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "hits": self._hits,
                "misses": self._misses,
                "expirations": self._expirations,
                "loads": self._loads,
                "size": len(self._d),
                "max_items": self.max_items,
                "ttl_seconds": self.ttl_seconds,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._d)
