"""
Tests for the voice profile cache.

Tests cover:
- TTL expiry on read and in cleanup_expired
- LRU eviction past max_items
- Read-through loads, with concurrent misses loading once
- Statistics
"""
import threading
import time

from voice_pipeline.core.models import VoiceProfile
from voice_pipeline.voices.cache import VoiceProfileCache

from conftest import FakeClock


def _profile(voice_id="v1", user_id="u1", name="Calm"):
    return VoiceProfile(id=voice_id, user_id=user_id, name=name)


class TestTTL:
    """Expiry."""

    def test_expires_after_ttl(self):
        """Entries are served until ttl_seconds, then dropped on read."""
        clock = FakeClock()
        cache = VoiceProfileCache(ttl_seconds=60, clock=clock)
        cache.set(_profile())

        clock.advance(59)
        assert cache.get("u1", "v1") is not None

        clock.advance(1)
        assert cache.get("u1", "v1") is None
        assert len(cache) == 0
        assert cache.stats()["expirations"] == 1

    def test_cleanup_expired(self):
        """cleanup_expired removes only old entries."""
        clock = FakeClock()
        cache = VoiceProfileCache(ttl_seconds=60, clock=clock)
        cache.set(_profile("old"))
        clock.advance(30)
        cache.set(_profile("new"))
        clock.advance(30)

        assert cache.cleanup_expired() == 1
        assert cache.get("u1", "new") is not None

    def test_sweeper_start_stop(self):
        """The background sweeper removes expired entries and stops cleanly."""
        cache = VoiceProfileCache(ttl_seconds=0, sweep_interval_s=0.01)
        cache.set(_profile())
        cache.start_sweeper()
        try:
            for _ in range(200):
                if len(cache) == 0:
                    break
                time.sleep(0.01)
            assert len(cache) == 0
        finally:
            cache.stop_sweeper()


class TestLRU:
    """Capacity."""

    def test_evicts_least_recent(self):
        """A read refreshes recency; the coldest entry goes first."""
        cache = VoiceProfileCache(max_items=2, clock=FakeClock())
        cache.set(_profile("a"))
        cache.set(_profile("b"))
        cache.get("u1", "a")
        cache.set(_profile("c"))

        assert cache.get("u1", "a") is not None
        assert cache.get("u1", "b") is None
        assert len(cache) == 2


class TestReadThrough:
    """get_or_load."""

    def test_loads_once_then_hits(self):
        """The loader runs on the first miss only."""
        cache = VoiceProfileCache(clock=FakeClock())
        calls = []

        def loader():
            calls.append(1)
            return _profile()

        assert cache.get_or_load("u1", "v1", loader).name == "Calm"
        assert cache.get_or_load("u1", "v1", loader).name == "Calm"
        assert len(calls) == 1
        stats = cache.stats()
        assert stats["hits"] == 1
        assert stats["loads"] == 1

    def test_none_not_cached(self):
        """Missing profiles are looked up again next time."""
        cache = VoiceProfileCache(clock=FakeClock())
        calls = []

        def loader():
            calls.append(1)
            return None

        assert cache.get_or_load("u1", "missing", loader) is None
        assert cache.get_or_load("u1", "missing", loader) is None
        assert len(calls) == 2

    def test_concurrent_misses_single_flight(self):
        """Eight threads missing the same key run the loader once."""
        cache = VoiceProfileCache()
        calls = []
        barrier = threading.Barrier(8)

        def loader():
            calls.append(1)
            time.sleep(0.05)
            return _profile()

        def worker():
            barrier.wait()
            cache.get_or_load("u1", "v1", loader)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)
        assert len(calls) == 1

    def test_stale_after_store_write(self):
        """A store write does not reach an already cached profile."""
        cache = VoiceProfileCache(clock=FakeClock())
        cache.get_or_load("u1", "v1", lambda: _profile(name="Before"))
        assert cache.get_or_load("u1", "v1", lambda: _profile(name="After")).name == "Before"

        assert cache.invalidate("u1", "v1") is True
        assert cache.get_or_load("u1", "v1", lambda: _profile(name="After")).name == "After"
