"""
Tests for persistence backends and sample storage.

Both stores run the same contract tests:
- Voice profile save / load / delete
- Lazy account creation with the free allotment
- Usage limits keyed by calendar period
- Events listed newest first
"""
from datetime import datetime, timezone

import pytest

from voice_pipeline.core.config import PipelineConfig
from voice_pipeline.core.models import (
    CloningStatus,
    OperationType,
    ProviderKind,
    VoiceProfile,
    current_period,
)
from voice_pipeline.persistence import (
    AtomicOperationUnavailable,
    InMemoryStore,
    PersistenceStore,
    SampleStorage,
    SqliteStore,
    create_store,
)

from conftest import FakeClock


def _ts(year, month, day):
    return datetime(year, month, day, 12, tzinfo=timezone.utc).timestamp()


@pytest.fixture(params=["memory", "sqlite"])
def make_store(request, tmp_path):
    def _make(**kwargs):
        if request.param == "memory":
            return InMemoryStore(**kwargs)
        return SqliteStore(str(tmp_path / "store.db"), **kwargs)
    return _make


class TestPeriods:
    """Calendar-month periods."""

    def test_current_period_format(self):
        """Periods are the first of the month in UTC."""
        assert current_period(_ts(2026, 3, 17)) == "2026-03-01"
        assert current_period(_ts(2025, 12, 31)) == "2025-12-01"


class TestStoreContract:
    """Behavior shared by every PersistenceStore."""

    def test_profile_roundtrip(self, make_store):
        """A saved profile loads with the same fields and can be deleted once."""
        store = make_store()
        profile = VoiceProfile(
            id="voice-1",
            user_id="u1",
            name="Morning",
            provider=ProviderKind.CLOUD_PRIMARY,
            provider_voice_id="model-9",
            sample_url="https://cdn.invalid/a.wav",
            cloning_status=CloningStatus.READY,
            is_cloned=True,
        )
        store.save_voice_profile(profile)

        loaded = store.load_voice_profile("u1", "voice-1")
        assert loaded.provider == ProviderKind.CLOUD_PRIMARY
        assert loaded.provider_voice_id == "model-9"
        assert loaded.cloning_status == CloningStatus.READY
        assert loaded.is_cloned is True

        assert store.load_voice_profile("u2", "voice-1") is None
        assert store.delete_voice_profile("u1", "voice-1") is True
        assert store.delete_voice_profile("u1", "voice-1") is False

    def test_profile_update(self, make_store):
        """Saving again overwrites the stored profile."""
        store = make_store()
        profile = VoiceProfile(id="v", user_id="u1", name="A")
        store.save_voice_profile(profile)
        profile.cloning_status = CloningStatus.NEEDS_RECREATE
        store.save_voice_profile(profile)
        assert store.load_voice_profile("u1", "v").cloning_status == CloningStatus.NEEDS_RECREATE

    def test_lazy_account(self, make_store):
        """Unknown users start with the free allotment."""
        store = make_store(free_monthly_credits=750, free_monthly_clones=2)
        assert store.load_credit_account("new").credits_remaining == 750
        limits = store.load_usage_limits("new")
        assert limits.credits_limit == 750
        assert limits.clones_limit == 2
        assert limits.clones_remaining == 2

    def test_add_credits(self, make_store):
        """Top-ups add to the balance; non-positive amounts are rejected."""
        store = make_store(free_monthly_credits=100)
        assert store.add_credits("u1", 50) == 150
        with pytest.raises(ValueError):
            store.add_credits("u1", 0)

    def test_debit_refuses_overdraw(self, make_store):
        """The legacy debit never takes the balance below zero."""
        store = make_store(free_monthly_credits=100)
        assert store.debit_credits("u1", 60) == 40
        assert store.debit_credits("u1", 60) is None
        assert store.load_credit_account("u1").credits_remaining == 40

    def test_events_newest_first(self, make_store):
        """Usage events are listed most recent first."""
        clock = FakeClock(_ts(2026, 1, 10))
        store = make_store(clock=clock)
        store.perform_credit_operation("u1", 5, OperationType.TTS_GENERATE, character_count=15)
        clock.advance(10)
        store.perform_credit_operation("u1", 5000, OperationType.CLONE_CREATE, voice_profile_id="v1")

        events = store.list_usage_events("u1")
        assert [e.operation_type for e in events] == [OperationType.CLONE_CREATE, OperationType.TTS_GENERATE]
        assert events[1].character_count == 15
        assert store.list_usage_events("someone-else") == []

    def test_period_rollover(self, make_store):
        """A new month starts fresh counters; the old row is kept."""
        clock = FakeClock(_ts(2026, 1, 30))
        store = make_store(clock=clock)
        store.perform_credit_operation("u1", 5000, OperationType.CLONE_CREATE)
        assert store.load_usage_limits("u1").clones_created == 1

        clock.advance(5 * 86400)
        fresh = store.load_usage_limits("u1")
        assert fresh.period == "2026-02-01"
        assert fresh.clones_created == 0
        assert fresh.credits_used == 0

        old = store.load_usage_limits("u1", "2026-01-01")
        assert old.clones_created == 1
        assert old.credits_used == 5000


class TestCreateStore:
    """Backend selection."""

    def test_memory_backend(self):
        """persistence.backend=memory gives an InMemoryStore."""
        cfg = PipelineConfig()
        cfg.persistence.backend = "memory"
        assert isinstance(create_store(cfg), InMemoryStore)

    def test_sqlite_backend(self, tmp_path):
        """persistence.backend=sqlite opens the configured file."""
        cfg = PipelineConfig()
        cfg.persistence.backend = "sqlite"
        cfg.persistence.db_path = str(tmp_path / "nested" / "voice.db")
        store = create_store(cfg)
        assert isinstance(store, SqliteStore)
        assert (tmp_path / "nested" / "voice.db").exists()

    def test_base_store_not_atomic(self):
        """A backend without transactions refuses the single-transaction operation."""
        store = PersistenceStore()
        assert store.supports_atomic_operations() is False
        with pytest.raises(AtomicOperationUnavailable):
            store.perform_credit_operation("u1", 10, OperationType.TTS_GENERATE)


class TestSampleStorage:
    """Disk storage of clone samples."""

    def test_store(self, tmp_path):
        """Samples are written under their content hash."""
        storage = SampleStorage(str(tmp_path))
        stored = storage.store("u1", b"RIFF-sample")

        assert stored.path.exists()
        assert stored.bytes == len(b"RIFF-sample")
        assert stored.url.startswith("file://")
        assert stored.path.read_bytes() == b"RIFF-sample"
        assert stored.path.stem == stored.key

    def test_same_bytes_same_key(self, tmp_path):
        """Re-uploading the same take is idempotent."""
        storage = SampleStorage(str(tmp_path))
        assert storage.store("u1", b"abc").key == storage.store("u1", b"abc").key

    def test_public_url(self, tmp_path):
        """With a base URL the sample path is appended to it."""
        storage = SampleStorage(str(tmp_path), base_url="https://cdn.invalid/samples/")
        stored = storage.store("user/../1", b"abc")
        assert stored.url.startswith("https://cdn.invalid/samples/")
        assert "/../" not in stored.url
        assert stored.url.endswith(f"{stored.key}.wav")
