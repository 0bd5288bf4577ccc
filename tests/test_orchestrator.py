"""
Tests for TTSOrchestrator request scenarios.

Tests cover:
- Billing after decode (exact cost, refused second request)
- Circuit opening after consecutive vendor timeouts
- Fallback to the second vendor on transient failures
- No charge when decoding fails
- Pacing tags never reach a vendor verbatim
- Browser voices are free and never call a vendor
- Rate limiting before any vendor call
- Clone flow, clone limits and rollback of an unbilled clone
- Voice deletion
- Deadlines
"""
import pytest

from voice_pipeline.billing.ledger import CreditLedger, DeductResult, DeductStrategy
from voice_pipeline.core.errors import (
    CircuitOpenError,
    CloneLimitError,
    DecodeError,
    InsufficientCreditsError,
    InvalidInputError,
    ProfileNotFoundError,
    ProviderAuthError,
    ProviderTransientError,
    ProviderValidationError,
    RateLimitedError,
)
from voice_pipeline.core.models import CloningStatus, OperationType, ProviderKind
from voice_pipeline.persistence import InMemoryStore
from voice_pipeline.services.orchestrator import CloneRequest, SynthesisRequest
from voice_pipeline.utils.timing import Deadline

from conftest import FakeClient, cloud_profile, sine_wav

PRIMARY = ProviderKind.CLOUD_PRIMARY
FALLBACK = ProviderKind.CLOUD_FALLBACK


def _timeout():
    return ProviderTransientError("Fish Audio request timed out after 60.0s")


class TestSynthesisBilling:
    """Credits are checked before and charged after a decoded result."""

    def test_exact_cost_then_refusal(self, make_orchestrator):
        """300 credits cover one 1000-character request (280) but not a second."""
        primary = FakeClient(PRIMARY)
        orch = make_orchestrator([primary], store=InMemoryStore(free_monthly_credits=300))
        orch.store.save_voice_profile(cloud_profile())

        text = "a" * 1000
        result = orch.synthesize(SynthesisRequest("user-1", text, "voice-1"))

        assert result.success is True
        assert result.credits_charged == 280
        assert result.balance == 20
        assert result.provider == PRIMARY
        assert result.used_fallback is False
        assert result.audio

        with pytest.raises(InsufficientCreditsError):
            orch.synthesize(SynthesisRequest("user-1", text, "voice-1"))
        assert len(primary.synth_calls) == 1
        assert orch.get_credits("user-1").balance == 20

    def test_balance_spent_elsewhere_stops_vendor_calls(self, make_orchestrator):
        """After one refused bill the stale cached balance no longer admits requests."""
        primary = FakeClient(PRIMARY)
        store = InMemoryStore(free_monthly_credits=300)
        orch = make_orchestrator([primary], store=store)
        orch.store.save_voice_profile(cloud_profile())

        assert orch.ledger.get_balance("user-1") == 300
        store.debit_credits("user-1", 280)

        text = "a" * 1000
        for _ in range(3):
            with pytest.raises(InsufficientCreditsError):
                orch.synthesize(SynthesisRequest("user-1", text, "voice-1"))

        assert len(primary.synth_calls) <= 1
        assert orch.get_credits("user-1").balance == 20

    def test_usage_event_recorded(self, make_orchestrator):
        """A billed request appends one TTS_GENERATE event with the character count."""
        orch = make_orchestrator([FakeClient(PRIMARY)])
        orch.store.save_voice_profile(cloud_profile())

        orch.synthesize(SynthesisRequest("user-1", "Close your eyes", "voice-1"))

        events = orch.store.list_usage_events("user-1")
        assert len(events) == 1
        assert events[0].operation_type == OperationType.TTS_GENERATE
        assert events[0].character_count == len("Close your eyes")
        assert events[0].credits_used == 5

    def test_decode_failure_not_billed(self, make_orchestrator):
        """Undecodable vendor audio raises DecodeError and charges nothing."""
        orch = make_orchestrator([FakeClient(PRIMARY, audio=b"definitely not audio")])
        orch.store.save_voice_profile(cloud_profile())

        with pytest.raises(DecodeError):
            orch.synthesize(SynthesisRequest("user-1", "Breathe", "voice-1"))

        usage = orch.get_credits("user-1")
        assert usage.balance == orch.config.credits.free_monthly_credits
        assert usage.credits_used == 0
        assert orch.store.list_usage_events("user-1") == []


class TestCircuitBreaking:
    """Consecutive transient failures open the vendor's breaker."""

    def test_three_timeouts_open_circuit(self, make_orchestrator, config):
        """After three timeouts the fourth request fails fast without a vendor call."""
        config.retry.max_attempts = 1
        primary = FakeClient(PRIMARY, script=[_timeout(), _timeout(), _timeout()])
        orch = make_orchestrator([primary], cfg=config)
        orch.store.save_voice_profile(cloud_profile())

        for _ in range(3):
            with pytest.raises(ProviderTransientError):
                orch.synthesize(SynthesisRequest("user-1", "Relax", "voice-1"))
        assert len(primary.synth_calls) == 3

        with pytest.raises(CircuitOpenError) as exc:
            orch.synthesize(SynthesisRequest("user-1", "Relax", "voice-1"))

        assert len(primary.synth_calls) == 3
        assert exc.value.retry_after_ms > 0
        assert "Fish Audio" in exc.value.message
        assert orch.health()["status"] == "degraded"

    def test_retries_count_toward_breaker(self, make_orchestrator):
        """One request's three failed attempts are enough to open the breaker."""
        primary = FakeClient(PRIMARY, script=[_timeout(), _timeout(), _timeout()])
        orch = make_orchestrator([primary])
        orch.store.save_voice_profile(cloud_profile())

        with pytest.raises(ProviderTransientError):
            orch.synthesize(SynthesisRequest("user-1", "Relax", "voice-1"))

        assert len(primary.synth_calls) == 3
        assert orch.circuits.get(PRIMARY.value).state.value == "open"

    def test_auth_error_does_not_trip_breaker(self, make_orchestrator):
        """Auth errors surface at once, are not retried and leave the breaker closed."""
        primary = FakeClient(PRIMARY, script=[ProviderAuthError("Fish Audio rejected the API key")])
        fallback = FakeClient(FALLBACK)
        orch = make_orchestrator([primary, fallback])
        orch.store.save_voice_profile(cloud_profile(sample_url="https://cdn.example/s.wav"))

        with pytest.raises(ProviderAuthError):
            orch.synthesize(SynthesisRequest("user-1", "Relax", "voice-1"))

        assert len(primary.synth_calls) == 1
        assert fallback.synth_calls == []
        assert orch.circuits.get(PRIMARY.value).snapshot().consecutive_failures == 0


class TestFallback:
    """Transient primary failures fall through to the fallback vendor."""

    def test_fallback_serves_request(self, make_orchestrator):
        """Primary times out on every attempt, fallback answers and is billed."""
        primary = FakeClient(PRIMARY, script=[_timeout(), _timeout(), _timeout()])
        fallback = FakeClient(FALLBACK)
        orch = make_orchestrator([primary, fallback])
        orch.store.save_voice_profile(cloud_profile(sample_url="https://cdn.example/s.wav"))

        result = orch.synthesize(SynthesisRequest("user-1", "Relax [pause] now", "voice-1"))

        assert result.provider == FALLBACK
        assert result.used_fallback is True
        assert result.credits_charged == 5
        assert fallback.synth_calls == [("Relax now", "https://cdn.example/s.wav")]

    def test_open_primary_routes_to_fallback(self, make_orchestrator):
        """With the primary breaker open the fallback is used without touching the primary."""
        primary = FakeClient(PRIMARY)
        fallback = FakeClient(FALLBACK)
        orch = make_orchestrator([primary, fallback])
        orch.store.save_voice_profile(cloud_profile(sample_url="https://cdn.example/s.wav"))
        breaker = orch.circuits.get(PRIMARY.value)
        for _ in range(orch.config.circuit.failure_threshold):
            breaker.record_failure()

        result = orch.synthesize(SynthesisRequest("user-1", "Relax", "voice-1"))

        assert result.provider == FALLBACK
        assert primary.synth_calls == []

    def test_needs_recreate_skips_primary(self, make_orchestrator):
        """A profile flagged needsRecreate is rendered by the fallback."""
        primary = FakeClient(PRIMARY)
        fallback = FakeClient(FALLBACK)
        orch = make_orchestrator([primary, fallback])
        orch.store.save_voice_profile(cloud_profile(
            sample_url="https://cdn.example/s.wav", status=CloningStatus.NEEDS_RECREATE,
        ))

        result = orch.synthesize(SynthesisRequest("user-1", "Relax", "voice-1"))

        assert result.provider == FALLBACK
        assert primary.synth_calls == []

    def test_no_sample_no_model(self, make_orchestrator):
        """A cloud profile with nothing to synthesize from asks for a re-clone."""
        orch = make_orchestrator([FakeClient(PRIMARY)])
        orch.store.save_voice_profile(cloud_profile(provider_voice_id=None, sample_url=None))

        with pytest.raises(ProviderValidationError) as exc:
            orch.synthesize(SynthesisRequest("user-1", "Relax", "voice-1"))
        assert "re-clone" in exc.value.message

    def test_no_vendor_configured(self, make_orchestrator):
        """A cloud profile with no configured vendor names the missing keys."""
        orch = make_orchestrator([])
        orch.store.save_voice_profile(cloud_profile())

        with pytest.raises(ProviderValidationError) as exc:
            orch.synthesize(SynthesisRequest("user-1", "Relax", "voice-1"))
        assert "FISH_AUDIO_API_KEY" in exc.value.message


class TestTextPreparation:
    """Vendors receive rewritten text."""

    def test_pacing_tags_never_sent_verbatim(self, make_orchestrator):
        """The primary vendor gets ellipses and cues, never bracketed tags."""
        primary = FakeClient(PRIMARY)
        orch = make_orchestrator([primary])
        orch.store.save_voice_profile(cloud_profile())

        orch.synthesize(SynthesisRequest("user-1", "Breathe in [pause] and [deep breath] [unknown tag]", "voice-1"))

        sent, voice_ref = primary.synth_calls[0]
        assert "[" not in sent and "]" not in sent
        assert "..." in sent
        assert "take a deep breath" in sent
        assert voice_ref == "model-1"

    def test_cost_counts_original_text(self, make_orchestrator):
        """Billing uses the submitted text length, not the prepared text."""
        orch = make_orchestrator([FakeClient(FALLBACK)])
        orch.store.save_voice_profile(cloud_profile(provider_voice_id=None, sample_url="https://cdn.example/s.wav"))

        text = "x" * 990 + " [pause]"
        result = orch.synthesize(SynthesisRequest("user-1", text, "voice-1"))

        assert result.credits_charged == 280


class TestBrowserRoute:
    """Browser voices are rendered client-side for free."""

    def test_browser_voice_is_free(self, make_orchestrator):
        """No vendor call, no charge, prepared text returned."""
        primary = FakeClient(PRIMARY)
        orch = make_orchestrator([primary])

        result = orch.synthesize(SynthesisRequest("user-1", "Rest [pause] here", "browser-en-US"))

        assert result.provider == ProviderKind.BROWSER
        assert result.audio is None
        assert result.prepared_text == "Rest here"
        assert result.credits_charged == 0
        assert primary.synth_calls == []
        assert orch.get_credits("user-1").credits_used == 0

    def test_profile_without_cloud_artifacts_is_browser(self, make_orchestrator):
        """A stored profile with no model, sample or clone flag routes to the browser."""
        orch = make_orchestrator([FakeClient(PRIMARY)])
        profile = cloud_profile(provider_voice_id=None)
        profile.is_cloned = False
        profile.cloning_status = CloningStatus.NONE
        orch.store.save_voice_profile(profile)

        result = orch.synthesize(SynthesisRequest("user-1", "Rest", "voice-1"))

        assert result.provider == ProviderKind.BROWSER


class TestGuards:
    """Validation, profile lookup and rate limiting run before vendor calls."""

    def test_empty_text_rejected(self, make_orchestrator):
        """Whitespace-only text is InvalidInput."""
        orch = make_orchestrator([FakeClient(PRIMARY)])
        with pytest.raises(InvalidInputError) as exc:
            orch.synthesize(SynthesisRequest("user-1", "   ", "voice-1"))
        assert exc.value.details["code"] == "TEXT_REQUIRED"

    def test_unknown_profile(self, make_orchestrator):
        """A missing non-browser voice is ProfileNotFound."""
        orch = make_orchestrator([FakeClient(PRIMARY)])
        with pytest.raises(ProfileNotFoundError):
            orch.synthesize(SynthesisRequest("user-1", "Relax", "voice-404"))

    def test_rate_limit_blocks_before_vendor(self, make_orchestrator, config):
        """The request over the window's limit never reaches the vendor."""
        config.rate_limit.tts.max_requests = 2
        primary = FakeClient(PRIMARY)
        orch = make_orchestrator([primary], cfg=config)
        orch.store.save_voice_profile(cloud_profile())

        for _ in range(2):
            orch.synthesize(SynthesisRequest("user-1", "Relax", "voice-1"))
        with pytest.raises(RateLimitedError) as exc:
            orch.synthesize(SynthesisRequest("user-1", "Relax", "voice-1"))

        assert len(primary.synth_calls) == 2
        assert exc.value.retry_after_ms > 0
        assert exc.value.details["limit"] == 2

    def test_expired_deadline(self, make_orchestrator):
        """An already-expired deadline fails without counting against the breaker."""
        primary = FakeClient(PRIMARY)
        orch = make_orchestrator([primary])
        orch.store.save_voice_profile(cloud_profile())

        with pytest.raises(ProviderTransientError) as exc:
            orch.synthesize(SynthesisRequest("user-1", "Relax", "voice-1"), deadline=Deadline(0))

        assert exc.value.details["reason"] == "deadline"
        assert primary.synth_calls == []
        assert orch.circuits.get(PRIMARY.value).snapshot().consecutive_failures == 0


class _RefusingDeduct(DeductStrategy):
    name = "refusing"

    def deduct(self, store, user_id, amount, operation_type, voice_profile_id=None, character_count=None):
        return DeductResult(False, 0, "Insufficient credits. Need 5000 credits, have 0")


class TestClone:
    """Clone pipeline."""

    def test_clone_creates_ready_profile(self, make_orchestrator):
        """A valid sample produces a ready profile, one charge and one counted clone."""
        primary = FakeClient(PRIMARY, clone_id="model-xyz")
        orch = make_orchestrator([primary])

        result = orch.clone(CloneRequest("user-1", sine_wav(8.0), "Evening voice"))

        assert result.provider_voice_id == "model-xyz"
        assert result.provider == PRIMARY
        assert result.credits_charged == 5000
        assert result.normalized is True
        assert result.sample_url

        profile = orch.store.load_voice_profile("user-1", result.voice_id)
        assert profile.cloning_status == CloningStatus.READY
        assert profile.is_cloned is True
        assert profile.provider_voice_id == "model-xyz"

        usage = orch.get_credits("user-1")
        assert usage.clones_created == 1
        assert usage.balance == orch.config.credits.free_monthly_credits - 5000

    def test_clone_falls_back_to_zero_shot(self, make_orchestrator):
        """With only the fallback configured the sample URL becomes the voice reference."""
        fallback = FakeClient(FALLBACK)
        orch = make_orchestrator([fallback])

        result = orch.clone(CloneRequest("user-1", sine_wav(8.0), "Evening voice"))

        assert result.provider == FALLBACK
        assert result.provider_voice_id == result.sample_url

    def test_short_sample_rejected_without_charge(self, make_orchestrator):
        """A 2 second sample is refused before any vendor call."""
        primary = FakeClient(PRIMARY)
        orch = make_orchestrator([primary])

        with pytest.raises(ProviderValidationError):
            orch.clone(CloneRequest("user-1", sine_wav(2.0), "Short"))

        assert primary.clone_calls == []
        assert orch.get_credits("user-1").credits_used == 0

    def test_monthly_clone_limit(self, make_orchestrator, config):
        """An exhausted monthly allowance is MonthlyCloneLimitReached."""
        config.credits.free_monthly_clones = 0
        orch = make_orchestrator([FakeClient(PRIMARY)], cfg=config)

        with pytest.raises(CloneLimitError):
            orch.clone(CloneRequest("user-1", sine_wav(8.0), "Evening voice"))

    def test_refused_deduct_rolls_back(self, make_orchestrator, config):
        """When billing is refused the profile and the vendor voice are removed."""
        primary = FakeClient(PRIMARY, clone_id="model-rollback")
        store = InMemoryStore()
        ledger = CreditLedger(store, config.credits, strategy=_RefusingDeduct())
        orch = make_orchestrator([primary], store=store, ledger=ledger)

        with pytest.raises(InsufficientCreditsError):
            orch.clone(CloneRequest("user-1", sine_wav(8.0), "Evening voice", voice_id="voice-rb"))

        assert store.load_voice_profile("user-1", "voice-rb") is None
        assert primary.deleted == ["model-rollback"]

    def test_refused_reclone_keeps_existing_voice(self, make_orchestrator, config):
        """A refused re-clone restores the old profile and leaves its vendor model alone."""
        primary = FakeClient(PRIMARY, clone_id="model-new")
        store = InMemoryStore()
        store.save_voice_profile(cloud_profile(provider_voice_id="model-old"))
        ledger = CreditLedger(store, config.credits, strategy=_RefusingDeduct())
        orch = make_orchestrator([primary], store=store, ledger=ledger)

        with pytest.raises(InsufficientCreditsError):
            orch.clone(CloneRequest("user-1", sine_wav(8.0), "Evening voice", voice_id="voice-1"))

        restored = store.load_voice_profile("user-1", "voice-1")
        assert restored is not None
        assert restored.provider_voice_id == "model-old"
        assert restored.cloning_status == CloningStatus.READY
        assert primary.deleted == ["model-new"]


class TestDeleteVoice:
    """Voice deletion."""

    def test_delete_removes_profile_and_model(self, make_orchestrator):
        """The vendor model and the stored profile are both removed."""
        primary = FakeClient(PRIMARY)
        orch = make_orchestrator([primary])
        orch.store.save_voice_profile(cloud_profile())

        out = orch.delete_voice("user-1", "voice-1")

        assert out == {"success": True, "voiceId": "voice-1", "providerDeleted": True}
        assert primary.deleted == ["model-1"]
        assert orch.store.load_voice_profile("user-1", "voice-1") is None

    def test_delete_unknown(self, make_orchestrator):
        """Deleting a missing voice is ProfileNotFound."""
        orch = make_orchestrator([FakeClient(PRIMARY)])
        with pytest.raises(ProfileNotFoundError):
            orch.delete_voice("user-1", "voice-404")


class TestHealth:
    """Health snapshot."""

    def test_healthy_snapshot(self, make_orchestrator):
        """A fresh orchestrator reports ok with closed breakers."""
        orch = make_orchestrator([FakeClient(PRIMARY), FakeClient(FALLBACK)])
        health = orch.health()

        assert health["status"] == "ok"
        assert set(health["providers"]) == {"cloudPrimary", "cloudFallback"}
        assert health["circuits"]["cloudPrimary"]["state"] == "closed"
        assert health["ledger"]["strategy"] == "atomic"
