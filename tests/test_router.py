"""Tests for provider routing."""
import pytest

from voice_pipeline.core.errors import ProviderValidationError
from voice_pipeline.core.models import CloningStatus, ProviderKind, VoiceProfile
from voice_pipeline.voices.router import (
    browser_profile,
    clone_route,
    fallback_reference,
    plan_route,
    select_provider,
)

P = ProviderKind.CLOUD_PRIMARY
F = ProviderKind.CLOUD_FALLBACK


def _profile(**kw):
    base = dict(id="voice-1", user_id="u1", name="Calm")
    base.update(kw)
    return VoiceProfile(**base)


class TestSelectProvider:
    """Backend family selection."""

    def test_browser_prefix_wins(self):
        """browser- ids route to the client even with cloud fields set."""
        assert select_provider(_profile(id="browser-samantha", provider_voice_id="m")) == ProviderKind.BROWSER

    def test_explicit_provider(self):
        """A stored provider is honored."""
        assert select_provider(_profile(provider=F, provider_voice_id="https://s/a.wav")) == F

    def test_cloud_artifacts(self):
        """Any cloud artifact means cloud routing."""
        assert select_provider(_profile(provider_voice_id="m")) == P
        assert select_provider(_profile(sample_url="https://s/a.wav")) == P
        assert select_provider(_profile(is_cloned=True)) == P

    def test_plain_profile(self):
        """Nothing cloud-side: the browser renders it."""
        assert select_provider(_profile()) == ProviderKind.BROWSER


class TestPlanRoute:
    """Cloud vendor ordering."""

    def test_primary_then_fallback(self):
        """Model id and sample give both vendors, primary first."""
        assert plan_route(_profile(provider_voice_id="m", sample_url="https://s/a.wav")) == (P, F)

    def test_primary_only(self):
        assert plan_route(_profile(provider_voice_id="m")) == (P,)

    def test_needs_recreate_skips_primary(self):
        """A flagged model is not used."""
        profile = _profile(
            provider_voice_id="m",
            sample_url="https://s/a.wav",
            cloning_status=CloningStatus.NEEDS_RECREATE,
        )
        assert plan_route(profile) == (F,)

    def test_fallback_profile(self):
        """A fallback-cloned profile stores its sample reference as the vendor id."""
        profile = _profile(provider=F, provider_voice_id="https://s/a.wav")
        assert plan_route(profile) == (F,)
        assert fallback_reference(profile) == "https://s/a.wav"

    def test_nothing_usable(self):
        """No model and no sample asks the user to re-clone."""
        with pytest.raises(ProviderValidationError, match="re-clone"):
            plan_route(_profile(is_cloned=True, cloning_status=CloningStatus.NEEDS_RECREATE))


class TestCloneRoute:
    """Clone vendor ordering."""

    def test_order(self):
        assert clone_route([F, P]) == (P, F)
        assert clone_route([F]) == (F,)

    def test_none_configured(self):
        """No credentials configured is a validation error."""
        with pytest.raises(ProviderValidationError, match="FISH_AUDIO_API_KEY"):
            clone_route([])


def test_browser_profile():
    """Synthetic browser profiles take their name from the id."""
    profile = browser_profile("u1", "browser-samantha")
    assert profile.name == "samantha"
    assert profile.provider == ProviderKind.BROWSER
    assert profile.is_browser_voice
