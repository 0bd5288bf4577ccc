"""
Provider Routing.

Pure functions deciding which speech backend renders a voice. Nothing
here touches the network, the store or the clock, so the same profile
always routes the same way.

Selection priority (select_provider):
    1. A "browser-" voice id: the client's own speech engine
    2. An explicitly stored provider
    3. Any cloud artifact (provider_voice_id, sample_url, is_cloned): cloudPrimary
    4. Otherwise: browser

Cloud plan (plan_route):
    The primary vendor goes first when its model id is usable (present and
    not flagged needsRecreate). The fallback vendor follows when a sample
    URL exists, since it clones zero-shot from the sample on every call.
    A profile with neither has nothing to synthesize with.
"""
from __future__ import annotations

from typing import Iterable, Tuple

from voice_pipeline.core.errors import ProviderValidationError
from voice_pipeline.core.models import (
    BROWSER_VOICE_PREFIX,
    CloningStatus,
    ProviderKind,
    VoiceProfile,
)

CLOUD_ORDER: Tuple[ProviderKind, ...] = (ProviderKind.CLOUD_PRIMARY, ProviderKind.CLOUD_FALLBACK)


def select_provider(profile: VoiceProfile) -> ProviderKind:
    """Pick the backend family for a loaded profile."""
    if profile.is_browser_voice:
        return ProviderKind.BROWSER
    if profile.provider is not None:
        return profile.provider
    if profile.provider_voice_id or profile.sample_url or profile.is_cloned:
        return ProviderKind.CLOUD_PRIMARY
    return ProviderKind.BROWSER


def _primary_usable(profile: VoiceProfile) -> bool:
    if profile.provider == ProviderKind.CLOUD_FALLBACK:
        # provider_voice_id holds the fallback's sample reference
        return False
    return bool(profile.provider_voice_id) and profile.cloning_status != CloningStatus.NEEDS_RECREATE


def _fallback_reference(profile: VoiceProfile) -> str:
    if profile.sample_url:
        return profile.sample_url
    if profile.provider == ProviderKind.CLOUD_FALLBACK and profile.provider_voice_id:
        return profile.provider_voice_id
    return ""


def plan_route(profile: VoiceProfile) -> Tuple[ProviderKind, ...]:
    """
    Ordered cloud vendors to try for a cloud-routed profile.

    Raises:
        ProviderValidationError: The profile has neither a usable primary
            model nor a sample for the fallback.
    """
    plan = []
    if _primary_usable(profile):
        plan.append(ProviderKind.CLOUD_PRIMARY)
    if _fallback_reference(profile):
        plan.append(ProviderKind.CLOUD_FALLBACK)

    if not plan:
        raise ProviderValidationError(
            "Voice profile has no audio sample. Please re-clone your voice.",
            details={"voice_id": profile.id, "cloning_status": profile.cloning_status.value},
        )
    return tuple(plan)


def fallback_reference(profile: VoiceProfile) -> str:
    """Sample reference the fallback vendor clones from ("" if none)."""
    return _fallback_reference(profile)


def clone_route(available: Iterable[ProviderKind]) -> Tuple[ProviderKind, ...]:
    """
    Order vendors for cloning: primary first, then fallback.

    Only vendors in `available` (those with credentials configured) are kept.

    Raises:
        ProviderValidationError: No cloning vendor is configured.
    """
    configured = set(available)
    plan = tuple(p for p in CLOUD_ORDER if p in configured)
    if not plan:
        raise ProviderValidationError(
            "No voice cloning service configured. Please add FISH_AUDIO_API_KEY or REPLICATE_API_TOKEN."
        )
    return plan


def browser_profile(user_id: str, voice_id: str) -> VoiceProfile:
    """Synthetic profile for a browser voice that has no stored record."""
    return VoiceProfile(
        id=voice_id,
        user_id=user_id,
        name=voice_id[len(BROWSER_VOICE_PREFIX):] or voice_id,
        provider=ProviderKind.BROWSER,
    )
