"""
Cloud Speech Vendor Clients.

    - base.py: BaseProviderClient, HTTP error classification
    - fish_audio.py: FishAudioClient (cloudPrimary)
    - chatterbox.py: ChatterboxClient (cloudFallback)

Usage:
    from voice_pipeline.providers import create_provider_clients

    clients = create_provider_clients(config.providers)
    audio = clients[ProviderKind.CLOUD_PRIMARY].synthesize(text, model_id, deadline)
"""
from __future__ import annotations

from typing import Dict, Optional

import httpx

from voice_pipeline.core.config import ProvidersConfig
from voice_pipeline.core.logging import get_logger, warn
from voice_pipeline.core.models import ProviderKind
from voice_pipeline.providers.base import (
    BaseProviderClient,
    ProviderAudio,
    ProviderVoice,
    classify_response,
    parse_retry_after,
)
from voice_pipeline.providers.chatterbox import ChatterboxClient
from voice_pipeline.providers.fish_audio import FishAudioClient

__all__ = [
    "BaseProviderClient",
    "ChatterboxClient",
    "FishAudioClient",
    "ProviderAudio",
    "ProviderVoice",
    "classify_response",
    "create_provider_clients",
    "parse_retry_after",
]


def create_provider_clients(
    config: Optional[ProvidersConfig] = None,
    http_client: Optional[httpx.Client] = None,
) -> Dict[ProviderKind, BaseProviderClient]:
    """
    Build one client per cloud vendor that has credentials.

    Vendors without an API key are left out, so routing never plans a
    call that could only fail with an auth error.
    """
    config = config or ProvidersConfig()
    clients: Dict[ProviderKind, BaseProviderClient] = {}

    primary = FishAudioClient(config.fish_audio, http_client=http_client)
    if primary.is_configured:
        clients[primary.kind] = primary

    fallback = ChatterboxClient(config.chatterbox, http_client=http_client)
    if fallback.is_configured:
        clients[fallback.kind] = fallback

    if not clients:
        warn(get_logger("voice-pipeline.providers"), "no_providers_configured",
             hint="set FISH_AUDIO_API_KEY or REPLICATE_API_TOKEN")
    return clients
