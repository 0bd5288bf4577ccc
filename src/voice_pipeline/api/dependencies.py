"""
FastAPI Dependency Injection Providers.

Architecture:
    1. get_settings() - Loads and caches application configuration
    2. get_pipeline() - Creates/returns the singleton TTSOrchestrator

    Both are singletons: breakers, rate windows and the profile cache are
    process-wide state and must be shared by every request.

Usage in Route Handlers:
    from fastapi import Depends
    from voice_pipeline.api.dependencies import get_pipeline

    @router.post("/v1/voice/synthesize")
    def synthesize(body: SynthesizeBody, pipeline: TTSOrchestrator = Depends(get_pipeline)):
        ...

Tests replace get_pipeline through app.dependency_overrides.

See Also:
    - core/config.py: Settings and load_settings()
    - services/orchestrator.py: TTSOrchestrator and get_orchestrator()
"""
from __future__ import annotations

from functools import lru_cache

from voice_pipeline.core.config import Settings, load_settings
from voice_pipeline.core.logging import get_logger, warn
from voice_pipeline.services.orchestrator import TTSOrchestrator, get_orchestrator


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Load and cache application settings.

    The path comes from $VOICE_PIPELINE_SETTINGS, then config/settings.yaml.
    A missing file falls back to built-in defaults.
    """
    try:
        return load_settings()
    except FileNotFoundError as e:
        warn(get_logger("voice-pipeline.api"), "settings_missing", error=str(e), fallback="defaults")
        return Settings(raw={})


def get_pipeline() -> TTSOrchestrator:
    """
    Get the singleton TTSOrchestrator.

    Created lazily on first call with the validated config from settings.
    """
    return get_orchestrator(get_settings().get_pipeline_config())
