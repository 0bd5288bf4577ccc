"""
voice-pipeline: Voice Generation Request Pipeline for a Meditation App.

Turns "synthesize this text in this voice" or "clone this recorded sample"
into a credit-checked, rate-limited, circuit-breaker-protected call to one
of several interchangeable speech vendors, followed by audio normalization.

Supported Providers:
    - browser: Local/free voices rendered on the client (no server call)
    - cloudPrimary: Fish Audio (cloned voices, MP3 output)
    - cloudFallback: Chatterbox on Replicate (zero-shot cloning, WAV output)

Key Features:
    - Atomic credit accounting with monthly usage limits
    - Per-user, per-operation rate limiting
    - Per-provider circuit breakers with half-open trials
    - Read-through voice profile cache with TTL
    - Bounded retry with exponential backoff and deadline propagation
    - Pacing-tag text preparation per provider
    - Prometheus metrics support

Example Usage:
    >>> from voice_pipeline.core.config import Settings
    >>> from voice_pipeline.services import TTSOrchestrator, SynthesisRequest
    >>>
    >>> orchestrator = TTSOrchestrator(Settings(raw={}).get_pipeline_config())
    >>> result = orchestrator.synthesize(
    ...     SynthesisRequest(user_id="u1", text="Breathe in [pause] and out", voice_id="v1")
    ... )
    >>> result.to_dict()["success"]
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
