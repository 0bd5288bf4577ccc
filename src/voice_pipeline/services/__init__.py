"""
Services Module.

    - orchestrator.py: TTSOrchestrator, the synthesis and clone pipelines
    - validators.py: Input validation run before any side effect
"""
from voice_pipeline.services.orchestrator import (
    CloneRequest,
    CloneResult,
    PipelineResult,
    SynthesisRequest,
    TTSOrchestrator,
    get_orchestrator,
    reset_orchestrator,
)

__all__ = [
    "CloneRequest",
    "CloneResult",
    "PipelineResult",
    "SynthesisRequest",
    "TTSOrchestrator",
    "get_orchestrator",
    "reset_orchestrator",
]
