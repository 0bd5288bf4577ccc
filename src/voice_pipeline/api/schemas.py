"""
API Request/Response Schemas.

Pydantic models for the voice pipeline endpoints. Field names follow the
client's camelCase JSON; Python code uses the snake_case attributes.

Content rules (empty text, size limits, base64) are enforced by
services/validators.py so that every rejection comes back as the same
InvalidInput envelope, not as a schema error.

Models:
    SynthesizeBody: Input for POST /v1/voice/synthesize
    CloneBody: Input for POST /v1/voice/clone
    ErrorBody / ErrorEnvelope: Failure envelope
    SynthesizeResponse, CloneResponse, CreditsResponse: Success bodies

Example Request:
    {
        "text": "Close your eyes [pause] and breathe",
        "voiceId": "voice-3f2a9c1b7d4e",
        "options": {"speed": 0.9}
    }
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

# 10MB decoded is ~13.4MB of base64; anything far beyond is refused early
MAX_SAMPLE_B64_SIZE = 14 * 1024 * 1024


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SynthesizeBody(_CamelModel):
    """
    Synthesis request.

    Attributes:
        text: Script text; bracketed pacing tags are rewritten per vendor.
        voice_id: Stored voice id, or a "browser-" id for a free
            client-side voice.
        options: Free-form client options.
    """
    text: str = Field(default="", description="Text to speak (up to 5000 characters)")
    voice_id: str = Field(default="", alias="voiceId", description="Voice profile id")
    options: Dict[str, Any] = Field(default_factory=dict)


class CloneBody(_CamelModel):
    """
    Clone request.

    Attributes:
        sample_b64: Base64 (or data: URL) of the recorded sample, 6-90 s.
        display_name: Name of the new voice.
        description: Optional vendor-side description.
        voice_id: Existing voice to re-clone into.
        metadata: Free-form client metadata.
    """
    sample_b64: str = Field(
        default="",
        alias="sampleBase64",
        max_length=MAX_SAMPLE_B64_SIZE,
        description="Base64-encoded voice sample",
    )
    display_name: str = Field(default="", alias="displayName")
    description: str = ""
    voice_id: Optional[str] = Field(default=None, alias="voiceId")
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ErrorBody(BaseModel):
    kind: str
    message: str
    retryAfterMs: Optional[int] = None
    details: Optional[Dict[str, Any]] = None


class ErrorEnvelope(BaseModel):
    success: bool = False
    error: ErrorBody
    requestId: str


class SynthesizeResponse(BaseModel):
    success: bool
    audioBase64: Optional[str] = None
    format: Optional[str] = None
    provider: str
    usedFallback: bool = False
    creditsCharged: int = 0
    balance: Optional[int] = None
    requestId: str
    preparedText: Optional[str] = None


class CloneResponse(BaseModel):
    success: bool
    providerVoiceId: str
    voiceId: str
    provider: str
    creditsCharged: int
    balance: Optional[int] = None
    sampleUrl: Optional[str] = None
    normalized: bool = False
    requestId: str


class CreditsResponse(BaseModel):
    success: bool = True
    userId: str
    balance: int
    period: str
    creditsUsed: int
    creditsLimit: int
    clonesCreated: int
    clonesLimit: int
    clonesRemaining: int
