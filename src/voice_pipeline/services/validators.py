"""
Input Validation for the Voice Pipeline.

Validation runs first in every pipeline request so that a malformed
request is rejected before any credit read, rate-limit count or vendor
call.

Validation Rules:
    - User id: Required, max 128 characters
    - Text: Required, max 5000 characters
    - Voice id: Required, max 128 characters
    - Display name: Required, max 100 characters
    - Voice sample: Required, max 10MB decoded (base64 accepted)

Error Handling:
    All validation functions raise InvalidInputError with a
    machine-readable code in details["code"]:
        - {FIELD}_REQUIRED: Missing required field
        - {FIELD}_TOO_LONG / {FIELD}_TOO_LARGE: Exceeds limit
        - {FIELD}_INVALID_{REASON}: Format/content invalid

Usage:
    from voice_pipeline.services.validators import validate_text, validate_sample_b64

    text = validate_text(request.text)
    sample = validate_sample_b64(request.sample_b64)

See Also:
    - api/schemas.py: Pydantic request models
    - services/orchestrator.py: Validate stage
"""
from __future__ import annotations

import base64
import binascii
from typing import Optional, Union

from voice_pipeline.core.config import Defaults
from voice_pipeline.core.errors import InvalidInputError
from voice_pipeline.core.logging import get_logger, warn

_LOG = get_logger("voice-pipeline.validators")

MAX_ID_LENGTH = 128
MAX_DISPLAY_NAME_LENGTH = 100


def _invalid(message: str, code: str) -> InvalidInputError:
    return InvalidInputError(message, details={"code": code})


def validate_user_id(user_id: Optional[str]) -> str:
    if not user_id or not user_id.strip():
        raise _invalid("User id is required", "USER_ID_REQUIRED")
    user_id = user_id.strip()
    if len(user_id) > MAX_ID_LENGTH:
        raise _invalid(
            f"User id exceeds maximum length ({len(user_id)} > {MAX_ID_LENGTH})",
            "USER_ID_TOO_LONG",
        )
    return user_id


def validate_text(text: Optional[str], max_length: int = Defaults.AUDIO_MAX_TEXT_CHARS) -> str:
    """
    Validate text input.

    Args:
        text: Input text
        max_length: Maximum allowed length

    Returns:
        Stripped text

    Raises:
        InvalidInputError: If validation fails
    """
    if not text or not text.strip():
        raise _invalid("Text is required", "TEXT_REQUIRED")

    text = text.strip()

    if len(text) > max_length:
        raise _invalid(
            f"Text exceeds maximum length ({len(text)} > {max_length})",
            "TEXT_TOO_LONG",
        )

    return text


def validate_voice_id(voice_id: Optional[str]) -> str:
    if not voice_id or not voice_id.strip():
        raise _invalid("Voice id is required", "VOICE_ID_REQUIRED")
    voice_id = voice_id.strip()
    if len(voice_id) > MAX_ID_LENGTH:
        raise _invalid(
            f"Voice id exceeds maximum length ({len(voice_id)} > {MAX_ID_LENGTH})",
            "VOICE_ID_TOO_LONG",
        )
    return voice_id


def validate_display_name(name: Optional[str], max_length: int = MAX_DISPLAY_NAME_LENGTH) -> str:
    if not name or not name.strip():
        raise _invalid("Voice name is required", "NAME_REQUIRED")
    name = name.strip()
    if len(name) > max_length:
        raise _invalid(
            f"Voice name exceeds maximum length ({len(name)} > {max_length})",
            "NAME_TOO_LONG",
        )
    return name


def validate_sample(
    sample: Optional[bytes],
    max_bytes: int = Defaults.AUDIO_MAX_SAMPLE_BYTES,
) -> bytes:
    """
    Validate raw voice sample bytes.

    Raises:
        InvalidInputError: Empty or larger than max_bytes.
    """
    if not sample:
        raise _invalid("Voice sample is required", "SAMPLE_REQUIRED")
    if len(sample) > max_bytes:
        raise _invalid(
            f"Voice sample exceeds maximum size ({len(sample)} > {max_bytes})",
            "SAMPLE_TOO_LARGE",
        )
    return sample


def validate_sample_b64(
    b64: Union[str, bytes, None],
    max_bytes: int = Defaults.AUDIO_MAX_SAMPLE_BYTES,
) -> bytes:
    """
    Validate and decode a base64 voice sample.

    The encoded size is checked before decoding (base64 adds ~33%), so an
    oversized upload is refused without allocating the decoded buffer.

    Raises:
        InvalidInputError: Missing, oversized or not base64.
    """
    if not b64:
        raise _invalid("Voice sample is required", "SAMPLE_REQUIRED")

    max_b64 = ((max_bytes + 2) // 3) * 4
    if len(b64) > max_b64 + 64:
        raise _invalid(
            f"Voice sample exceeds maximum size ({len(b64)} base64 chars)",
            "SAMPLE_TOO_LARGE",
        )

    if isinstance(b64, str) and b64.startswith("data:") and "," in b64:
        b64 = b64.split(",", 1)[1]

    try:
        decoded = base64.b64decode(b64, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        warn(_LOG, "sample_b64_decode_failed", error=str(e))
        raise _invalid("Invalid base64 encoding in voice sample", "SAMPLE_INVALID_BASE64")

    return validate_sample(decoded, max_bytes)
