"""
Voice Pipeline API Routes.

Endpoints:
    POST   /v1/voice/synthesize   - Speak text in a stored voice
    POST   /v1/voice/clone        - Create a voice from a recorded sample
    DELETE /v1/voice/{voice_id}   - Delete a voice and its vendor model
    GET    /v1/credits            - Balance and current-period usage
    GET    /health                - Liveness plus breaker, cache and ledger state
    GET    /metrics               - Prometheus metrics

Request Headers:
    X-User-Id              Caller identity (required on /v1 routes)
    X-Request-Timeout-Ms   Optional deadline for the whole request

Request Flow:
    1. Generate unique request ID for tracing
    2. Build the Deadline from X-Request-Timeout-Ms
    3. Call the orchestrator
    4. Return the JSON envelope with X-Request-Id

Error Handling:
    Every failure is returned as:
    {
        "success": false,
        "error": {"kind": "<ErrorKind>", "message": "...", "retryAfterMs": 41000},
        "requestId": "<id>"
    }

    HTTP status codes are mapped from the error kind (STATUS_BY_KIND).
    RateLimited answers carry X-RateLimit-* headers; every answer with a
    retryAfterMs carries Retry-After.

Example Usage:
    curl -X POST http://localhost:8000/v1/voice/synthesize \\
        -H "X-User-Id: user-1" -H "Content-Type: application/json" \\
        -d '{"text": "Breathe in [pause] and out", "voiceId": "voice-1"}'
"""
from __future__ import annotations

import math
import uuid
from typing import Dict, Optional

from fastapi import APIRouter, Depends, Header, Response
from fastapi.responses import JSONResponse

from voice_pipeline import __version__
from voice_pipeline.api.dependencies import get_pipeline, get_settings
from voice_pipeline.api.schemas import (
    CloneBody,
    CloneResponse,
    CreditsResponse,
    ErrorEnvelope,
    SynthesizeBody,
    SynthesizeResponse,
)
from voice_pipeline.core.errors import ErrorKind, PipelineError
from voice_pipeline.core.logging import fail, get_logger, set_request_id
from voice_pipeline.core.metrics import metrics
from voice_pipeline.resilience.rate_limit import RateLimitResult
from voice_pipeline.services.orchestrator import CloneRequest, SynthesisRequest, TTSOrchestrator
from voice_pipeline.services.validators import validate_sample_b64
from voice_pipeline.utils.timing import Deadline

router = APIRouter()

_LOG = get_logger("voice-pipeline.api")

STATUS_BY_KIND: Dict[str, int] = {
    ErrorKind.INSUFFICIENT_CREDITS: 402,
    ErrorKind.MONTHLY_CLONE_LIMIT_REACHED: 403,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.CIRCUIT_OPEN: 503,
    ErrorKind.PROVIDER_AUTH_ERROR: 502,
    ErrorKind.PROVIDER_VALIDATION_ERROR: 422,
    ErrorKind.PROVIDER_TRANSIENT_ERROR: 504,
    ErrorKind.DECODE_ERROR: 502,
    ErrorKind.PROFILE_NOT_FOUND: 404,
    ErrorKind.INVALID_INPUT: 400,
}

_ERRORS = {status: {"model": ErrorEnvelope} for status in sorted(set(STATUS_BY_KIND.values()) | {500})}


def _new_request_id() -> str:
    rid = str(uuid.uuid4())[:12]
    set_request_id(rid)
    return rid


def _deadline(timeout_ms: Optional[int]) -> Optional[Deadline]:
    if timeout_ms is None or timeout_ms <= 0:
        return None
    return Deadline.after_ms(timeout_ms)


def _error_headers(error: PipelineError, rid: str) -> Dict[str, str]:
    headers = {"X-Request-Id": rid}
    if error.kind == ErrorKind.RATE_LIMITED and "resetAt" in error.details:
        headers.update(RateLimitResult(
            allowed=False,
            remaining=0,
            reset_at=int(error.details["resetAt"]),
            retry_after_ms=int(error.retry_after_ms or 0),
            limit=int(error.details.get("limit", 0)),
        ).headers())
    elif error.retry_after_ms:
        headers["Retry-After"] = str(math.ceil(error.retry_after_ms / 1000))
    return headers


def error_response(error: PipelineError, rid: str) -> JSONResponse:
    """Build the failure envelope for a PipelineError."""
    return JSONResponse(
        status_code=STATUS_BY_KIND.get(error.kind, 500),
        content={"success": False, "error": error.to_dict(), "requestId": rid},
        headers=_error_headers(error, rid),
    )


def internal_error_response(rid: str) -> JSONResponse:
    # Details stay in the logs
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": {"kind": ErrorKind.INTERNAL_ERROR, "message": "Internal server error"},
            "requestId": rid,
        },
        headers={"X-Request-Id": rid},
    )


def _missing_user(rid: str) -> JSONResponse:
    return error_response(
        PipelineError("X-User-Id header is required", ErrorKind.INVALID_INPUT, {"code": "USER_ID_REQUIRED"}),
        rid,
    )


@router.post("/v1/voice/synthesize", response_model=SynthesizeResponse, responses=_ERRORS)
def synthesize(
    body: SynthesizeBody,
    x_user_id: Optional[str] = Header(default=None),
    x_request_timeout_ms: Optional[int] = Header(default=None),
    pipeline: TTSOrchestrator = Depends(get_pipeline),
):
    """
    Speak text in a stored voice.

    Returns:
        JSON with audioBase64, format, provider, usedFallback,
        creditsCharged and balance. Browser voices return preparedText
        instead of audio.
    """
    rid = _new_request_id()
    if not x_user_id:
        return _missing_user(rid)

    try:
        result = pipeline.synthesize(
            SynthesisRequest(
                user_id=x_user_id,
                text=body.text,
                voice_id=body.voice_id,
                options=body.options,
            ),
            deadline=_deadline(x_request_timeout_ms),
            request_id=rid,
        )
        return JSONResponse(content=result.to_dict(), headers={"X-Request-Id": rid})
    except PipelineError as e:
        return error_response(e, rid)
    except Exception as e:
        fail(_LOG, "unhandled", route="synthesize", error=str(e), error_type=type(e).__name__)
        return internal_error_response(rid)


@router.post("/v1/voice/clone", response_model=CloneResponse, responses=_ERRORS)
def clone(
    body: CloneBody,
    x_user_id: Optional[str] = Header(default=None),
    x_request_timeout_ms: Optional[int] = Header(default=None),
    pipeline: TTSOrchestrator = Depends(get_pipeline),
):
    """Create a voice from a base64 sample and save it as ready."""
    rid = _new_request_id()
    if not x_user_id:
        return _missing_user(rid)

    try:
        sample = validate_sample_b64(body.sample_b64, pipeline.config.audio.max_sample_bytes)
        result = pipeline.clone(
            CloneRequest(
                user_id=x_user_id,
                sample=sample,
                display_name=body.display_name,
                description=body.description,
                voice_id=body.voice_id,
                metadata=body.metadata,
            ),
            deadline=_deadline(x_request_timeout_ms),
            request_id=rid,
        )
        return JSONResponse(content=result.to_dict(), headers={"X-Request-Id": rid})
    except PipelineError as e:
        return error_response(e, rid)
    except Exception as e:
        fail(_LOG, "unhandled", route="clone", error=str(e), error_type=type(e).__name__)
        return internal_error_response(rid)


@router.delete("/v1/voice/{voice_id}", responses=_ERRORS)
def delete_voice(
    voice_id: str,
    x_user_id: Optional[str] = Header(default=None),
    x_request_timeout_ms: Optional[int] = Header(default=None),
    pipeline: TTSOrchestrator = Depends(get_pipeline),
):
    rid = _new_request_id()
    if not x_user_id:
        return _missing_user(rid)

    try:
        result = pipeline.delete_voice(x_user_id, voice_id, deadline=_deadline(x_request_timeout_ms))
        return JSONResponse(content={**result, "requestId": rid}, headers={"X-Request-Id": rid})
    except PipelineError as e:
        return error_response(e, rid)
    except Exception as e:
        fail(_LOG, "unhandled", route="delete_voice", error=str(e), error_type=type(e).__name__)
        return internal_error_response(rid)


@router.get("/v1/credits", response_model=CreditsResponse, responses=_ERRORS)
def credits(
    x_user_id: Optional[str] = Header(default=None),
    pipeline: TTSOrchestrator = Depends(get_pipeline),
):
    """Balance and current-period usage for the caller."""
    rid = _new_request_id()
    if not x_user_id:
        return _missing_user(rid)

    try:
        summary = pipeline.get_credits(x_user_id)
        return JSONResponse(content={"success": True, **summary.to_dict()}, headers={"X-Request-Id": rid})
    except PipelineError as e:
        return error_response(e, rid)
    except Exception as e:
        fail(_LOG, "unhandled", route="credits", error=str(e), error_type=type(e).__name__)
        return internal_error_response(rid)


@router.get("/health")
def health(pipeline: TTSOrchestrator = Depends(get_pipeline)):
    """
    Health check for load balancers and liveness checks.

    status is "degraded" while any breaker is not closed or the ledger
    runs the legacy deduct.
    """
    info = pipeline.health()
    info["service"] = get_settings().service_name
    info["version"] = __version__
    return info


@router.get("/metrics")
def prometheus_metrics():
    """Prometheus metrics in text exposition format."""
    content, content_type = metrics.get_metrics_response()
    return Response(content=content, media_type=content_type)
