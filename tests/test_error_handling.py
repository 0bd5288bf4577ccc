"""
Tests for the error taxonomy and the failure envelope.

Tests cover:
- PipelineError.to_dict() envelope fields
- Retryability per kind
- HTTP status per error kind
- Retry-After and X-Request-Id headers on failures
- The INTERNAL_ERROR envelope for unexpected exceptions
"""
import json

import pytest

from voice_pipeline.api.routes import STATUS_BY_KIND, error_response, internal_error_response
from voice_pipeline.core.errors import (
    CircuitOpenError,
    CloneLimitError,
    DecodeError,
    ErrorKind,
    InsufficientCreditsError,
    InvalidInputError,
    PipelineError,
    ProfileNotFoundError,
    ProviderAuthError,
    ProviderTransientError,
    ProviderValidationError,
    RateLimitedError,
)


class TestEnvelope:
    """PipelineError.to_dict()."""

    def test_minimal(self):
        err = ProfileNotFoundError("Voice profile not found")
        assert err.to_dict() == {"kind": "ProfileNotFound", "message": "Voice profile not found"}

    def test_retry_after_and_details(self):
        err = CircuitOpenError("Fish Audio is unavailable", provider="cloudPrimary", retry_after_ms=12000)
        payload = err.to_dict()
        assert payload["kind"] == "CircuitOpen"
        assert payload["retryAfterMs"] == 12000
        assert payload["details"] == {"provider": "cloudPrimary"}
        assert err.provider == "cloudPrimary"

    def test_str_is_message(self):
        assert str(InvalidInputError("Text is required")) == "Text is required"


class TestRetryability:
    def test_only_transient_is_retryable(self):
        assert ProviderTransientError("503").is_retryable
        for err in (
            ProviderAuthError("401"),
            ProviderValidationError("422"),
            DecodeError("garbage"),
            InsufficientCreditsError("no"),
        ):
            assert not err.is_retryable

    def test_transient_counts_toward_breaker_by_default(self):
        assert ProviderTransientError("503").counts_toward_breaker is True
        assert ProviderTransientError("deadline", counts_toward_breaker=False).counts_toward_breaker is False


class TestStatusMapping:
    """error kind -> HTTP status."""

    @pytest.mark.parametrize(
        "error, status",
        [
            (InsufficientCreditsError("no credits"), 402),
            (CloneLimitError("limit"), 403),
            (RateLimitedError("slow down", retry_after_ms=1000), 429),
            (CircuitOpenError("open", provider="cloudPrimary", retry_after_ms=5000), 503),
            (ProviderAuthError("bad key"), 502),
            (ProviderValidationError("bad request"), 422),
            (ProviderTransientError("timeout"), 504),
            (DecodeError("garbage"), 502),
            (ProfileNotFoundError("missing"), 404),
            (InvalidInputError("bad"), 400),
            (PipelineError("unexpected"), 500),
        ],
    )
    def test_status(self, error, status):
        resp = error_response(error, "rid-1")
        assert resp.status_code == status
        body = json.loads(resp.body)
        assert body["success"] is False
        assert body["error"]["kind"] == error.kind
        assert body["requestId"] == "rid-1"
        assert resp.headers["X-Request-Id"] == "rid-1"

    def test_every_kind_mapped(self):
        kinds = {v for k, v in vars(ErrorKind).items() if k.isupper()}
        assert kinds - set(STATUS_BY_KIND) == {ErrorKind.INTERNAL_ERROR}


class TestHeaders:
    def test_circuit_retry_after_rounds_up(self):
        resp = error_response(CircuitOpenError("open", provider="cloudPrimary", retry_after_ms=1500), "r")
        assert resp.headers["Retry-After"] == "2"

    def test_rate_limit_headers(self):
        """Rate limit details become X-RateLimit-* headers."""
        err = RateLimitedError(
            "Too many requests",
            retry_after_ms=30000,
            details={"operation": "tts", "limit": 20, "resetAt": 1_700_000_030_000},
        )
        resp = error_response(err, "r")
        assert resp.headers["X-RateLimit-Limit"] == "20"
        assert resp.headers["X-RateLimit-Remaining"] == "0"
        assert resp.headers["Retry-After"] == "30"

    def test_no_retry_after_without_hint(self):
        resp = error_response(ProviderAuthError("bad key"), "r")
        assert "Retry-After" not in resp.headers


def test_internal_error_hides_details():
    """Unexpected exceptions never leak their message."""
    resp = internal_error_response("rid-9")
    body = json.loads(resp.body)
    assert resp.status_code == 500
    assert body["error"] == {"kind": "INTERNAL_ERROR", "message": "Internal server error"}
    assert body["requestId"] == "rid-9"
