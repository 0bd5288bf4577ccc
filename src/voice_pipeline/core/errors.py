"""
Pipeline Error Taxonomy.

Every failure the pipeline reports to a caller is a PipelineError with a
kind from ErrorKind. The kind decides three things:
    - the HTTP status the route answers with
    - whether the orchestrator retries (only ProviderTransientError)
    - whether a failure counts against a provider's circuit breaker
      (only transient provider failures do)

Error Envelope:
    {"kind": "RateLimited", "message": "...", "retryAfterMs": 41000}

Usage:
    from voice_pipeline.core.errors import ErrorKind, ProviderTransientError

    raise ProviderTransientError("Fish Audio returned 503", details={"status": 503})

See Also:
    - providers/base.py: HTTP status -> error kind classification
    - api/routes.py: error kind -> HTTP status mapping
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class ErrorKind:
    """
    Error kinds reported in the response envelope.

    INTERNAL_ERROR is never raised as a PipelineError; routes use it
    for unexpected exceptions.
    """
    INSUFFICIENT_CREDITS = "InsufficientCredits"
    MONTHLY_CLONE_LIMIT_REACHED = "MonthlyCloneLimitReached"
    RATE_LIMITED = "RateLimited"
    CIRCUIT_OPEN = "CircuitOpen"
    PROVIDER_AUTH_ERROR = "ProviderAuthError"
    PROVIDER_VALIDATION_ERROR = "ProviderValidationError"
    PROVIDER_TRANSIENT_ERROR = "ProviderTransientError"
    DECODE_ERROR = "DecodeError"
    PROFILE_NOT_FOUND = "ProfileNotFound"
    INVALID_INPUT = "InvalidInput"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class PipelineError(Exception):
    """
    Base exception for pipeline failures.

    Attributes:
        message: Human-readable error message, safe to show to end users.
        kind: One of the ErrorKind constants.
        details: Optional dictionary with additional context.
        retry_after_ms: Hint for RateLimited, CircuitOpen and 429-derived errors.
    """

    def __init__(
        self,
        message: str,
        kind: str = ErrorKind.INTERNAL_ERROR,
        details: Optional[Dict[str, Any]] = None,
        retry_after_ms: Optional[int] = None,
    ):
        self.message = message
        self.kind = kind
        self.details = details or {}
        self.retry_after_ms = retry_after_ms
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        """True only for transient provider failures."""
        return self.kind == ErrorKind.PROVIDER_TRANSIENT_ERROR

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the envelope's error object."""
        result: Dict[str, Any] = {
            "kind": self.kind,
            "message": self.message,
        }
        if self.retry_after_ms is not None:
            result["retryAfterMs"] = int(self.retry_after_ms)
        if self.details:
            result["details"] = self.details
        return result


class InvalidInputError(PipelineError):
    """Raised when a request fails validation before any side effect."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorKind.INVALID_INPUT, details)


class InsufficientCreditsError(PipelineError):
    """Raised when the balance cannot cover the operation."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorKind.INSUFFICIENT_CREDITS, details)


class CloneLimitError(PipelineError):
    """Raised when the monthly clone allowance is used up."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorKind.MONTHLY_CLONE_LIMIT_REACHED, details)


class RateLimitedError(PipelineError):
    def __init__(self, message: str, retry_after_ms: int, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorKind.RATE_LIMITED, details, retry_after_ms)


class CircuitOpenError(PipelineError):
    """
    Raised when a provider's breaker refuses calls.

    Attributes:
        provider: Provider key whose breaker is open.
        retry_after_ms: Milliseconds until the breaker admits a trial call.
    """
    def __init__(self, message: str, provider: str, retry_after_ms: int):
        super().__init__(message, ErrorKind.CIRCUIT_OPEN, {"provider": provider}, retry_after_ms)
        self.provider = provider


class ProviderAuthError(PipelineError):
    """Vendor rejected our credentials (401/402/403). Not retried."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorKind.PROVIDER_AUTH_ERROR, details)


class ProviderValidationError(PipelineError):
    """Vendor rejected the request itself (404/422/other 4xx/501). Not retried."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorKind.PROVIDER_VALIDATION_ERROR, details)


class ProviderTransientError(PipelineError):
    """
    Timeout, transport error, 429 or 5xx. Retried with backoff.

    counts_toward_breaker is False for failures caused by the caller's own
    deadline, which say nothing about the vendor's health.
    """
    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        retry_after_ms: Optional[int] = None,
        counts_toward_breaker: bool = True,
    ):
        super().__init__(message, ErrorKind.PROVIDER_TRANSIENT_ERROR, details, retry_after_ms)
        self.counts_toward_breaker = counts_toward_breaker


class DecodeError(PipelineError):
    """Provider audio could not be decoded in any supported container."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorKind.DECODE_ERROR, details)


class ProfileNotFoundError(PipelineError):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorKind.PROFILE_NOT_FOUND, details)
