"""
Provider Client Base Class.

This module provides:
    - BaseProviderClient: Abstract base for cloud speech vendors
    - ProviderAudio / ProviderVoice: Call results
    - classify_response(): HTTP status -> pipeline error
    - parse_retry_after(): Retry-After header -> milliseconds

Every vendor call goes through BaseProviderClient._request(), which:
    1. Caps the configured timeout by the caller's Deadline
    2. Sends the request on a shared httpx.Client
    3. Turns transport failures and non-2xx answers into pipeline errors

Classification:
    httpx timeout / transport error  ->  ProviderTransientError
    429                              ->  ProviderTransientError (Retry-After honored)
    5xx except 501                   ->  ProviderTransientError
    401 / 402 / 403                  ->  ProviderAuthError
    404 / 422 / other 4xx / 501      ->  ProviderValidationError

A timeout that fired because the deadline cut the configured timeout
short is reported with counts_toward_breaker=False: the vendor was not
given its full time, so its breaker learns nothing from it.

Implementing a New Vendor:
    1. Create providers/<name>.py
    2. Inherit from BaseProviderClient
    3. Implement synthesize(), clone() and delete_voice()
    4. Register in create_provider_clients()
"""
from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Optional

import httpx

from voice_pipeline.core.errors import (
    PipelineError,
    ProviderAuthError,
    ProviderTransientError,
    ProviderValidationError,
)
from voice_pipeline.core.logging import get_logger, debug
from voice_pipeline.core.models import ProviderKind
from voice_pipeline.resilience.retry import deadline_exceeded
from voice_pipeline.utils.timing import Deadline, cap_timeout

# Longest vendor error body kept in error details
_BODY_PREVIEW_CHARS = 300


@dataclass
class ProviderAudio:
    """
    Audio returned by a vendor.

    Attributes:
        data: Raw audio bytes as received.
        format: Container the vendor normally answers with ("mp3" or "wav").
        timings_s: Per-stage timing breakdown in seconds.
    """
    data: bytes
    format: str
    timings_s: Dict[str, float] = field(default_factory=dict)


@dataclass
class ProviderVoice:
    """A vendor-side voice created by clone()."""
    provider_voice_id: str
    provider: ProviderKind


def parse_retry_after(value: Optional[str], now: Optional[float] = None) -> Optional[int]:
    """
    Parse a Retry-After header (delta seconds or HTTP date) into milliseconds.

    Returns None for a missing or unparseable header.
    """
    if not value:
        return None
    value = value.strip()
    try:
        return max(0, int(math.ceil(float(value) * 1000)))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    now = time.time() if now is None else now
    return max(0, int(math.ceil((when.timestamp() - now) * 1000)))


def _body_preview(response: httpx.Response) -> str:
    try:
        return response.text[:_BODY_PREVIEW_CHARS]
    except (UnicodeDecodeError, httpx.ResponseNotRead):
        return ""


def classify_response(response: httpx.Response, vendor: str) -> Optional[PipelineError]:
    """
    Map a non-2xx response to a pipeline error.

    Returns None for a successful response.
    """
    status = response.status_code
    if status < 400:
        return None

    details: Dict[str, Any] = {"provider": vendor, "status": status, "body": _body_preview(response)}

    if status == 429:
        retry_after_ms = parse_retry_after(response.headers.get("Retry-After"))
        return ProviderTransientError(
            f"{vendor} rate limit exceeded",
            details=details,
            retry_after_ms=retry_after_ms,
        )
    if status >= 500 and status != 501:
        return ProviderTransientError(f"{vendor} API error: {status}", details=details)
    if status in (401, 403):
        return ProviderAuthError(f"{vendor} rejected the API key", details=details)
    if status == 402:
        return ProviderAuthError(f"{vendor} quota exceeded. Please check the account plan.", details=details)
    return ProviderValidationError(f"{vendor} rejected the request: {status}", details=details)


class BaseProviderClient:
    """
    Abstract base class for cloud speech vendors.

    Subclasses must implement:
        - synthesize(): text + voice reference -> ProviderAudio
        - clone(): normalized WAV sample -> ProviderVoice
        - delete_voice(): remove a vendor-side voice

    Attributes:
        kind: ProviderKind this client serves.
        display_name: Vendor name for messages.
        audio_format: Container synthesize() normally returns.

    Args:
        api_key: Vendor credential. An empty key leaves the client unconfigured.
        base_url: API root.
        timeout_s: Per-call timeout before deadline capping.
        http_client: Optional preconfigured httpx.Client (tests pass one
            built on httpx.MockTransport).
    """
    kind: ProviderKind = ProviderKind.CLOUD_PRIMARY
    display_name: str = "base"
    audio_format: str = "mp3"

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout_s: float,
        http_client: Optional[httpx.Client] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._client = http_client
        self._owns_client = http_client is None
        self.logger = get_logger(f"voice-pipeline.provider.{self.kind.value}")

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _get_client(self) -> httpx.Client:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(timeout=httpx.Timeout(self.timeout_s), follow_redirects=True)
            self._owns_client = True
        return self._client

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def _request(
        self,
        method: str,
        url: str,
        deadline: Optional[Deadline] = None,
        timeout_s: Optional[float] = None,
        authenticated: bool = True,
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Send one HTTP request and classify the outcome.

        Raises:
            ProviderTransientError: Timeout, transport error, 429, 5xx, or
                the deadline had already passed.
            ProviderAuthError: 401/402/403.
            ProviderValidationError: Other 4xx and 501.
        """
        if deadline is not None and deadline.expired:
            raise deadline_exceeded()

        timeout, capped = cap_timeout(timeout_s or self.timeout_s, deadline)
        headers = dict(kwargs.pop("headers", None) or {})
        if authenticated:
            headers.update(self._auth_headers())

        debug(self.logger, "http_request", method=method, url=url, timeout_s=round(timeout, 3))
        try:
            response = self._get_client().request(
                method, url, headers=headers, timeout=httpx.Timeout(timeout), **kwargs
            )
        except httpx.TimeoutException as e:
            raise ProviderTransientError(
                f"{self.display_name} request timed out after {timeout:.1f}s",
                details={"provider": self.kind.value, "error": type(e).__name__, "deadline_capped": capped},
                counts_toward_breaker=not capped,
            )
        except httpx.TransportError as e:
            raise ProviderTransientError(
                f"Failed to connect to {self.display_name}",
                details={"provider": self.kind.value, "error": str(e)},
            )

        err = classify_response(response, self.display_name)
        if err is not None:
            raise err
        return response

    def synthesize(
        self,
        text: str,
        voice_ref: str,
        deadline: Optional[Deadline] = None,
    ) -> ProviderAudio:
        """
        Render prepared text in a vendor voice.

        Args:
            text: Text already rewritten for this vendor.
            voice_ref: Vendor voice id (primary) or sample URL (fallback).
            deadline: Caller deadline bounding every HTTP call.

        Raises:
            NotImplementedError: If not overridden.
        """
        raise NotImplementedError

    def clone(
        self,
        sample: bytes,
        title: str,
        sample_url: str,
        description: str = "",
        deadline: Optional[Deadline] = None,
    ) -> ProviderVoice:
        raise NotImplementedError

    def delete_voice(self, provider_voice_id: str, deadline: Optional[Deadline] = None) -> bool:
        raise NotImplementedError

    def close(self) -> None:
        if self._client is not None and self._owns_client:
            self._client.close()
