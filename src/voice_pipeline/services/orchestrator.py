"""
TTSOrchestrator - Voice Generation Request Pipeline.

This module provides the TTSOrchestrator class, the single place where a
synthesis or clone request is driven through every guard before a vendor
is called. The API routes and the CLI both use it.

Synthesis Pipeline:
    Validate → LoadProfile → CheckCredits → SelectProvider → CheckCircuit
        → CheckRateLimit → Call (retry + fallback) → Decode → Bill

Clone Pipeline:
    Validate → CheckClone (credits + monthly limit) → Normalize → Route
        → CheckCircuit → CheckRateLimit → StoreSample → Call → SaveProfile → Bill

Key Properties:
    - Credit and rate checks fail locally before any network call
    - Billing happens only after confirmed success (decoded audio, created voice)
    - A refused deduct at billing time withholds the result
    - Transient and CircuitOpen failures on the primary vendor fall through
      to the fallback vendor; auth and validation failures surface at once
    - A caller Deadline bounds every HTTP timeout, backoff sleep and poll

Components (all injectable for tests):
    - CreditLedger: balance, eligibility, atomic deduct
    - RateLimiter: per-user fixed windows
    - CircuitRegistry: one breaker per vendor
    - VoiceProfileCache: read-through profile cache
    - Provider clients: FishAudioClient, ChatterboxClient

Example:
    >>> orchestrator = TTSOrchestrator(config)
    >>> result = orchestrator.synthesize(
    ...     SynthesisRequest(user_id="u1", text="Breathe in [pause] and out", voice_id="v1"),
    ...     deadline=Deadline(30.0),
    ... )
    >>> result.to_dict()["provider"]
    'cloudPrimary'
"""
from __future__ import annotations

import base64
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple, TypeVar

from voice_pipeline.billing.costs import clone_cost, tts_cost
from voice_pipeline.billing.ledger import CreditLedger, UsageSummary
from voice_pipeline.core.config import PipelineConfig
from voice_pipeline.core.errors import (
    CircuitOpenError,
    CloneLimitError,
    ErrorKind,
    InsufficientCreditsError,
    PipelineError,
    ProfileNotFoundError,
    ProviderTransientError,
    ProviderValidationError,
    RateLimitedError,
)
from voice_pipeline.core.logging import (
    debug,
    fail,
    get_logger,
    get_request_id,
    info,
    success,
    verbose,
    warn,
)
from voice_pipeline.core.metrics import metrics
from voice_pipeline.core.models import (
    BROWSER_VOICE_PREFIX,
    CloningStatus,
    OperationType,
    ProviderKind,
    VoiceProfile,
)
from voice_pipeline.persistence import PersistenceStore, SampleStorage, create_store
from voice_pipeline.providers import BaseProviderClient, create_provider_clients
from voice_pipeline.resilience.circuit import CircuitRegistry
from voice_pipeline.resilience.rate_limit import RateLimiter
from voice_pipeline.resilience.retry import RetryPolicy, call_with_retry
from voice_pipeline.services.validators import (
    validate_display_name,
    validate_sample,
    validate_text,
    validate_user_id,
    validate_voice_id,
)
from voice_pipeline.utils.audio import decode_provider_audio, normalize_for_upload, validate_clone_sample
from voice_pipeline.utils.text import prepare_text, text_preview
from voice_pipeline.utils.timing import Deadline, timeit
from voice_pipeline.voices.cache import VoiceProfileCache
from voice_pipeline.voices.router import (
    browser_profile,
    clone_route,
    fallback_reference,
    plan_route,
    select_provider,
)

_LOG = get_logger("voice-pipeline.orchestrator")

T = TypeVar("T")


# =============================================================================
# Request/Result Dataclasses
# =============================================================================

@dataclass
class SynthesisRequest:
    """
    Request to speak text in a stored voice.

    Attributes:
        user_id: Caller identity (opaque, never authenticated here).
        text: Script text, possibly with bracketed pacing tags.
        voice_id: Voice profile id, or a "browser-" id.
        options: Free-form client options, echoed into logs only.
    """
    user_id: str
    text: str
    voice_id: str
    options: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CloneRequest:
    """
    Request to create a voice from a recorded sample.

    Attributes:
        user_id: Caller identity.
        sample: Recorded audio in any container soundfile can read.
        display_name: Name shown for the new voice.
        description: Optional vendor-side description.
        voice_id: Existing profile to re-clone into; a new id when omitted.
        metadata: Free-form client metadata.
    """
    user_id: str
    sample: bytes
    display_name: str
    description: str = ""
    voice_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PipelineResult:
    """
    Result of a synthesis request.

    Browser-routed requests carry no audio: the client speaks
    prepared_text with its own engine.
    """
    success: bool
    request_id: str
    provider: ProviderKind
    audio: Optional[bytes] = None
    format: Optional[str] = None
    prepared_text: Optional[str] = None
    used_fallback: bool = False
    credits_charged: int = 0
    balance: Optional[int] = None
    timings: Dict[str, float] = field(default_factory=dict)

    @property
    def audio_base64(self) -> Optional[str]:
        if self.audio is None:
            return None
        return base64.b64encode(self.audio).decode("ascii")

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "success": self.success,
            "audioBase64": self.audio_base64,
            "format": self.format,
            "provider": self.provider.value,
            "usedFallback": self.used_fallback,
            "creditsCharged": self.credits_charged,
            "balance": self.balance,
            "requestId": self.request_id,
        }
        if self.prepared_text is not None:
            out["preparedText"] = self.prepared_text
        return out


@dataclass
class CloneResult:
    success: bool
    request_id: str
    voice_id: str
    provider_voice_id: str
    provider: ProviderKind
    credits_charged: int
    balance: Optional[int] = None
    sample_url: Optional[str] = None
    normalized: bool = False
    timings: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "providerVoiceId": self.provider_voice_id,
            "voiceId": self.voice_id,
            "provider": self.provider.value,
            "creditsCharged": self.credits_charged,
            "balance": self.balance,
            "sampleUrl": self.sample_url,
            "normalized": self.normalized,
            "requestId": self.request_id,
        }


# =============================================================================
# Orchestrator
# =============================================================================

class TTSOrchestrator:
    """
    Request state machine composing ledger, limiter, breakers, cache,
    router, normalizer and vendor clients.

    One instance owns all in-process shared state (breakers, rate windows,
    cache entries). Each of those structures locks per key, so requests for
    different users or vendors never contend.

    Args:
        config: Validated pipeline configuration.
        store: Persistence backend (built from config when omitted).
        clients: Vendor clients keyed by ProviderKind (built from config
            credentials when omitted).
        sample_storage: Where clone samples are kept.
        ledger, rate_limiter, circuits, voice_cache, retry_policy:
            Component overrides, mainly for tests.
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        store: Optional[PersistenceStore] = None,
        clients: Optional[Mapping[ProviderKind, BaseProviderClient]] = None,
        sample_storage: Optional[SampleStorage] = None,
        ledger: Optional[CreditLedger] = None,
        rate_limiter: Optional[RateLimiter] = None,
        circuits: Optional[CircuitRegistry] = None,
        voice_cache: Optional[VoiceProfileCache] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self._config = config or PipelineConfig()
        cfg = self._config

        # ─────────────────────────────────────────────────────────────────────
        # Persistence
        # ─────────────────────────────────────────────────────────────────────
        self._store = store or create_store(cfg)
        self._samples = sample_storage or SampleStorage(
            cfg.persistence.samples_dir,
            base_url=cfg.persistence.samples_base_url,
        )

        # ─────────────────────────────────────────────────────────────────────
        # Vendors
        # ─────────────────────────────────────────────────────────────────────
        self._clients: Dict[ProviderKind, BaseProviderClient] = dict(
            clients if clients is not None else create_provider_clients(cfg.providers)
        )

        # ─────────────────────────────────────────────────────────────────────
        # Guards
        # ─────────────────────────────────────────────────────────────────────
        self._ledger = ledger or CreditLedger(self._store, cfg.credits)
        self._limiter = rate_limiter or RateLimiter(cfg.rate_limit)
        self._circuits = circuits or CircuitRegistry(cfg.circuit)
        self._retry = retry_policy or RetryPolicy(cfg.retry)

        # ─────────────────────────────────────────────────────────────────────
        # Voice profile cache
        # ─────────────────────────────────────────────────────────────────────
        self._cache = voice_cache or VoiceProfileCache(
            ttl_seconds=cfg.voice_cache.ttl_seconds,
            max_items=cfg.voice_cache.max_items,
            sweep_interval_s=cfg.voice_cache.sweep_interval_s,
        )

        for kind in self._clients:
            self._circuits.get(kind.value)

        info(
            _LOG, "orchestrator_ready",
            providers=",".join(k.value for k in self._clients) or "none",
            store=self._store.name,
            deduct=self._ledger.strategy.name,
        )

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def config(self) -> PipelineConfig:
        return self._config

    @property
    def store(self) -> PersistenceStore:
        return self._store

    @property
    def ledger(self) -> CreditLedger:
        return self._ledger

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._limiter

    @property
    def circuits(self) -> CircuitRegistry:
        return self._circuits

    @property
    def voice_cache(self) -> VoiceProfileCache:
        return self._cache

    @property
    def clients(self) -> Dict[ProviderKind, BaseProviderClient]:
        return dict(self._clients)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Start background work (the cache sweeper)."""
        self._cache.start_sweeper()

    def close(self) -> None:
        self._cache.stop_sweeper()
        for client in self._clients.values():
            client.close()
        self._store.close()
        info(_LOG, "orchestrator_closed")

    # =========================================================================
    # Stage Helpers
    # =========================================================================

    @staticmethod
    def _request_id(request_id: Optional[str]) -> str:
        if request_id:
            return request_id
        rid = get_request_id()
        return rid if rid and rid != "-" else uuid.uuid4().hex[:12]

    def _load_profile(self, user_id: str, voice_id: str) -> VoiceProfile:
        profile = self._cache.get_or_load(
            user_id, voice_id, lambda: self._store.load_voice_profile(user_id, voice_id)
        )
        if profile is not None:
            return profile
        if voice_id.startswith(BROWSER_VOICE_PREFIX):
            return browser_profile(user_id, voice_id)
        raise ProfileNotFoundError(
            "Voice profile not found. Please clone a voice first.",
            details={"voice_id": voice_id},
        )

    def _configured(self, plan: Sequence[ProviderKind]) -> Tuple[ProviderKind, ...]:
        configured = tuple(p for p in plan if p in self._clients)
        if not configured:
            raise ProviderValidationError(
                "No TTS service configured. Please add FISH_AUDIO_API_KEY or REPLICATE_API_TOKEN.",
                details={"planned": [p.value for p in plan]},
            )
        return configured

    def _check_circuits(self, plan: Sequence[ProviderKind]) -> None:
        refusal = self._circuits.all_refusing(p.value for p in plan)
        if refusal is not None:
            warn(_LOG, "circuit_refused", provider=refusal.provider, retry_after_ms=refusal.retry_after_ms)
            raise refusal

    def _check_rate_limit(self, user_id: str, operation: str) -> None:
        result = self._limiter.check_rate_limit(user_id, operation)
        if result.allowed:
            debug(_LOG, "rate_ok", operation=operation, remaining=result.remaining)
            return
        seconds = max(1, -(-result.retry_after_ms // 1000))
        raise RateLimitedError(
            f"Too many requests. Please try again in {seconds} seconds.",
            retry_after_ms=result.retry_after_ms,
            details={"operation": operation, "limit": result.limit, "resetAt": result.reset_at},
        )

    def _call_plan(
        self,
        plan: Sequence[ProviderKind],
        make_call: Callable[[ProviderKind, BaseProviderClient], Callable[[], T]],
        deadline: Optional[Deadline],
        operation: str,
    ) -> Tuple[ProviderKind, T]:
        """
        Try each planned vendor in order through its breaker with retries.

        Transient and CircuitOpen failures move on to the next vendor;
        anything else is raised at once. The last vendor's failure is raised
        when every vendor failed.
        """
        for index, kind in enumerate(plan):
            breaker = self._circuits.get(kind.value)
            fn = make_call(kind, self._clients[kind])
            try:
                return kind, call_with_retry(fn, breaker, self._retry, deadline)
            except (ProviderTransientError, CircuitOpenError) as e:
                if index + 1 >= len(plan):
                    raise
                warn(
                    _LOG, "provider_fallthrough",
                    operation=operation, provider=kind.value,
                    next=plan[index + 1].value, error_kind=e.kind, error=e.message,
                )
        # plan is never empty (_configured / clone_route raise first)
        raise ProviderValidationError("No provider available")

    # =========================================================================
    # Public API: synthesize()
    # =========================================================================

    def synthesize(
        self,
        request: SynthesisRequest,
        deadline: Optional[Deadline] = None,
        request_id: Optional[str] = None,
    ) -> PipelineResult:
        """
        Speak text in a stored voice.

        Returns:
            PipelineResult with decoded, billed audio (cloud routes) or the
            prepared text (browser route).

        Raises:
            InvalidInputError, ProfileNotFoundError, InsufficientCreditsError,
            CircuitOpenError, RateLimitedError, ProviderAuthError,
            ProviderValidationError, ProviderTransientError, DecodeError.
        """
        rid = self._request_id(request_id)
        timings: Dict[str, float] = {}
        provider_label = "none"
        preview_chars = self._config.logging.text_preview_chars

        try:
            with timeit("request_total") as total_t:
                # ─────────────────────────────────────────────────────────────
                # Stage 1: Validate
                # ─────────────────────────────────────────────────────────────
                user_id = validate_user_id(request.user_id)
                text = validate_text(request.text, self._config.audio.max_text_chars)
                voice_id = validate_voice_id(request.voice_id)
                info(
                    _LOG, "synthesize_request",
                    user_id=user_id, voice_id=voice_id, chars=len(text),
                    text_preview=text_preview(text, preview_chars),
                )
                if request.options:
                    debug(_LOG, "request_options", **{str(k): v for k, v in request.options.items()})

                # ─────────────────────────────────────────────────────────────
                # Stage 2: Load profile
                # ─────────────────────────────────────────────────────────────
                with timeit("load_profile") as t_load:
                    profile = self._load_profile(user_id, voice_id)
                timings["load_profile"] = t_load.timing.seconds
                verbose(_LOG, "stage", event="load_profile", seconds=round(timings["load_profile"], 4))

                # Browser voices are rendered client-side for free: no credit
                # check, rate limit, breaker or bill applies
                provider = select_provider(profile)
                if provider == ProviderKind.BROWSER:
                    provider_label = provider.value
                    prepared = prepare_text(text, provider)
                    result = PipelineResult(
                        success=True,
                        request_id=rid,
                        provider=provider,
                        prepared_text=prepared,
                        timings=timings,
                    )
                    success(_LOG, "browser_route", voice_id=voice_id, chars=len(prepared))
                    metrics.record_request("tts", provider_label, "success", _elapsed(total_t))
                    return result

                # ─────────────────────────────────────────────────────────────
                # Stage 3: Check credits
                # ─────────────────────────────────────────────────────────────
                cost = tts_cost(len(text), self._config.credits.tts_cost_per_1k_chars)
                eligibility = self._ledger.can_perform(user_id, cost)
                if not eligibility.allowed:
                    raise InsufficientCreditsError(
                        eligibility.reason or "Insufficient credits",
                        details={"cost": cost, "balance": eligibility.balance},
                    )

                # ─────────────────────────────────────────────────────────────
                # Stage 4: Select provider (ordered cloud plan)
                # ─────────────────────────────────────────────────────────────
                plan = self._configured(plan_route(profile))
                verbose(_LOG, "route", voice_id=voice_id, plan=",".join(p.value for p in plan))

                # ─────────────────────────────────────────────────────────────
                # Stage 5-6: Circuit, then rate limit
                # ─────────────────────────────────────────────────────────────
                self._check_circuits(plan)
                self._check_rate_limit(user_id, "tts")

                # ─────────────────────────────────────────────────────────────
                # Stage 7: Call with retry and fallback
                # ─────────────────────────────────────────────────────────────
                def make_call(kind: ProviderKind, client: BaseProviderClient):
                    prepared_text = prepare_text(text, kind)
                    if kind == ProviderKind.CLOUD_PRIMARY:
                        voice_ref = profile.provider_voice_id or ""
                    else:
                        voice_ref = fallback_reference(profile)
                    debug(_LOG, "prepared_text", provider=kind.value, text=prepared_text)
                    return lambda: client.synthesize(prepared_text, voice_ref, deadline)

                with timeit("provider_call") as t_call:
                    used, audio = self._call_plan(plan, make_call, deadline, "tts")
                provider_label = used.value
                timings["provider_call"] = t_call.timing.seconds
                verbose(_LOG, "stage", event="provider_call", provider=used.value,
                        seconds=round(timings["provider_call"], 4))

                # ─────────────────────────────────────────────────────────────
                # Stage 8: Decode
                # ─────────────────────────────────────────────────────────────
                with timeit("decode") as t_decode:
                    decoded = decode_provider_audio(audio.data, audio.format)
                timings["decode"] = t_decode.timing.seconds
                verbose(_LOG, "stage", event="decode", format=decoded.format,
                        duration_s=round(decoded.duration_s, 2), seconds=round(timings["decode"], 4))

                # ─────────────────────────────────────────────────────────────
                # Stage 9: Bill
                # ─────────────────────────────────────────────────────────────
                deduct = self._ledger.deduct(
                    user_id,
                    cost,
                    OperationType.TTS_GENERATE,
                    voice_profile_id=profile.id,
                    character_count=len(text),
                )
                if not deduct.success:
                    warn(_LOG, "audio_withheld", user_id=user_id, cost=cost, balance=deduct.balance)
                    raise InsufficientCreditsError(
                        deduct.message or "Insufficient credits",
                        details={"cost": cost, "balance": deduct.balance},
                    )

            total_s = total_t.timing.seconds
            metrics.record_request("tts", provider_label, "success", total_s)
            success(
                _LOG, "synthesize_done",
                provider=provider_label, bytes=len(decoded.data), credits=cost,
                balance=deduct.balance, seconds=round(total_s, 3),
            )
            return PipelineResult(
                success=True,
                request_id=rid,
                provider=used,
                audio=decoded.data,
                format=decoded.format,
                used_fallback=used == ProviderKind.CLOUD_FALLBACK,
                credits_charged=cost,
                balance=deduct.balance,
                timings=timings,
            )

        except PipelineError as e:
            metrics.record_request("tts", provider_label, e.kind, _elapsed(total_t))
            warn(_LOG, "synthesize_failed", error_kind=e.kind, error=e.message, retry_after_ms=e.retry_after_ms)
            raise
        except Exception as e:
            metrics.record_request("tts", provider_label, ErrorKind.INTERNAL_ERROR, _elapsed(total_t))
            fail(_LOG, "synthesize_failed", error=str(e), error_type=type(e).__name__)
            raise

    # =========================================================================
    # Public API: clone()
    # =========================================================================

    def clone(
        self,
        request: CloneRequest,
        deadline: Optional[Deadline] = None,
        request_id: Optional[str] = None,
    ) -> CloneResult:
        """
        Create a voice from a recorded sample and save it as ready.

        Raises:
            InvalidInputError, InsufficientCreditsError, CloneLimitError,
            ProviderValidationError (duration, vendor), CircuitOpenError,
            RateLimitedError, ProviderAuthError, ProviderTransientError.
        """
        rid = self._request_id(request_id)
        timings: Dict[str, float] = {}
        provider_label = "none"
        audio_cfg = self._config.audio

        try:
            with timeit("request_total") as total_t:
                # Stage 1: Validate
                user_id = validate_user_id(request.user_id)
                name = validate_display_name(request.display_name)
                sample = validate_sample(request.sample, audio_cfg.max_sample_bytes)
                voice_id = validate_voice_id(request.voice_id) if request.voice_id else f"voice-{uuid.uuid4().hex[:12]}"
                info(_LOG, "clone_request", user_id=user_id, voice_id=voice_id, bytes=len(sample))

                # Stage 2: Credits and monthly clone allowance
                eligibility = self._ledger.can_clone(user_id)
                if not eligibility.allowed:
                    if eligibility.kind == ErrorKind.MONTHLY_CLONE_LIMIT_REACHED:
                        raise CloneLimitError(eligibility.reason or "Monthly clone limit reached")
                    raise InsufficientCreditsError(
                        eligibility.reason or "Insufficient credits",
                        details={"balance": eligibility.balance},
                    )
                cost = clone_cost(self._config.credits.clone_cost)

                # Stage 3: Normalize the upload
                with timeit("normalize") as t_norm:
                    upload = normalize_for_upload(
                        sample,
                        target_sample_rate=audio_cfg.target_sample_rate,
                        target_rms=audio_cfg.target_rms,
                        soft_limit=audio_cfg.soft_limit,
                    )
                timings["normalize"] = t_norm.timing.seconds
                validate_clone_sample(upload, audio_cfg.min_clone_seconds, audio_cfg.max_clone_seconds)

                # Stage 4-6: Route, circuit, rate limit
                plan = clone_route(self._clients.keys())
                self._check_circuits(plan)
                self._check_rate_limit(user_id, "clone")

                # Stage 7: Keep the sample (the fallback vendor clones from its URL)
                with timeit("store_sample") as t_store:
                    stored = self._samples.store(user_id, upload.data)
                timings["store_sample"] = t_store.timing.seconds

                # Stage 8: Vendor clone
                description = request.description or f"Meditation voice clone: {name}"

                def make_call(kind: ProviderKind, client: BaseProviderClient):
                    return lambda: client.clone(upload.data, name, stored.url, description, deadline)

                with timeit("provider_call") as t_call:
                    used, voice = self._call_plan(plan, make_call, deadline, "clone")
                provider_label = used.value
                timings["provider_call"] = t_call.timing.seconds

                # Stage 9: Save the ready profile (a re-clone keeps the old one for rollback)
                previous = self._store.load_voice_profile(user_id, voice_id) if request.voice_id else None
                profile = VoiceProfile(
                    id=voice_id,
                    user_id=user_id,
                    name=name,
                    provider=used,
                    provider_voice_id=voice.provider_voice_id,
                    sample_url=stored.url,
                    cloning_status=CloningStatus.READY,
                    is_cloned=True,
                )
                self._store.save_voice_profile(profile)

                # Stage 10: Bill (also counts the clone against the monthly limit)
                deduct = self._ledger.deduct(
                    user_id, cost, OperationType.CLONE_CREATE, voice_profile_id=voice_id
                )
                if not deduct.success:
                    self._rollback_clone(user_id, voice_id, used, voice.provider_voice_id, previous, deadline)
                    raise InsufficientCreditsError(
                        deduct.message or "Insufficient credits",
                        details={"cost": cost, "balance": deduct.balance},
                    )

                # Stage 11: Optional write-through invalidation
                if self._config.voice_cache.invalidate_on_write:
                    self._cache.invalidate(user_id, voice_id)

            total_s = total_t.timing.seconds
            metrics.record_request("clone", provider_label, "success", total_s)
            success(
                _LOG, "clone_done",
                voice_id=voice_id, provider=provider_label, credits=cost,
                balance=deduct.balance, normalized=upload.normalized, seconds=round(total_s, 3),
            )
            return CloneResult(
                success=True,
                request_id=rid,
                voice_id=voice_id,
                provider_voice_id=voice.provider_voice_id,
                provider=used,
                credits_charged=cost,
                balance=deduct.balance,
                sample_url=stored.url,
                normalized=upload.normalized,
                timings=timings,
            )

        except PipelineError as e:
            metrics.record_request("clone", provider_label, e.kind, _elapsed(total_t))
            warn(_LOG, "clone_failed", error_kind=e.kind, error=e.message, retry_after_ms=e.retry_after_ms)
            raise
        except Exception as e:
            metrics.record_request("clone", provider_label, ErrorKind.INTERNAL_ERROR, _elapsed(total_t))
            fail(_LOG, "clone_failed", error=str(e), error_type=type(e).__name__)
            raise

    def _rollback_clone(
        self,
        user_id: str,
        voice_id: str,
        provider: ProviderKind,
        provider_voice_id: str,
        previous: Optional[VoiceProfile],
        deadline: Optional[Deadline],
    ) -> None:
        """
        Undo an unbilled clone.

        A re-clone puts the previous profile back; a new voice is dropped.
        The vendor voice just created is deleted unless the previous profile
        still points at it.
        """
        if previous is not None:
            self._store.save_voice_profile(previous)
        else:
            self._store.delete_voice_profile(user_id, voice_id)
        if self._config.voice_cache.invalidate_on_write:
            self._cache.invalidate(user_id, voice_id)

        if previous is not None and previous.provider_voice_id == provider_voice_id:
            return
        try:
            self._clients[provider].delete_voice(provider_voice_id, deadline)
        except PipelineError as e:
            warn(_LOG, "clone_rollback_incomplete", provider=provider.value, error=e.message)

    # =========================================================================
    # Public API: voices and credits
    # =========================================================================

    def delete_voice(self, user_id: str, voice_id: str, deadline: Optional[Deadline] = None) -> Dict[str, Any]:
        """
        Delete a stored voice and its vendor-side model.

        Raises:
            ProfileNotFoundError: No such profile for this user.
        """
        user_id = validate_user_id(user_id)
        voice_id = validate_voice_id(voice_id)

        profile = self._store.load_voice_profile(user_id, voice_id)
        if profile is None:
            raise ProfileNotFoundError("Voice profile not found", details={"voice_id": voice_id})

        provider_deleted = False
        client = self._clients.get(ProviderKind.CLOUD_PRIMARY)
        if (
            client is not None
            and profile.provider_voice_id
            and profile.provider in (None, ProviderKind.CLOUD_PRIMARY)
        ):
            breaker = self._circuits.get(ProviderKind.CLOUD_PRIMARY.value)
            provider_deleted = call_with_retry(
                lambda: client.delete_voice(profile.provider_voice_id, deadline),
                breaker,
                self._retry,
                deadline,
            )

        self._store.delete_voice_profile(user_id, voice_id)
        if self._config.voice_cache.invalidate_on_write:
            self._cache.invalidate(user_id, voice_id)

        info(_LOG, "voice_deleted", user_id=user_id, voice_id=voice_id, provider_deleted=provider_deleted)
        return {"success": True, "voiceId": voice_id, "providerDeleted": provider_deleted}

    def get_credits(self, user_id: str) -> UsageSummary:
        return self._ledger.get_usage(validate_user_id(user_id))

    def grant_credits(self, user_id: str, amount: int) -> int:
        return self._ledger.grant_credits(validate_user_id(user_id), amount)

    def health(self) -> Dict[str, Any]:
        """Liveness plus breaker, cache and ledger state."""
        circuits = self._circuits.snapshot()
        any_open = any(c["state"] != "closed" for c in circuits.values())
        return {
            "ok": True,
            "status": "degraded" if (any_open or self._ledger.strategy.degraded) else "ok",
            "providers": [k.value for k in self._clients],
            "circuits": circuits,
            "voiceCache": self._cache.stats(),
            "ledger": {
                "strategy": self._ledger.strategy.name,
                "degraded": self._ledger.strategy.degraded,
                "store": self._store.name,
            },
            "rateLimitWindows": len(self._limiter),
        }


def _elapsed(t: timeit) -> float:
    if t.timing is not None:
        return t.timing.seconds
    return t.elapsed()


# =============================================================================
# Global Orchestrator Singleton
# =============================================================================

_orchestrator: Optional[TTSOrchestrator] = None
_orchestrator_lock = threading.Lock()


def get_orchestrator(config: Optional[PipelineConfig] = None) -> TTSOrchestrator:
    """
    Get or create the global TTSOrchestrator instance.

    Thread-safe lazy singleton. The orchestrator is created on first call
    and reused for subsequent calls.
    """
    global _orchestrator
    if _orchestrator is None:
        with _orchestrator_lock:
            if _orchestrator is None:
                _orchestrator = TTSOrchestrator(config)
    return _orchestrator


def reset_orchestrator() -> None:
    """
    Reset the global orchestrator instance.

    Used primarily for testing to ensure clean state between tests.
    """
    global _orchestrator
    with _orchestrator_lock:
        if _orchestrator is not None:
            _orchestrator.close()
        _orchestrator = None
