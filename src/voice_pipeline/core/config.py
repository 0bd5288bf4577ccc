"""
Configuration Management for voice-pipeline.

This module provides centralized configuration handling with:
    - Default values (Defaults class)
    - Dataclass-based configuration objects
    - YAML file loading with environment variable overrides
    - Validation with meaningful error messages

Configuration Hierarchy (highest priority first):
    1. Environment variables (FISH_AUDIO_API_KEY, VOICE_PIPELINE_DB_PATH, etc.)
    2. YAML config file (config/settings.yaml)
    3. Defaults class values

Example settings.yaml:
    credits:
      tts_cost_per_1k_chars: 280
      allow_legacy_deduct: false

    circuit:
      failure_threshold: 3
      reset_timeout_s: 30

    providers:
      fish_audio:
        timeout_s: 60
      chatterbox:
        max_wait_s: 120

    persistence:
      backend: sqlite
      db_path: ./voice_pipeline.db

    logging:
      level: 2  # NORMAL
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional
import os
import yaml


class ConfigValidationError(Exception):
    """
    Raised when configuration validation fails.

    This exception is thrown when a configuration value is outside
    acceptable bounds or of the wrong type, and at startup when the
    persistence backend cannot provide a safe credit deduct.
    """
    pass


class Defaults:
    """
    Centralized default configuration values.

    Sections:
        - Credits: Prices, free allotments, balance cache
        - Rate Limits: Per-operation request windows
        - Circuit Breaker: Failure threshold and reset timing
        - Voice Cache: Profile cache TTL and sweep
        - Retry: Backoff for transient provider failures
        - Providers: Vendor endpoints and timeouts
        - Audio: Upload normalization targets
        - Persistence: Store backend and sample directory
        - Logging: Log level and formatting
    """

    # ─────────────────────────────────────────────────────────────────────────
    # Credits
    # ─────────────────────────────────────────────────────────────────────────
    CREDITS_TTS_COST_PER_1K_CHARS = 280     # Credits per 1000 synthesized characters
    CREDITS_CLONE_COST = 5000               # Credits per voice clone
    CREDITS_FREE_MONTHLY = 100_000          # Allotment for a new account
    CREDITS_FREE_MONTHLY_CLONES = 20        # Clones per calendar month
    CREDITS_BALANCE_TTL_SECONDS = 300       # Balance read cache (5 minutes)
    CREDITS_ALLOW_LEGACY_DEDUCT = False     # Permit the non-atomic deduct path

    # ─────────────────────────────────────────────────────────────────────────
    # Rate Limits (fixed window)
    # ─────────────────────────────────────────────────────────────────────────
    RATE_LIMIT_TTS_MAX_REQUESTS = 20
    RATE_LIMIT_TTS_WINDOW_S = 60.0
    RATE_LIMIT_CLONE_MAX_REQUESTS = 3
    RATE_LIMIT_CLONE_WINDOW_S = 60.0
    RATE_LIMIT_CLEANUP_INTERVAL_S = 60.0    # Sweep of expired windows

    # ─────────────────────────────────────────────────────────────────────────
    # Circuit Breaker
    # ─────────────────────────────────────────────────────────────────────────
    CIRCUIT_FAILURE_THRESHOLD = 3           # Consecutive failures before opening
    CIRCUIT_RESET_TIMEOUT_S = 30.0          # Open -> HalfOpen delay
    CIRCUIT_HALF_OPEN_MAX_CALLS = 1         # Trial calls admitted in HalfOpen

    # ─────────────────────────────────────────────────────────────────────────
    # Voice Profile Cache
    # ─────────────────────────────────────────────────────────────────────────
    VOICE_CACHE_TTL_SECONDS = 3600          # Profiles change rarely (1 hour)
    VOICE_CACHE_MAX_ITEMS = 4096
    VOICE_CACHE_SWEEP_INTERVAL_S = 300.0    # Background removal of expired entries
    VOICE_CACHE_INVALIDATE_ON_WRITE = False # Clone writes evict their own entry

    # ─────────────────────────────────────────────────────────────────────────
    # Retry / Backoff
    # ─────────────────────────────────────────────────────────────────────────
    RETRY_MAX_ATTEMPTS = 3
    RETRY_BASE_DELAY_MS = 500
    RETRY_MAX_DELAY_MS = 5000
    RETRY_JITTER_RATIO = 0.25               # Up to +25% of the exponential delay

    # ─────────────────────────────────────────────────────────────────────────
    # Providers
    # ─────────────────────────────────────────────────────────────────────────
    FISH_AUDIO_BASE_URL = "https://api.fish.audio"
    FISH_AUDIO_TIMEOUT_S = 60.0
    FISH_AUDIO_TRAIN_MODE = "fast"
    CHATTERBOX_BASE_URL = "https://api.replicate.com"
    CHATTERBOX_MODEL_VERSION = "1b8422bc49635c20d0a84e387ed20879c0dd09254ecdb4e75dc4bec10ff94e97"
    CHATTERBOX_TIMEOUT_S = 30.0             # Per HTTP call
    CHATTERBOX_POLL_INTERVAL_S = 1.0
    CHATTERBOX_MAX_WAIT_S = 120.0           # Hard cap on prediction polling
    CHATTERBOX_EXAGGERATION = 0.3           # Low for calm meditation delivery
    CHATTERBOX_CFG_WEIGHT = 0.5

    # ─────────────────────────────────────────────────────────────────────────
    # Audio
    # ─────────────────────────────────────────────────────────────────────────
    AUDIO_TARGET_SAMPLE_RATE = 44100
    AUDIO_TARGET_RMS = 0.2
    AUDIO_SOFT_LIMIT = 0.95
    AUDIO_MIN_CLONE_SECONDS = 6.0
    AUDIO_MAX_CLONE_SECONDS = 90.0
    AUDIO_MAX_SAMPLE_BYTES = 10 * 1024 * 1024
    AUDIO_MAX_TEXT_CHARS = 5000

    # ─────────────────────────────────────────────────────────────────────────
    # Persistence
    # ─────────────────────────────────────────────────────────────────────────
    PERSISTENCE_BACKEND = "memory"          # memory | sqlite
    PERSISTENCE_DB_PATH = "./voice_pipeline.db"
    PERSISTENCE_SAMPLES_DIR = "./samples"
    PERSISTENCE_SAMPLES_BASE_URL = ""       # Public URL prefix for stored samples

    # ─────────────────────────────────────────────────────────────────────────
    # Logging
    # ─────────────────────────────────────────────────────────────────────────
    LOGGING_TEXT_PREVIEW_CHARS = 80         # Characters to show in text preview
    LOGGING_LEVEL = 2                       # 1=MINIMAL, 2=NORMAL, 3=VERBOSE, 4=DEBUG


@dataclass
class CreditsConfig:
    """
    Credit prices and free-tier allotments.

    Costs are integers; synthesis cost rounds up per started fraction
    of a thousand characters.
    """
    tts_cost_per_1k_chars: int = Defaults.CREDITS_TTS_COST_PER_1K_CHARS
    clone_cost: int = Defaults.CREDITS_CLONE_COST
    free_monthly_credits: int = Defaults.CREDITS_FREE_MONTHLY
    free_monthly_clones: int = Defaults.CREDITS_FREE_MONTHLY_CLONES
    balance_ttl_seconds: int = Defaults.CREDITS_BALANCE_TTL_SECONDS
    allow_legacy_deduct: bool = Defaults.CREDITS_ALLOW_LEGACY_DEDUCT


@dataclass
class RateLimitRule:
    """A fixed window: at most max_requests per window_s seconds."""
    max_requests: int
    window_s: float


@dataclass
class RateLimitConfig:
    """
    Per-operation request throttling.

    Independent of credit balance; protects shared vendor quota from
    burst abuse by a single user.
    """
    tts: RateLimitRule = field(default_factory=lambda: RateLimitRule(
        Defaults.RATE_LIMIT_TTS_MAX_REQUESTS, Defaults.RATE_LIMIT_TTS_WINDOW_S))
    clone: RateLimitRule = field(default_factory=lambda: RateLimitRule(
        Defaults.RATE_LIMIT_CLONE_MAX_REQUESTS, Defaults.RATE_LIMIT_CLONE_WINDOW_S))
    cleanup_interval_s: float = Defaults.RATE_LIMIT_CLEANUP_INTERVAL_S


@dataclass
class CircuitConfig:
    """
    Circuit breaker configuration, applied to every provider key.
    """
    failure_threshold: int = Defaults.CIRCUIT_FAILURE_THRESHOLD
    reset_timeout_s: float = Defaults.CIRCUIT_RESET_TIMEOUT_S
    half_open_max_calls: int = Defaults.CIRCUIT_HALF_OPEN_MAX_CALLS


@dataclass
class VoiceCacheConfig:
    """
    Voice profile cache configuration.

    invalidate_on_write=False keeps the documented staleness window:
    a re-cloned profile may be served stale until its TTL elapses.
    """
    ttl_seconds: int = Defaults.VOICE_CACHE_TTL_SECONDS
    max_items: int = Defaults.VOICE_CACHE_MAX_ITEMS
    sweep_interval_s: float = Defaults.VOICE_CACHE_SWEEP_INTERVAL_S
    invalidate_on_write: bool = Defaults.VOICE_CACHE_INVALIDATE_ON_WRITE


@dataclass
class RetryConfig:
    """
    Backoff for transient provider failures (5xx, 429, timeouts).
    """
    max_attempts: int = Defaults.RETRY_MAX_ATTEMPTS
    base_delay_ms: int = Defaults.RETRY_BASE_DELAY_MS
    max_delay_ms: int = Defaults.RETRY_MAX_DELAY_MS
    jitter_ratio: float = Defaults.RETRY_JITTER_RATIO


@dataclass
class FishAudioConfig:
    """Primary cloud vendor. Disabled when api_key is empty."""
    api_key: str = ""
    base_url: str = Defaults.FISH_AUDIO_BASE_URL
    timeout_s: float = Defaults.FISH_AUDIO_TIMEOUT_S
    train_mode: str = Defaults.FISH_AUDIO_TRAIN_MODE


@dataclass
class ChatterboxConfig:
    """Fallback cloud vendor (Replicate predictions). Disabled when api_key is empty."""
    api_key: str = ""
    base_url: str = Defaults.CHATTERBOX_BASE_URL
    model_version: str = Defaults.CHATTERBOX_MODEL_VERSION
    timeout_s: float = Defaults.CHATTERBOX_TIMEOUT_S
    poll_interval_s: float = Defaults.CHATTERBOX_POLL_INTERVAL_S
    max_wait_s: float = Defaults.CHATTERBOX_MAX_WAIT_S
    exaggeration: float = Defaults.CHATTERBOX_EXAGGERATION
    cfg_weight: float = Defaults.CHATTERBOX_CFG_WEIGHT


@dataclass
class ProvidersConfig:
    fish_audio: FishAudioConfig = field(default_factory=FishAudioConfig)
    chatterbox: ChatterboxConfig = field(default_factory=ChatterboxConfig)


@dataclass
class AudioConfig:
    """
    Audio normalization targets and input limits.
    """
    target_sample_rate: int = Defaults.AUDIO_TARGET_SAMPLE_RATE
    target_rms: float = Defaults.AUDIO_TARGET_RMS
    soft_limit: float = Defaults.AUDIO_SOFT_LIMIT
    min_clone_seconds: float = Defaults.AUDIO_MIN_CLONE_SECONDS
    max_clone_seconds: float = Defaults.AUDIO_MAX_CLONE_SECONDS
    max_sample_bytes: int = Defaults.AUDIO_MAX_SAMPLE_BYTES
    max_text_chars: int = Defaults.AUDIO_MAX_TEXT_CHARS


@dataclass
class PersistenceConfig:
    """
    Persistence backend selection.

    The sqlite backend provides the atomic credit operation; the memory
    backend is for tests and single-instance development.
    """
    backend: str = Defaults.PERSISTENCE_BACKEND
    db_path: str = Defaults.PERSISTENCE_DB_PATH
    samples_dir: str = Defaults.PERSISTENCE_SAMPLES_DIR
    samples_base_url: str = Defaults.PERSISTENCE_SAMPLES_BASE_URL


@dataclass
class LoggingConfig:
    """
    Logging configuration.

    Log levels:
        1 = MINIMAL: Startup, shutdown, critical errors only
        2 = NORMAL: Request lifecycle, breaker transitions (default)
        3 = VERBOSE: Per-stage timing, retry attempts
        4 = DEBUG: Internal state, full tracing
    """
    text_preview_chars: int = Defaults.LOGGING_TEXT_PREVIEW_CHARS
    level: int = Defaults.LOGGING_LEVEL


@dataclass
class PipelineConfig:
    """
    Validated configuration for TTSOrchestrator.

    Usage:
        settings = load_settings("config/settings.yaml")
        config = PipelineConfig.from_settings(settings)
        print(config.circuit.failure_threshold)  # Typed access
    """
    credits: CreditsConfig = field(default_factory=CreditsConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    circuit: CircuitConfig = field(default_factory=CircuitConfig)
    voice_cache: VoiceCacheConfig = field(default_factory=VoiceCacheConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    providers: ProvidersConfig = field(default_factory=ProvidersConfig)
    audio: AudioConfig = field(default_factory=AudioConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "PipelineConfig":
        """
        Create PipelineConfig from Settings with validation.

        Args:
            settings: Raw Settings object loaded from YAML.

        Returns:
            Validated PipelineConfig instance.

        Raises:
            ConfigValidationError: If any value fails validation.
        """
        raw = settings.raw

        # ─────────────────────────────────────────────────────────────────────
        # Credits
        # ─────────────────────────────────────────────────────────────────────
        credits_raw = raw.get("credits", {})
        credits = CreditsConfig(
            tts_cost_per_1k_chars=int(credits_raw.get("tts_cost_per_1k_chars", Defaults.CREDITS_TTS_COST_PER_1K_CHARS)),
            clone_cost=int(credits_raw.get("clone_cost", Defaults.CREDITS_CLONE_COST)),
            free_monthly_credits=int(credits_raw.get("free_monthly_credits", Defaults.CREDITS_FREE_MONTHLY)),
            free_monthly_clones=int(credits_raw.get("free_monthly_clones", Defaults.CREDITS_FREE_MONTHLY_CLONES)),
            balance_ttl_seconds=int(credits_raw.get("balance_ttl_seconds", Defaults.CREDITS_BALANCE_TTL_SECONDS)),
            allow_legacy_deduct=bool(credits_raw.get("allow_legacy_deduct", Defaults.CREDITS_ALLOW_LEGACY_DEDUCT)),
        )
        cls._validate_positive("credits.tts_cost_per_1k_chars", credits.tts_cost_per_1k_chars)
        cls._validate_positive("credits.clone_cost", credits.clone_cost)
        cls._validate_non_negative("credits.free_monthly_credits", credits.free_monthly_credits)
        cls._validate_non_negative("credits.free_monthly_clones", credits.free_monthly_clones)
        cls._validate_non_negative("credits.balance_ttl_seconds", credits.balance_ttl_seconds)

        # ─────────────────────────────────────────────────────────────────────
        # Rate limits
        # ─────────────────────────────────────────────────────────────────────
        rate_raw = raw.get("rate_limit", {})
        tts_raw = rate_raw.get("tts", {})
        clone_raw = rate_raw.get("clone", {})
        rate_limit = RateLimitConfig(
            tts=RateLimitRule(
                max_requests=int(tts_raw.get("max_requests", Defaults.RATE_LIMIT_TTS_MAX_REQUESTS)),
                window_s=float(tts_raw.get("window_s", Defaults.RATE_LIMIT_TTS_WINDOW_S)),
            ),
            clone=RateLimitRule(
                max_requests=int(clone_raw.get("max_requests", Defaults.RATE_LIMIT_CLONE_MAX_REQUESTS)),
                window_s=float(clone_raw.get("window_s", Defaults.RATE_LIMIT_CLONE_WINDOW_S)),
            ),
            cleanup_interval_s=float(rate_raw.get("cleanup_interval_s", Defaults.RATE_LIMIT_CLEANUP_INTERVAL_S)),
        )
        cls._validate_positive("rate_limit.tts.max_requests", rate_limit.tts.max_requests)
        cls._validate_positive("rate_limit.tts.window_s", rate_limit.tts.window_s)
        cls._validate_positive("rate_limit.clone.max_requests", rate_limit.clone.max_requests)
        cls._validate_positive("rate_limit.clone.window_s", rate_limit.clone.window_s)
        cls._validate_positive("rate_limit.cleanup_interval_s", rate_limit.cleanup_interval_s)

        # ─────────────────────────────────────────────────────────────────────
        # Circuit breaker
        # ─────────────────────────────────────────────────────────────────────
        circuit_raw = raw.get("circuit", {})
        circuit = CircuitConfig(
            failure_threshold=int(circuit_raw.get("failure_threshold", Defaults.CIRCUIT_FAILURE_THRESHOLD)),
            reset_timeout_s=float(circuit_raw.get("reset_timeout_s", Defaults.CIRCUIT_RESET_TIMEOUT_S)),
            half_open_max_calls=int(circuit_raw.get("half_open_max_calls", Defaults.CIRCUIT_HALF_OPEN_MAX_CALLS)),
        )
        cls._validate_positive("circuit.failure_threshold", circuit.failure_threshold)
        cls._validate_positive("circuit.reset_timeout_s", circuit.reset_timeout_s)
        cls._validate_positive("circuit.half_open_max_calls", circuit.half_open_max_calls)

        # ─────────────────────────────────────────────────────────────────────
        # Voice profile cache
        # ─────────────────────────────────────────────────────────────────────
        cache_raw = raw.get("voice_cache", {})
        voice_cache = VoiceCacheConfig(
            ttl_seconds=int(cache_raw.get("ttl_seconds", Defaults.VOICE_CACHE_TTL_SECONDS)),
            max_items=int(cache_raw.get("max_items", Defaults.VOICE_CACHE_MAX_ITEMS)),
            sweep_interval_s=float(cache_raw.get("sweep_interval_s", Defaults.VOICE_CACHE_SWEEP_INTERVAL_S)),
            invalidate_on_write=bool(cache_raw.get("invalidate_on_write", Defaults.VOICE_CACHE_INVALIDATE_ON_WRITE)),
        )
        cls._validate_positive("voice_cache.ttl_seconds", voice_cache.ttl_seconds)
        cls._validate_positive("voice_cache.max_items", voice_cache.max_items)
        cls._validate_positive("voice_cache.sweep_interval_s", voice_cache.sweep_interval_s)

        # ─────────────────────────────────────────────────────────────────────
        # Retry
        # ─────────────────────────────────────────────────────────────────────
        retry_raw = raw.get("retry", {})
        retry = RetryConfig(
            max_attempts=int(retry_raw.get("max_attempts", Defaults.RETRY_MAX_ATTEMPTS)),
            base_delay_ms=int(retry_raw.get("base_delay_ms", Defaults.RETRY_BASE_DELAY_MS)),
            max_delay_ms=int(retry_raw.get("max_delay_ms", Defaults.RETRY_MAX_DELAY_MS)),
            jitter_ratio=float(retry_raw.get("jitter_ratio", Defaults.RETRY_JITTER_RATIO)),
        )
        cls._validate_positive("retry.max_attempts", retry.max_attempts)
        cls._validate_non_negative("retry.base_delay_ms", retry.base_delay_ms)
        cls._validate_non_negative("retry.max_delay_ms", retry.max_delay_ms)
        cls._validate_range("retry.jitter_ratio", retry.jitter_ratio, 0.0, 1.0)

        # ─────────────────────────────────────────────────────────────────────
        # Providers (API keys also read from environment)
        # ─────────────────────────────────────────────────────────────────────
        providers_raw = raw.get("providers", {})
        fish_raw = providers_raw.get("fish_audio", {})
        chatterbox_raw = providers_raw.get("chatterbox", {})
        providers = ProvidersConfig(
            fish_audio=FishAudioConfig(
                api_key=str(os.getenv("FISH_AUDIO_API_KEY") or fish_raw.get("api_key", "") or ""),
                base_url=str(fish_raw.get("base_url", Defaults.FISH_AUDIO_BASE_URL)).rstrip("/"),
                timeout_s=float(fish_raw.get("timeout_s", Defaults.FISH_AUDIO_TIMEOUT_S)),
                train_mode=str(fish_raw.get("train_mode", Defaults.FISH_AUDIO_TRAIN_MODE)),
            ),
            chatterbox=ChatterboxConfig(
                api_key=str(os.getenv("REPLICATE_API_TOKEN") or chatterbox_raw.get("api_key", "") or ""),
                base_url=str(chatterbox_raw.get("base_url", Defaults.CHATTERBOX_BASE_URL)).rstrip("/"),
                model_version=str(chatterbox_raw.get("model_version", Defaults.CHATTERBOX_MODEL_VERSION)),
                timeout_s=float(chatterbox_raw.get("timeout_s", Defaults.CHATTERBOX_TIMEOUT_S)),
                poll_interval_s=float(chatterbox_raw.get("poll_interval_s", Defaults.CHATTERBOX_POLL_INTERVAL_S)),
                max_wait_s=float(chatterbox_raw.get("max_wait_s", Defaults.CHATTERBOX_MAX_WAIT_S)),
                exaggeration=float(chatterbox_raw.get("exaggeration", Defaults.CHATTERBOX_EXAGGERATION)),
                cfg_weight=float(chatterbox_raw.get("cfg_weight", Defaults.CHATTERBOX_CFG_WEIGHT)),
            ),
        )
        cls._validate_positive("providers.fish_audio.timeout_s", providers.fish_audio.timeout_s)
        cls._validate_positive("providers.chatterbox.timeout_s", providers.chatterbox.timeout_s)
        cls._validate_non_negative("providers.chatterbox.poll_interval_s", providers.chatterbox.poll_interval_s)
        cls._validate_positive("providers.chatterbox.max_wait_s", providers.chatterbox.max_wait_s)
        cls._validate_range("providers.chatterbox.exaggeration", providers.chatterbox.exaggeration, 0.0, 1.0)
        cls._validate_range("providers.chatterbox.cfg_weight", providers.chatterbox.cfg_weight, 0.0, 1.0)

        # ─────────────────────────────────────────────────────────────────────
        # Audio
        # ─────────────────────────────────────────────────────────────────────
        audio_raw = raw.get("audio", {})
        audio = AudioConfig(
            target_sample_rate=int(audio_raw.get("target_sample_rate", Defaults.AUDIO_TARGET_SAMPLE_RATE)),
            target_rms=float(audio_raw.get("target_rms", Defaults.AUDIO_TARGET_RMS)),
            soft_limit=float(audio_raw.get("soft_limit", Defaults.AUDIO_SOFT_LIMIT)),
            min_clone_seconds=float(audio_raw.get("min_clone_seconds", Defaults.AUDIO_MIN_CLONE_SECONDS)),
            max_clone_seconds=float(audio_raw.get("max_clone_seconds", Defaults.AUDIO_MAX_CLONE_SECONDS)),
            max_sample_bytes=int(audio_raw.get("max_sample_bytes", Defaults.AUDIO_MAX_SAMPLE_BYTES)),
            max_text_chars=int(audio_raw.get("max_text_chars", Defaults.AUDIO_MAX_TEXT_CHARS)),
        )
        cls._validate_positive("audio.target_sample_rate", audio.target_sample_rate)
        cls._validate_range("audio.target_rms", audio.target_rms, 0.0, 1.0)
        cls._validate_range("audio.soft_limit", audio.soft_limit, 0.0, 1.0)
        cls._validate_non_negative("audio.min_clone_seconds", audio.min_clone_seconds)
        cls._validate_positive("audio.max_clone_seconds", audio.max_clone_seconds)
        if audio.min_clone_seconds > audio.max_clone_seconds:
            raise ConfigValidationError(
                f"audio.min_clone_seconds ({audio.min_clone_seconds}) exceeds "
                f"audio.max_clone_seconds ({audio.max_clone_seconds})"
            )
        cls._validate_positive("audio.max_sample_bytes", audio.max_sample_bytes)
        cls._validate_positive("audio.max_text_chars", audio.max_text_chars)

        # ─────────────────────────────────────────────────────────────────────
        # Persistence (with environment variable override)
        # ─────────────────────────────────────────────────────────────────────
        persistence_raw = raw.get("persistence", {})
        persistence = PersistenceConfig(
            backend=str(persistence_raw.get("backend", Defaults.PERSISTENCE_BACKEND)).lower(),
            db_path=str(os.getenv("VOICE_PIPELINE_DB_PATH")
                        or persistence_raw.get("db_path", Defaults.PERSISTENCE_DB_PATH)),
            samples_dir=str(persistence_raw.get("samples_dir", Defaults.PERSISTENCE_SAMPLES_DIR)),
            samples_base_url=str(persistence_raw.get("samples_base_url", Defaults.PERSISTENCE_SAMPLES_BASE_URL)),
        )
        if persistence.backend not in ("memory", "sqlite"):
            raise ConfigValidationError(
                f"persistence.backend must be 'memory' or 'sqlite', got {persistence.backend!r}"
            )

        # ─────────────────────────────────────────────────────────────────────
        # Logging configuration
        # ─────────────────────────────────────────────────────────────────────
        logging_raw = raw.get("logging", {})
        log_level_raw = logging_raw.get("level", Defaults.LOGGING_LEVEL)

        # Handle string log levels (e.g., "INFO", "DEBUG")
        if isinstance(log_level_raw, str):
            level_map = {
                "MINIMAL": 1, "1": 1,
                "NORMAL": 2, "INFO": 2, "2": 2,
                "VERBOSE": 3, "3": 3,
                "DEBUG": 4, "TRACE": 4, "4": 4,
            }
            log_level = level_map.get(log_level_raw.upper(), Defaults.LOGGING_LEVEL)
        else:
            log_level = int(log_level_raw)

        logging_cfg = LoggingConfig(
            text_preview_chars=int(logging_raw.get("text_preview_chars", Defaults.LOGGING_TEXT_PREVIEW_CHARS)),
            level=log_level,
        )
        cls._validate_non_negative("logging.text_preview_chars", logging_cfg.text_preview_chars)
        cls._validate_range("logging.level", logging_cfg.level, 1, 4)

        return cls(
            credits=credits,
            rate_limit=rate_limit,
            circuit=circuit,
            voice_cache=voice_cache,
            retry=retry,
            providers=providers,
            audio=audio,
            persistence=persistence,
            logging=logging_cfg,
        )

    @staticmethod
    def _validate_positive(name: str, value: int | float) -> None:
        """Validate that a value is positive (> 0)."""
        if value <= 0:
            raise ConfigValidationError(f"{name} must be positive, got {value}")

    @staticmethod
    def _validate_non_negative(name: str, value: int | float) -> None:
        """Validate that a value is non-negative (>= 0)."""
        if value < 0:
            raise ConfigValidationError(f"{name} must be non-negative, got {value}")

    @staticmethod
    def _validate_range(name: str, value: int | float, min_val: int | float, max_val: int | float) -> None:
        """Validate that a value is within a range [min_val, max_val]."""
        if not (min_val <= value <= max_val):
            raise ConfigValidationError(f"{name} must be between {min_val} and {max_val}, got {value}")


@dataclass(frozen=True)
class Settings:
    """
    Immutable settings container loaded from YAML.

    This is the raw settings object before validation. Use
    get_pipeline_config() to get a validated PipelineConfig.

    Attributes:
        raw: Dictionary of raw configuration values.
    """
    raw: Dict[str, Any]

    @property
    def persistence_backend(self) -> str:
        """Get the configured persistence backend (memory/sqlite)."""
        return str(self.raw.get("persistence", {}).get("backend", Defaults.PERSISTENCE_BACKEND))

    @property
    def service_name(self) -> str:
        """Get the service name reported by /health."""
        return str(self.raw.get("service", {}).get("name", "voice-pipeline"))

    def get_pipeline_config(self) -> PipelineConfig:
        """
        Get validated PipelineConfig from these settings.

        Raises:
            ConfigValidationError: If validation fails.
        """
        return PipelineConfig.from_settings(self)


def load_settings(path: Optional[str] = None) -> Settings:
    """
    Load settings from a YAML configuration file.

    The path defaults to $VOICE_PIPELINE_SETTINGS, then config/settings.yaml.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        Settings object with loaded configuration.

    Raises:
        FileNotFoundError: If the settings file doesn't exist.
    """
    p = Path(path or os.getenv("VOICE_PIPELINE_SETTINGS", "config/settings.yaml"))
    if not p.exists():
        raise FileNotFoundError(f"settings file not found: {p.resolve()}")

    with p.open("r", encoding="utf-8") as f:
        raw: Dict[str, Any] = yaml.safe_load(f) or {}

    # Apply environment variable overrides
    backend = os.getenv("VOICE_PIPELINE_PERSISTENCE")
    if backend:
        raw.setdefault("persistence", {})["backend"] = backend

    return Settings(raw=raw)
