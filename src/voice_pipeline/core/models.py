"""
Domain Data Model.

Persistent records (VoiceProfile, CreditAccount, UsageLimits, UsageEvent)
are stored through a PersistenceStore. Runtime-only state such as breaker
state, rate windows and cache entries lives in the resilience and voices
packages and is rebuilt empty at start-up.

Periods:
    Usage limits reset per calendar month. A period is identified by the
    first day of the month in UTC, formatted "YYYY-MM-01".
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from voice_pipeline.core.config import Defaults

# Voice ids with this prefix are rendered by the client's own speech engine
BROWSER_VOICE_PREFIX = "browser-"


class ProviderKind(str, Enum):
    """Speech backends a voice can be routed to."""
    BROWSER = "browser"
    CLOUD_PRIMARY = "cloudPrimary"
    CLOUD_FALLBACK = "cloudFallback"


class CloningStatus(str, Enum):
    NONE = "none"
    PROCESSING = "processing"
    READY = "ready"
    NEEDS_RECREATE = "needsRecreate"


class OperationType(str, Enum):
    CLONE_CREATE = "CLONE_CREATE"
    TTS_GENERATE = "TTS_GENERATE"


def current_period(now: Optional[float] = None) -> str:
    """Return the usage period ("YYYY-MM-01", UTC) containing `now`."""
    ts = time.time() if now is None else now
    dt = datetime.fromtimestamp(ts, tz=timezone.utc)
    return f"{dt.year:04d}-{dt.month:02d}-01"


@dataclass
class VoiceProfile:
    """
    A user's voice.

    Attributes:
        id: Voice id exposed to clients.
        user_id: Owner.
        name: Display name.
        provider: Explicit routing choice, if one was stored.
        provider_voice_id: The vendor's id for this voice (primary vendor model
            id, or the sample URL for the zero-shot fallback vendor).
        sample_url: Publicly reachable copy of the normalized clone sample.
        cloning_status: Lifecycle of the vendor-side voice.
        is_cloned: True once any clone succeeded.
    """
    id: str
    user_id: str
    name: str
    provider: Optional[ProviderKind] = None
    provider_voice_id: Optional[str] = None
    sample_url: Optional[str] = None
    cloning_status: CloningStatus = CloningStatus.NONE
    is_cloned: bool = False
    created_at: float = field(default_factory=time.time)

    @property
    def is_browser_voice(self) -> bool:
        return self.id.startswith(BROWSER_VOICE_PREFIX)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "name": self.name,
            "provider": self.provider.value if self.provider else None,
            "providerVoiceId": self.provider_voice_id,
            "sampleUrl": self.sample_url,
            "cloningStatus": self.cloning_status.value,
            "isCloned": self.is_cloned,
        }


@dataclass
class CreditAccount:
    """Spendable balance. Never negative."""
    user_id: str
    credits_remaining: int
    period_start: str


@dataclass
class UsageLimits:
    """Per-period usage counters and caps."""
    user_id: str
    period: str
    credits_used: int = 0
    credits_limit: int = Defaults.CREDITS_FREE_MONTHLY
    clones_created: int = 0
    clones_limit: int = Defaults.CREDITS_FREE_MONTHLY_CLONES

    @property
    def clones_remaining(self) -> int:
        return max(0, self.clones_limit - self.clones_created)


@dataclass
class UsageEvent:
    """Append-only audit record of a billed operation."""
    user_id: str
    operation_type: OperationType
    credits_used: int
    voice_profile_id: Optional[str] = None
    character_count: Optional[int] = None
    created_at: float = field(default_factory=time.time)
