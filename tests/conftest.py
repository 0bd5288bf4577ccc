"""Shared fixtures: synthetic audio, scripted vendor clients, a wired orchestrator."""
from __future__ import annotations

from typing import Any, List, Optional

import numpy as np
import pytest

from voice_pipeline.core.config import PipelineConfig
from voice_pipeline.core.models import CloningStatus, ProviderKind, VoiceProfile
from voice_pipeline.persistence import InMemoryStore, SampleStorage
from voice_pipeline.providers.base import BaseProviderClient, ProviderAudio, ProviderVoice
from voice_pipeline.resilience.retry import RetryPolicy
from voice_pipeline.services.orchestrator import TTSOrchestrator
from voice_pipeline.utils.audio import wav_bytes_from_float32


def sine_wav(seconds: float = 1.0, sample_rate: int = 22050, amplitude: float = 0.3) -> bytes:
    t = np.arange(int(seconds * sample_rate), dtype=np.float32) / sample_rate
    wav = (amplitude * np.sin(2 * np.pi * 220.0 * t)).astype(np.float32)
    data, _ = wav_bytes_from_float32(wav, sample_rate)
    return data


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeClient(BaseProviderClient):
    """
    Vendor client that replays a script instead of calling the network.

    Each synthesize() call pops the next script item: an exception is
    raised, bytes are returned as audio. With the script exhausted the
    default audio is returned.
    """

    def __init__(
        self,
        kind: ProviderKind,
        audio: Optional[bytes] = None,
        script: Optional[List[Any]] = None,
        clone_id: str = "model-1",
    ):
        self.kind = kind
        self.display_name = kind.value
        self.audio_format = "wav"
        super().__init__("test-key", "https://vendor.invalid", 5.0)
        self.audio = audio if audio is not None else sine_wav(0.5)
        self.script = list(script or [])
        self.clone_id = clone_id
        self.synth_calls: List[tuple] = []
        self.clone_calls: List[tuple] = []
        self.deleted: List[str] = []

    def synthesize(self, text, voice_ref, deadline=None):
        self.synth_calls.append((text, voice_ref))
        if self.script:
            item = self.script.pop(0)
            if isinstance(item, Exception):
                raise item
            return ProviderAudio(data=item, format=self.audio_format)
        return ProviderAudio(data=self.audio, format=self.audio_format)

    def clone(self, sample, title, sample_url, description="", deadline=None):
        self.clone_calls.append((title, sample_url))
        if self.script:
            item = self.script.pop(0)
            if isinstance(item, Exception):
                raise item
        ref = self.clone_id if self.kind == ProviderKind.CLOUD_PRIMARY else sample_url
        return ProviderVoice(provider_voice_id=ref, provider=self.kind)

    def delete_voice(self, provider_voice_id, deadline=None):
        self.deleted.append(provider_voice_id)
        return True


def cloud_profile(
    user_id: str = "user-1",
    voice_id: str = "voice-1",
    provider_voice_id: Optional[str] = "model-1",
    sample_url: Optional[str] = None,
    status: CloningStatus = CloningStatus.READY,
) -> VoiceProfile:
    return VoiceProfile(
        id=voice_id,
        user_id=user_id,
        name="Evening voice",
        provider_voice_id=provider_voice_id,
        sample_url=sample_url,
        cloning_status=status,
        is_cloned=True,
    )


@pytest.fixture
def config(tmp_path) -> PipelineConfig:
    cfg = PipelineConfig()
    cfg.persistence.samples_dir = str(tmp_path / "samples")
    return cfg


@pytest.fixture
def make_orchestrator(tmp_path, config):
    """Factory building an orchestrator on an in-memory store with no-op backoff sleeps."""
    built: List[TTSOrchestrator] = []

    def _make(clients, store=None, cfg=None, **overrides) -> TTSOrchestrator:
        cfg = cfg or config
        orchestrator = TTSOrchestrator(
            config=cfg,
            store=store or InMemoryStore(
                free_monthly_credits=cfg.credits.free_monthly_credits,
                free_monthly_clones=cfg.credits.free_monthly_clones,
            ),
            clients={c.kind: c for c in clients},
            sample_storage=SampleStorage(str(tmp_path / "samples")),
            retry_policy=overrides.pop("retry_policy", RetryPolicy(cfg.retry, sleep=lambda s: None)),
            **overrides,
        )
        built.append(orchestrator)
        return orchestrator

    yield _make
    for orchestrator in built:
        orchestrator.close()
