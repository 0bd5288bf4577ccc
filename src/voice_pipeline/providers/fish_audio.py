"""
Fish Audio Client (primary vendor).

Endpoints:
    POST   {base}/v1/tts          JSON body, answers raw MP3
    POST   {base}/model           multipart clone upload, answers {"_id": ...}
    DELETE {base}/model/{id}      404 means already gone

Voices are vendor-side models: clone() uploads the normalized sample once
and synthesize() refers to the returned model id.
"""
from __future__ import annotations

from typing import Optional

import httpx

from voice_pipeline.core.config import FishAudioConfig
from voice_pipeline.core.errors import ProviderTransientError, ProviderValidationError
from voice_pipeline.core.logging import info, verbose
from voice_pipeline.core.models import ProviderKind
from voice_pipeline.providers.base import BaseProviderClient, ProviderAudio, ProviderVoice
from voice_pipeline.utils.timing import Deadline, timeit

# Characters per vendor-side synthesis chunk
TTS_CHUNK_LENGTH = 200
TTS_MP3_BITRATE = 128


class FishAudioClient(BaseProviderClient):
    """Primary cloud vendor: model-based cloning, MP3 synthesis."""

    kind = ProviderKind.CLOUD_PRIMARY
    display_name = "Fish Audio"
    audio_format = "mp3"

    def __init__(self, config: Optional[FishAudioConfig] = None, http_client: Optional[httpx.Client] = None):
        config = config or FishAudioConfig()
        super().__init__(config.api_key, config.base_url, config.timeout_s, http_client)
        self.train_mode = config.train_mode

    def synthesize(self, text, voice_ref, deadline: Optional[Deadline] = None) -> ProviderAudio:
        body = {
            "reference_id": voice_ref,
            "text": text,
            "chunk_length": TTS_CHUNK_LENGTH,
            "format": "mp3",
            "mp3_bitrate": TTS_MP3_BITRATE,
            "latency": "normal",
            "streaming": False,
        }
        with timeit("fish_audio_tts") as t:
            response = self._request("POST", f"{self.base_url}/v1/tts", deadline=deadline, json=body)

        verbose(
            self.logger, "tts_ok",
            bytes=len(response.content), chars=len(text), seconds=t.timing.seconds,
        )
        return ProviderAudio(
            data=response.content,
            format=self.audio_format,
            timings_s={"provider_call": t.timing.seconds},
        )

    def clone(self, sample, title, sample_url, description="", deadline: Optional[Deadline] = None) -> ProviderVoice:
        data = {
            "type": "tts",
            "title": title,
            "train_mode": self.train_mode,
            "visibility": "private",
            "description": description or f"Voice clone: {title}",
        }
        files = {"voices": ("voice_sample.wav", sample, "audio/wav")}

        with timeit("fish_audio_clone") as t:
            response = self._request(
                "POST", f"{self.base_url}/model", deadline=deadline, data=data, files=files
            )

        try:
            payload = response.json()
        except ValueError:
            raise ProviderTransientError(
                "Fish Audio returned an unreadable clone response",
                details={"provider": self.kind.value, "status": response.status_code},
            )
        model_id = payload.get("_id") if isinstance(payload, dict) else None
        if not model_id:
            raise ProviderValidationError(
                "Fish Audio did not return a model id",
                details={"provider": self.kind.value},
            )

        info(self.logger, "model_created", model_id=model_id, state=payload.get("state"), seconds=t.timing.seconds)
        return ProviderVoice(provider_voice_id=str(model_id), provider=self.kind)

    def delete_voice(self, provider_voice_id, deadline: Optional[Deadline] = None) -> bool:
        """Delete a model. Returns False when it was already gone."""
        try:
            self._request("DELETE", f"{self.base_url}/model/{provider_voice_id}", deadline=deadline)
        except ProviderValidationError as e:
            if e.details.get("status") == 404:
                verbose(self.logger, "model_already_deleted", model_id=provider_voice_id)
                return False
            raise
        info(self.logger, "model_deleted", model_id=provider_voice_id)
        return True
