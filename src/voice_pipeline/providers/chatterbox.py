"""
Chatterbox Client (fallback vendor, hosted on Replicate).

Synthesis is an asynchronous prediction job:
    1. POST {base}/v1/predictions   {version, input: {prompt, exaggeration, cfg_weight, audio_prompt?}}
    2. Poll urls.get every poll_interval_s until "succeeded" or "failed"
    3. GET the output URL (WAV)

Polling is bounded twice: by max_wait_s (120 s default) and by the
caller's Deadline. Neither the poll interval nor a single HTTP timeout
ever exceeds the time the request has left.

Cloning is zero-shot: the stored sample URL is passed as audio_prompt on
every synthesis, so clone() makes no network call.
"""
from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional

import httpx

from voice_pipeline.core.config import ChatterboxConfig
from voice_pipeline.core.errors import ProviderTransientError, ProviderValidationError
from voice_pipeline.core.logging import info, verbose, warn
from voice_pipeline.core.models import ProviderKind
from voice_pipeline.providers.base import BaseProviderClient, ProviderAudio, ProviderVoice
from voice_pipeline.resilience.retry import deadline_exceeded
from voice_pipeline.utils.timing import Deadline, timeit

_TERMINAL = ("succeeded", "failed", "canceled")


class ChatterboxClient(BaseProviderClient):
    """
    Fallback cloud vendor: zero-shot cloning from a sample URL, WAV output.

    Args:
        config: Endpoint, model version, polling bounds and voice settings.
        http_client: Optional preconfigured httpx.Client.
        sleep: Blocking sleep between polls, injectable for tests.
        clock: Monotonic clock for the max_wait_s bound.
    """

    kind = ProviderKind.CLOUD_FALLBACK
    display_name = "Chatterbox"
    audio_format = "wav"

    def __init__(
        self,
        config: Optional[ChatterboxConfig] = None,
        http_client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        config = config or ChatterboxConfig()
        super().__init__(config.api_key, config.base_url, config.timeout_s, http_client)
        self.config = config
        self._sleep = sleep
        self._clock = clock

    def _prediction_input(self, text: str, voice_ref: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "prompt": text,
            "exaggeration": self.config.exaggeration,
            "cfg_weight": self.config.cfg_weight,
        }
        if voice_ref:
            payload["audio_prompt"] = voice_ref
        return payload

    def _json(self, response: httpx.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError:
            raise ProviderTransientError(
                "Chatterbox returned an unreadable prediction",
                details={"provider": self.kind.value, "status": response.status_code},
            )
        if not isinstance(payload, dict):
            raise ProviderTransientError(
                "Chatterbox returned an unexpected prediction",
                details={"provider": self.kind.value},
            )
        return payload

    def _poll(self, prediction: Dict[str, Any], deadline: Optional[Deadline]) -> Dict[str, Any]:
        started = self._clock()
        polls = 0
        while prediction.get("status") not in _TERMINAL:
            if self._clock() - started >= self.config.max_wait_s:
                raise ProviderTransientError(
                    "Chatterbox prediction timed out",
                    details={"provider": self.kind.value, "prediction_id": prediction.get("id"), "polls": polls},
                )

            wait = self.config.poll_interval_s
            if deadline is not None:
                if deadline.expired:
                    raise deadline_exceeded()
                wait = min(wait, deadline.remaining())
            self._sleep(wait)

            get_url = (prediction.get("urls") or {}).get("get")
            if not get_url:
                get_url = f"{self.base_url}/v1/predictions/{prediction.get('id')}"
            prediction = self._json(self._request("GET", get_url, deadline=deadline))
            polls += 1
            verbose(self.logger, "prediction_status", prediction_id=prediction.get("id"), status=prediction.get("status"))
        return prediction

    def synthesize(self, text, voice_ref, deadline: Optional[Deadline] = None) -> ProviderAudio:
        body = {
            "version": self.config.model_version,
            "input": self._prediction_input(text, voice_ref),
        }

        with timeit("chatterbox_predict") as t_predict:
            created = self._json(self._request(
                "POST", f"{self.base_url}/v1/predictions", deadline=deadline, json=body
            ))
            verbose(self.logger, "prediction_created", prediction_id=created.get("id"), status=created.get("status"))
            result = self._poll(created, deadline)

        if result.get("status") != "succeeded":
            warn(self.logger, "prediction_failed", prediction_id=result.get("id"), error=result.get("error"))
            raise ProviderTransientError(
                f"Chatterbox prediction failed: {result.get('error') or result.get('status')}",
                details={"provider": self.kind.value, "prediction_id": result.get("id")},
            )

        output = result.get("output")
        if isinstance(output, list):
            output = output[0] if output else None
        if not output:
            raise ProviderValidationError(
                "No audio URL in prediction output",
                details={"provider": self.kind.value, "prediction_id": result.get("id")},
            )

        with timeit("chatterbox_download") as t_download:
            audio = self._request("GET", str(output), deadline=deadline, authenticated=False)

        verbose(
            self.logger, "tts_ok",
            bytes=len(audio.content), chars=len(text),
            seconds=t_predict.timing.seconds + t_download.timing.seconds,
        )
        return ProviderAudio(
            data=audio.content,
            format=self.audio_format,
            timings_s={
                "provider_call": t_predict.timing.seconds,
                "download": t_download.timing.seconds,
            },
        )

    def clone(self, sample, title, sample_url, description="", deadline: Optional[Deadline] = None) -> ProviderVoice:
        if not sample_url:
            raise ProviderValidationError(
                "Chatterbox cloning needs a stored sample URL",
                details={"provider": self.kind.value},
            )
        info(self.logger, "zero_shot_clone", title=title)
        return ProviderVoice(provider_voice_id=sample_url, provider=self.kind)

    def delete_voice(self, provider_voice_id, deadline: Optional[Deadline] = None) -> bool:
        # Nothing is stored vendor-side
        return False
