"""
Audio Processing Utilities.

Two directions of audio flow through the pipeline:

    Upload (clone samples):
        Whatever the client recorded is decoded, mixed to mono, resampled to
        44.1 kHz, RMS-normalized and re-encoded as 16-bit PCM mono WAV. Clone
        quality depends heavily on level consistency, so this runs before
        every clone. A sample that cannot be processed is passed through
        unchanged and flagged normalized=False.

    Download (synthesized speech):
        Vendors answer in different containers (MP3 from the primary vendor,
        WAV from the fallback). decode_provider_audio() tries the vendor's
        container first, then the other, and raises DecodeError if neither
        decodes. Bytes are returned untouched; decoding only proves they
        are playable.

Soft Limiting:
    After RMS gain, samples whose magnitude exceeds 0.95 are replaced by
    tanh(sample). Near-silent input (RMS < 1e-4) is left at its level.

Dependencies:
    - numpy: Array operations
    - soundfile: WAV/MP3 decode, WAV encode (libsndfile >= 1.1 for MP3)
    - scipy: Polyphase-free FFT resampling (scipy.signal.resample)

Example:
    >>> upload = normalize_for_upload(recording_bytes)
    >>> upload.normalized, upload.sample_rate
    (True, 44100)
"""
from __future__ import annotations

import base64
import binascii
import io
import math
from dataclasses import dataclass
from typing import Dict, Optional, Union

import numpy as np
import soundfile as sf
from scipy.signal import resample

from voice_pipeline.core.config import Defaults
from voice_pipeline.core.errors import DecodeError, ProviderValidationError
from voice_pipeline.core.logging import get_logger, verbose, warn
from voice_pipeline.utils.timing import timeit

_LOG = get_logger("voice-pipeline.audio")

# Below this RMS the input is treated as silence and not amplified
_SILENCE_RMS = 1e-4
_WAV_HEADER_BYTES = 44


@dataclass
class UploadAudio:
    """
    Result of upload normalization.

    Attributes:
        data: Normalized WAV bytes, or the original bytes when normalized is False.
        normalized: Whether processing succeeded.
        sample_rate: Output sample rate, None when unknown.
        duration_s: Duration of the decoded input, None when unknown.
        content_type: MIME type to upload the bytes with.
    """
    data: bytes
    normalized: bool
    sample_rate: Optional[int] = None
    duration_s: Optional[float] = None
    content_type: str = "audio/wav"


@dataclass
class DecodedAudio:
    """Provider audio that has been proven decodable."""
    data: bytes
    format: str
    sample_rate: int
    duration_s: float


def wav_bytes_from_float32(waveform: np.ndarray, sample_rate: int) -> tuple[bytes, Dict[str, float]]:
    """
    Convert float32 waveform to WAV bytes (PCM 16-bit mono).

    Args:
        waveform: Samples in [-1, 1]. Multi-dimensional input is flattened.
        sample_rate: Audio sample rate.

    Returns:
        Tuple of (wav_bytes, timing_dict) where timing_dict has 'wav_encode'.
    """
    timings: Dict[str, float] = {}

    with timeit("wav_encode") as t:
        wav = np.asarray(waveform, dtype=np.float32)
        if wav.ndim > 1:
            wav = wav.reshape(-1)

        buf = io.BytesIO()
        sf.write(buf, wav, sample_rate, format="WAV", subtype="PCM_16")
        out = buf.getvalue()

    timings["wav_encode"] = t.timing.seconds if t.timing else -1.0
    verbose(_LOG, "wav_encoded", bytes=len(out), sr=sample_rate, seconds=round(timings["wav_encode"], 4))
    return out, timings


def wav_bytes_to_float32(wav_bytes: bytes) -> tuple[np.ndarray, int]:
    """
    Decode audio bytes to a mono float32 array.

    Any container libsndfile recognizes is accepted. Channels are averaged.

    Returns:
        Tuple of (audio_array, sample_rate).
    """
    wav, sr = sf.read(io.BytesIO(wav_bytes), dtype="float32")
    if wav.ndim > 1:
        wav = wav.mean(axis=1)
    return np.asarray(wav, dtype=np.float32), int(sr)


def validate_wav_header(data: bytes) -> bool:
    """True if data is at least a full header long and starts RIFF....WAVE."""
    if len(data) < _WAV_HEADER_BYTES:
        return False
    return data[:4] == b"RIFF" and data[8:12] == b"WAVE"


def _looks_like_mp3(data: bytes) -> bool:
    if data[:3] == b"ID3":
        return True
    # MPEG frame sync: 11 set bits
    return len(data) >= 2 and data[0] == 0xFF and (data[1] & 0xE0) == 0xE0


def guess_container(data: bytes) -> Optional[str]:
    """Return "wav", "mp3" or None from the leading bytes."""
    if validate_wav_header(data):
        return "wav"
    if _looks_like_mp3(data):
        return "mp3"
    return None


def _rms_normalize(wav: np.ndarray, target_rms: float, soft_limit: float) -> np.ndarray:
    rms = float(np.sqrt(np.mean(np.square(wav, dtype=np.float64))))
    if rms < _SILENCE_RMS:
        verbose(_LOG, "normalize_skipped_silence", rms=round(rms, 6))
        return wav

    gain = target_rms / rms
    out = wav * gain
    over = np.abs(out) > soft_limit
    if over.any():
        out = np.where(over, np.tanh(out), out)
        verbose(_LOG, "soft_limited", samples=int(over.sum()), gain=round(gain, 3))
    return out.astype(np.float32)


def normalize_for_upload(
    data: bytes,
    target_sample_rate: int = Defaults.AUDIO_TARGET_SAMPLE_RATE,
    target_rms: float = Defaults.AUDIO_TARGET_RMS,
    soft_limit: float = Defaults.AUDIO_SOFT_LIMIT,
) -> UploadAudio:
    """
    Prepare a recorded sample for a clone upload.

    Steps: decode, mono mix, resample to target_sample_rate, RMS-normalize
    with soft limiting, encode PCM_16 WAV.

    Never raises: on any failure the original bytes come back with
    normalized=False so the caller can still attempt the upload.
    """
    try:
        with timeit("normalize") as t:
            wav, sr = wav_bytes_to_float32(data)
            if wav.size == 0:
                raise ValueError("empty audio")
            duration_s = wav.size / float(sr)

            if sr != target_sample_rate:
                target_len = int(math.ceil(wav.size * (target_sample_rate / sr)))
                wav = resample(wav, target_len).astype(np.float32)

            wav = _rms_normalize(wav, target_rms, soft_limit)
            out, _ = wav_bytes_from_float32(wav, target_sample_rate)
    except Exception as e:
        warn(_LOG, "normalize_failed", error=str(e), bytes=len(data))
        return UploadAudio(
            data=data,
            normalized=False,
            content_type="audio/wav" if validate_wav_header(data) else "application/octet-stream",
        )

    verbose(
        _LOG, "normalized",
        source_sr=sr, duration_s=round(duration_s, 2),
        bytes=len(out), seconds=t.timing.seconds if t.timing else None,
    )
    return UploadAudio(
        data=out,
        normalized=True,
        sample_rate=target_sample_rate,
        duration_s=duration_s,
    )


def validate_clone_sample(
    upload: UploadAudio,
    min_seconds: float = Defaults.AUDIO_MIN_CLONE_SECONDS,
    max_seconds: float = Defaults.AUDIO_MAX_CLONE_SECONDS,
) -> None:
    """
    Reject samples too short or too long to clone from.

    Unknown durations (normalization failed) pass; the vendor decides.

    Raises:
        ProviderValidationError: Duration outside [min_seconds, max_seconds].
    """
    if upload.duration_s is None:
        return
    if upload.duration_s < min_seconds:
        raise ProviderValidationError(
            f"Voice sample is too short ({upload.duration_s:.1f}s). Record at least {min_seconds:.0f} seconds.",
            details={"duration_s": round(upload.duration_s, 2), "min_seconds": min_seconds},
        )
    if upload.duration_s > max_seconds:
        raise ProviderValidationError(
            f"Voice sample is too long ({upload.duration_s:.1f}s). Keep it under {max_seconds:.0f} seconds.",
            details={"duration_s": round(upload.duration_s, 2), "max_seconds": max_seconds},
        )


def _to_bytes(payload: Union[bytes, str]) -> bytes:
    if isinstance(payload, bytes):
        return payload
    text = payload.strip()
    if text.startswith("data:") and "," in text:
        text = text.split(",", 1)[1]
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError("Provider audio is not valid base64", details={"error": str(e)})


def decode_provider_audio(payload: Union[bytes, str], primary: str) -> DecodedAudio:
    """
    Prove that vendor audio is playable.

    Args:
        payload: Raw bytes or base64 text (data: URLs accepted).
        primary: Container the vendor normally answers with ("mp3" or "wav").

    Returns:
        DecodedAudio with the original bytes and the container that decoded.

    Raises:
        DecodeError: Empty payload, bad base64, or no container decodes.
    """
    data = _to_bytes(payload)
    if not data:
        raise DecodeError("Provider returned empty audio")

    order = [primary, "wav" if primary == "mp3" else "mp3"]
    fmt = guess_container(data)
    if fmt is not None:
        try:
            info = sf.info(io.BytesIO(data))
        except (RuntimeError, TypeError, ValueError) as e:
            verbose(_LOG, "decode_attempt_failed", format=fmt, error=str(e))
        else:
            if info.frames > 0 and info.samplerate > 0:
                if fmt != primary:
                    warn(_LOG, "decoded_secondary_format", primary=primary, format=fmt)
                return DecodedAudio(
                    data=data,
                    format=fmt,
                    sample_rate=int(info.samplerate),
                    duration_s=float(info.frames) / float(info.samplerate),
                )

    raise DecodeError(
        "Could not decode provider audio",
        details={"bytes": len(data), "tried": order, "sniffed": fmt},
    )
