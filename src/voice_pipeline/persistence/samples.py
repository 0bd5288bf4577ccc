"""
Voice Sample Storage.

The fallback vendor clones zero-shot from a reference clip it downloads
by URL, so every normalized clone sample is written to disk and exposed
under a public base URL (a static file server or bucket sync in front
of samples_dir).

File Organization:
    {samples_dir}/
        {user_id}/
            ab/
                ab3f...91.wav

    Keys are SHA256 of the sample bytes, so re-uploading the same take is
    idempotent. The first two key characters shard the directory.

Writes are atomic: bytes go to a .tmp file first, then replace the
final path.
"""
from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from pathlib import Path

from voice_pipeline.core.logging import get_logger, info, warn
from voice_pipeline.utils.timing import timeit

_LOG = get_logger("voice-pipeline.samples")

_UNSAFE_RE = re.compile(r"[^A-Za-z0-9_.-]")


@dataclass
class StoredSample:
    key: str
    path: Path
    url: str
    bytes: int


def _safe_segment(value: str) -> str:
    cleaned = _UNSAFE_RE.sub("_", value).strip(".")
    return cleaned or "_"


class SampleStorage:
    """
    Disk store for clone samples.

    Args:
        root_dir: Base directory for samples.
        base_url: Public URL prefix mapped onto root_dir. When empty,
            file:// URLs are returned (development only; a remote vendor
            cannot fetch them).
    """

    def __init__(self, root_dir: str, base_url: str = ""):
        self.root_dir = Path(root_dir)
        self.base_url = base_url.rstrip("/")

    def _key_to_path(self, user_id: str, key: str) -> Path:
        return self.root_dir / _safe_segment(user_id) / key[:2] / f"{key}.wav"

    def url_for(self, path: Path) -> str:
        if not self.base_url:
            return path.resolve().as_uri()
        rel = path.relative_to(self.root_dir).as_posix()
        return f"{self.base_url}/{rel}"

    def store(self, user_id: str, data: bytes) -> StoredSample:
        """
        Write a sample and return where it can be fetched from.

        Raises:
            OSError: The sample could not be written. Unlike a cache, a lost
                sample breaks the fallback route, so errors propagate.
        """
        key = hashlib.sha256(data).hexdigest()
        p = self._key_to_path(user_id, key)
        p.parent.mkdir(parents=True, exist_ok=True)

        tmp = p.with_suffix(".tmp")
        try:
            with timeit("sample_write") as t:
                tmp.write_bytes(data)
                tmp.replace(p)
        except OSError as e:
            warn(_LOG, "sample_write_error", key=key[:8], error=str(e))
            if tmp.exists():
                tmp.unlink()
            raise

        info(_LOG, "sample_saved", key=key[:8], bytes=len(data), seconds=round(t.timing.seconds, 4))
        return StoredSample(key=key, path=p, url=self.url_for(p), bytes=len(data))
