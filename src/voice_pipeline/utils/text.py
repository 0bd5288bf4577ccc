"""
Pacing Tag Preparation.

Meditation scripts carry bracketed pacing tags such as "[pause]" or
"[deep breath]". No vendor understands them, so the text is rewritten
per provider before it is sent:

    cloudPrimary:
        Known tags map to ellipses or short spoken cues (the primary vendor
        paces on punctuation). Unknown tags become "...". Runs of seven or
        more dots are capped at six.

    cloudFallback, browser:
        Every bracketed token is removed.

Whitespace is collapsed in every case, and no bracketed token survives
for any provider.

Example:
    >>> prepare_text("Relax [pause] and [deep breath]", ProviderKind.CLOUD_PRIMARY)
    'Relax ... and ... take a deep breath ...'
    >>> prepare_text("Relax [pause] now", ProviderKind.BROWSER)
    'Relax now'
"""
from __future__ import annotations

import re

from voice_pipeline.core.models import ProviderKind

PACING_TAGS = {
    "[pause]": "...",
    "[short pause]": "..",
    "[long pause]": "......",
    "[deep breath]": "... take a deep breath ...",
    "[exhale slowly]": "... and exhale slowly ...",
    "[inhale]": "... breathe in ...",
    "[breathe in]": "... breathe in ...",
    "[exhale]": "... breathe out ...",
    "[breathe out]": "... breathe out ...",
    "[sigh]": "...",
    "[breath]": "...",
    "[whisper]": "...",
    "[hum]": "...",
    "[soft hum]": "...",
    "[gentle giggle]": "...",
    "[silence]": "........",
    "[soft voice]": "",
    "[calm]": "",
    "[thoughtfully]": "",
}

_MAX_DOTS = 6

_TAG_RE = re.compile(r"\[[^\]]*\]")
_DOT_RUN_RE = re.compile(r"\.{%d,}" % (_MAX_DOTS + 1))
_WS_RE = re.compile(r"\s+")
_KNOWN_TAG_RE = re.compile(
    "|".join(re.escape(tag) for tag in sorted(PACING_TAGS, key=len, reverse=True)),
    re.IGNORECASE,
)


def _collapse_ws(text: str) -> str:
    return _WS_RE.sub(" ", text).strip()


def strip_tags(text: str) -> str:
    """Remove every bracketed token and collapse whitespace."""
    return _collapse_ws(_TAG_RE.sub(" ", text))


def _map_tags(text: str) -> str:
    out = _KNOWN_TAG_RE.sub(lambda m: PACING_TAGS[m.group(0).lower()], text)
    out = _TAG_RE.sub("...", out)
    out = _DOT_RUN_RE.sub("." * _MAX_DOTS, out)
    return _collapse_ws(out)


def prepare_text(text: str, provider: ProviderKind) -> str:
    """
    Rewrite pacing tags for the given provider.

    Args:
        text: Script text, possibly with pacing tags.
        provider: Provider the text is about to be sent to.

    Returns:
        Provider-ready text with no bracketed tokens.
    """
    if provider == ProviderKind.CLOUD_PRIMARY:
        return _map_tags(text)
    return strip_tags(text)


def text_preview(text: str, limit: int = 80) -> str:
    """Single-line preview of text for log fields."""
    flat = _collapse_ws(text)
    if len(flat) <= limit:
        return flat
    return flat[: max(0, limit - 3)] + "..."
