"""
Credit Prices.

All costs are integers. Synthesis is priced per started fraction of a
thousand characters, rounded up:

    tts_cost(1)    == 1
    tts_cost(300)  == 84
    tts_cost(1000) == 280

A clone costs a flat 5000 credits.
"""
from __future__ import annotations

from voice_pipeline.core.config import Defaults


def tts_cost(chars: int, per_1k_chars: int = Defaults.CREDITS_TTS_COST_PER_1K_CHARS) -> int:
    """ceil(chars * per_1k_chars / 1000) in integer arithmetic."""
    if chars <= 0:
        return 0
    return -(-(chars * per_1k_chars) // 1000)


def clone_cost(cost: int = Defaults.CREDITS_CLONE_COST) -> int:
    return cost


def estimate_cost(
    text: str = "",
    is_clone: bool = False,
    per_1k_chars: int = Defaults.CREDITS_TTS_COST_PER_1K_CHARS,
    clone_price: int = Defaults.CREDITS_CLONE_COST,
) -> int:
    """Cost of synthesizing text, or of one clone when is_clone is set."""
    if is_clone:
        return clone_cost(clone_price)
    return tts_cost(len(text), per_1k_chars)
