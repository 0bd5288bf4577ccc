"""
Record formatters for the two logging sinks.

JsonlFormatter writes one JSON object per line:

    {"ts":"2025-03-02T09:14:05+00:00","level":2,"tag":"WARN","message":"circuit_opened",
     "request_id":"a1b2c3","extra":{"provider":"cloudPrimary","state":"open"}}

ColoredConsoleFormatter writes one short line per record:

    09:14:05 [ WARN  ] (a1b2c3) circuit_opened provider=cloudPrimary state=open

On the console, stage timings go green, yellow or red as they slow down.
Breaker states and credit balances are highlighted, so an open circuit or
an empty account stands out in a scrolling terminal.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from .colors import Colors, get_tag_color

# (upper bound in seconds, color); anything slower is red
_TIMING_BANDS = ((0.5, Colors.GREEN), (3.0, Colors.YELLOW))

_STATE_COLORS = {
    "closed": Colors.GREEN,
    "half_open": Colors.YELLOW,
    "open": Colors.RED,
}

_BALANCE_KEYS = ("balance", "credits_remaining")
_LOW_BALANCE = 1000
_DELAY_KEYS = ("delay_ms", "retry_after_ms")

# Record attribute -> JSONL key, written only when set
_OPTIONAL_JSON_FIELDS = (("event", "event"), ("seconds", "seconds"), ("extra_data", "extra"))


def _colors_enabled() -> bool:
    # Looked up per record so the package flag can be flipped at runtime
    import voice_pipeline.core.logging as log_module
    return getattr(log_module, "_USE_COLORS", False)


class JsonlFormatter(logging.Formatter):
    """
    One JSON object per record.

    ts is ISO 8601 in the local zone and level is the pipeline level (1-4).
    event, seconds and extra appear only when the record carries them.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created).astimezone().isoformat(),
            "level": getattr(record, "numeric_level", 2),
            "tag": getattr(record, "tag", record.levelname),
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
        }
        for attr, key in _OPTIONAL_JSON_FIELDS:
            value = getattr(record, attr, None)
            if value is None or value == "" or value == {}:
                continue
            payload[key] = value
        return json.dumps(payload, ensure_ascii=False, default=str)


class ColoredConsoleFormatter(logging.Formatter):
    """HH:MM:SS [ TAG ] (rid) message event=... 0.123s key=value"""

    def format(self, record: logging.LogRecord) -> str:
        tag = getattr(record, "tag", record.levelname)
        parts = [
            self._paint(datetime.fromtimestamp(record.created).strftime("%H:%M:%S"), Colors.DIM),
            self._paint(f"[{tag:^7}]", get_tag_color(tag)),
        ]

        rid = getattr(record, "request_id", "-")
        if rid != "-":
            parts.append(self._paint(f"({rid})", Colors.DIM + Colors.CYAN))
        parts.append(record.getMessage())

        event = getattr(record, "event", None)
        if event:
            parts.append(self._paint(f"event={event}", Colors.BLUE))

        seconds = getattr(record, "seconds", None)
        if seconds is not None:
            parts.append(self._paint(f"{seconds:.3f}s", _timing_color(seconds)))

        for key, value in (getattr(record, "extra_data", None) or {}).items():
            parts.append(self._paint(f"{key}={value}", self._field_color(key, value)))

        return " ".join(parts)

    @staticmethod
    def _paint(text: str, color: str) -> str:
        if not _colors_enabled():
            return text
        return f"{color}{text}{Colors.RESET}"

    @staticmethod
    def _field_color(key: str, value: Any) -> str:
        color: Optional[str] = None
        numeric = isinstance(value, (int, float)) and not isinstance(value, bool)

        if key == "state" and isinstance(value, str):
            color = _STATE_COLORS.get(value)
        elif key in _BALANCE_KEYS and numeric:
            if value <= 0:
                color = Colors.RED
            else:
                color = Colors.YELLOW if value < _LOW_BALANCE else Colors.GREEN
        elif key in _DELAY_KEYS and numeric:
            color = Colors.RED if value >= 1000 else Colors.YELLOW
        elif key == "error_kind":
            color = Colors.MAGENTA

        return color or Colors.DIM


def _timing_color(seconds: float) -> str:
    for bound, color in _TIMING_BANDS:
        if seconds < bound:
            return color
    return Colors.RED
