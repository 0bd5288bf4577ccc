"""
ANSI codes for the console formatter.

Plain text is written when stdout is not a terminal, or when NO_COLOR
(https://no-color.org/) or VOICE_PIPELINE_NO_COLOR=1 is set.
"""
from __future__ import annotations

import os
import sys


class Colors:
    RESET = "\033[0m"
    DIM = "\033[2m"

    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"
    WHITE = "\033[37m"
    GRAY = "\033[90m"

    BRIGHT_RED = "\033[91m"
    BRIGHT_GREEN = "\033[92m"
    BRIGHT_YELLOW = "\033[93m"
    BRIGHT_CYAN = "\033[96m"


_TAG_COLORS = {
    "SUCCESS": Colors.BRIGHT_GREEN,
    "FAIL": Colors.BRIGHT_RED,
    "ERROR": Colors.BRIGHT_RED,
    "WARN": Colors.BRIGHT_YELLOW,
    "WARNING": Colors.BRIGHT_YELLOW,
    "INFO": Colors.BRIGHT_CYAN,
    "DEBUG": Colors.GRAY,
    "TRACE": Colors.DIM,
}


def _windows_vt_enabled() -> bool:
    try:
        import ctypes
        kernel32 = ctypes.windll.kernel32
        # stdout handle, with virtual terminal processing switched on
        return bool(kernel32.SetConsoleMode(kernel32.GetStdHandle(-11), 7))
    except (AttributeError, OSError):
        return False


def supports_color() -> bool:
    """True when console lines should carry ANSI codes."""
    if os.getenv("VOICE_PIPELINE_NO_COLOR", "0") == "1" or os.getenv("NO_COLOR"):
        return False
    isatty = getattr(sys.stdout, "isatty", None)
    if isatty is None or not isatty():
        return False
    if sys.platform == "win32":
        return _windows_vt_enabled()
    return True


def get_tag_color(tag: str) -> str:
    """Color for a level tag; unknown tags are white."""
    return _TAG_COLORS.get(tag.upper(), Colors.WHITE)
