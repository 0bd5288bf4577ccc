"""
Request Context and Configuration State for Logging.

The request id lives in a ContextVar so every log line emitted while a
request is being handled (including from FastAPI's worker threads) can be
correlated. Configuration state is module-level and shared process-wide.

Usage:
    from voice_pipeline.core.logging.context import set_request_id, get_request_id

    set_request_id("a1b2c3d4e5f6")
    get_request_id()  # "a1b2c3d4e5f6"

Environment Variables:
    - VOICE_PIPELINE_LOG_LEVEL: Override log level (1-4 or name)
    - VOICE_PIPELINE_LOG_DIR: Directory for JSONL logs (file output disabled if unset)
    - VOICE_PIPELINE_JSONL_FILE: JSONL filename
    - VOICE_PIPELINE_LOG_ROTATE_BYTES: Max log file size
    - VOICE_PIPELINE_LOG_ROTATE_BACKUP: Number of rotated files to keep
"""
from __future__ import annotations

import os
from contextvars import ContextVar
from typing import Any, Dict

from .levels import LEVEL_NAMES, LogLevel

# "-" outside of any request
_request_id: ContextVar[str] = ContextVar("request_id", default="-")

_configured: bool = False
_log_config: Dict[str, Any] = {}
_current_level: LogLevel = LogLevel.NORMAL


def get_request_id() -> str:
    """Get current request ID, or "-" if not set."""
    return _request_id.get()


def set_request_id(rid: str) -> None:
    """Set request ID in context for log correlation."""
    _request_id.set(rid)


def get_level() -> LogLevel:
    return _current_level


def set_level(level: LogLevel) -> None:
    global _current_level
    _current_level = level


def get_level_name() -> str:
    """Get current log level as a name ("MINIMAL", "NORMAL", ...)."""
    return LEVEL_NAMES.get(_current_level, "NORMAL")


def is_configured() -> bool:
    return _configured


def set_configured(value: bool) -> None:
    global _configured
    _configured = value


def get_log_config() -> Dict[str, Any]:
    return _log_config


def set_log_config(config: Dict[str, Any]) -> None:
    global _log_config
    _log_config = config


def read_logging_config() -> Dict[str, Any]:
    """
    Read logging configuration from the settings file and environment.

    Priority (highest first):
        1. VOICE_PIPELINE_LOG_* environment variables
        2. The logging section of the settings file
        3. Defaults applied by configure_logging()

    Returns:
        Dictionary with resolved logging configuration.
    """
    cfg: Dict[str, Any] = {}

    settings_path = os.getenv("VOICE_PIPELINE_SETTINGS", "config/settings.yaml")
    try:
        from voice_pipeline.core.config import load_settings
        settings = load_settings(settings_path)
        cfg.update(settings.raw.get("logging", {}) or {})
    except Exception:
        # Missing or unreadable settings file: logging runs on defaults
        pass

    if os.getenv("VOICE_PIPELINE_LOG_LEVEL"):
        cfg["level"] = os.environ["VOICE_PIPELINE_LOG_LEVEL"]
    if os.getenv("VOICE_PIPELINE_LOG_DIR"):
        cfg["log_dir"] = os.environ["VOICE_PIPELINE_LOG_DIR"]
    if os.getenv("VOICE_PIPELINE_JSONL_FILE"):
        cfg["jsonl_file"] = os.environ["VOICE_PIPELINE_JSONL_FILE"]
    if os.getenv("VOICE_PIPELINE_LOG_ROTATE_BYTES"):
        try:
            cfg["rotate_max_bytes"] = int(os.environ["VOICE_PIPELINE_LOG_ROTATE_BYTES"])
        except ValueError:
            pass
    if os.getenv("VOICE_PIPELINE_LOG_ROTATE_BACKUP"):
        try:
            cfg["rotate_backup_count"] = int(os.environ["VOICE_PIPELINE_LOG_ROTATE_BACKUP"])
        except ValueError:
            pass

    return cfg
