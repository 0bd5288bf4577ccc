"""
Logging for the voice pipeline.

Every module logs through a named logger and the helpers below, passing
structured fields as keyword arguments:

    _LOG = get_logger("voice-pipeline.billing")
    info(_LOG, "deduct_refused", user_id="u1", amount=280, balance=20)
    verbose(_LOG, "stage", event="decode", seconds=0.02)

Two sinks are installed on first use. The console gets colored,
human-readable lines filtered by the pipeline level. A rotating JSONL
file is written under log_dir when one is configured and receives
everything.

Pipeline levels run from 1 (MINIMAL: failures only) through 2 (NORMAL,
the default), 3 (VERBOSE: stage timings, retries) to 4 (DEBUG). The level
comes from VOICE_PIPELINE_LOG_LEVEL, else the logging section of
settings.yaml. VOICE_PIPELINE_NO_COLOR=1 or NO_COLOR turns colors off.

Each record carries the current request id (see set_request_id), so one
synthesis or clone can be followed through retries and billing.
"""
from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

from .levels import LogLevel, LEVEL_MAP, LEVEL_NAMES, coerce_level
from .colors import Colors, supports_color, get_tag_color
from .context import (
    get_request_id,
    set_request_id,
    get_level,
    set_level,
    get_level_name,
    is_configured,
    set_configured,
    get_log_config,
    set_log_config,
    read_logging_config,
)
from .formatters import JsonlFormatter, ColoredConsoleFormatter

# Read by the formatters on every record; tests may flip it
_USE_COLORS = supports_color()

# Below DEBUG so trace() records reach the handlers, which do the filtering
_ROOT_LEVEL = logging.DEBUG - 10
_TRACE = logging.DEBUG - 5

_DEFAULT_ROTATE_BYTES = 10 * 1024 * 1024
_DEFAULT_ROTATE_BACKUPS = 5


def _console_handler(python_level: int) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(python_level)
    handler.setFormatter(ColoredConsoleFormatter())
    return handler


def _jsonl_handler(log_config: dict) -> Optional[logging.Handler]:
    """Rotating JSONL file under log_dir, or None when no directory is set."""
    log_dir = log_config.get("log_dir")
    if not log_dir:
        return None

    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        directory / str(log_config.get("jsonl_file", "voice-pipeline.jsonl")),
        maxBytes=int(log_config.get("rotate_max_bytes", _DEFAULT_ROTATE_BYTES)),
        backupCount=int(log_config.get("rotate_backup_count", _DEFAULT_ROTATE_BACKUPS)),
        encoding="utf-8",
        delay=True,
    )
    handler.setLevel(_ROOT_LEVEL)
    handler.setFormatter(JsonlFormatter())
    return handler


def configure_logging(level: Optional[int | str | LogLevel] = None, force: bool = False) -> None:
    """
    Install the console handler, and the JSONL file handler when a log
    directory is configured. Later calls are no-ops unless force is set.

    Args:
        level: Pipeline level as 1-4, a level name or a LogLevel. Falls back
            to VOICE_PIPELINE_LOG_LEVEL, then settings.yaml, then NORMAL.
        force: Rebuild the handlers even if logging is already configured.
    """
    global _USE_COLORS

    if is_configured() and not force:
        return

    _USE_COLORS = supports_color()

    log_config = read_logging_config()
    set_log_config(log_config)

    pipeline_level = coerce_level(level or log_config.get("level", LogLevel.NORMAL))
    set_level(pipeline_level)

    root = logging.getLogger()
    root.setLevel(_ROOT_LEVEL)
    root.handlers = [_console_handler(LEVEL_MAP.get(pipeline_level, logging.INFO))]
    jsonl = _jsonl_handler(log_config)
    if jsonl is not None:
        root.addHandler(jsonl)

    # httpx logs every request at INFO; keep it out of the pipeline's stream
    logging.getLogger("httpx").setLevel(logging.WARNING)

    set_configured(True)


def get_logger(name: str = "voice-pipeline") -> logging.Logger:
    """Named logger; the first call configures logging from the environment."""
    configure_logging()
    return logging.getLogger(name)


# helper -> (stdlib level, console tag, pipeline level that must be enabled)
_ROUTES = {
    "info": (logging.INFO, "INFO", LogLevel.NORMAL),
    "warn": (logging.WARNING, "WARN", LogLevel.NORMAL),
    "success": (logging.INFO, "SUCCESS", LogLevel.NORMAL),
    "error": (logging.ERROR, "ERROR", LogLevel.MINIMAL),
    "fail": (logging.ERROR, "FAIL", LogLevel.MINIMAL),
    "verbose": (logging.DEBUG, "INFO", LogLevel.VERBOSE),
    "debug": (logging.DEBUG, "DEBUG", LogLevel.DEBUG),
    "trace": (_TRACE, "TRACE", LogLevel.DEBUG),
}


def _emit(route: str, logger: logging.Logger, msg: str, fields: dict) -> None:
    python_level, tag, needed = _ROUTES[route]
    if needed > get_level():
        return

    # event and seconds get their own columns; the rest is key=value data
    event = fields.pop("event", None)
    seconds = fields.pop("seconds", None)
    logger.log(
        python_level,
        msg,
        extra={
            "tag": tag,
            "request_id": get_request_id(),
            "event": event,
            "seconds": seconds,
            "extra_data": fields or None,
            "numeric_level": int(needed),
        },
    )


def info(logger: logging.Logger, msg: str, **fields: Any) -> None:
    """Request lifecycle and state changes."""
    _emit("info", logger, msg, fields)


def warn(logger: logging.Logger, msg: str, **fields: Any) -> None:
    """Degraded but handled: retries, refusals, fallbacks."""
    _emit("warn", logger, msg, fields)


def error(logger: logging.Logger, msg: str, **fields: Any) -> None:
    _emit("error", logger, msg, fields)


def success(logger: logging.Logger, msg: str, **fields: Any) -> None:
    """A request or operation completed."""
    _emit("success", logger, msg, fields)


def fail(logger: logging.Logger, msg: str, **fields: Any) -> None:
    """A request ended in an error the caller will see."""
    _emit("fail", logger, msg, fields)


def verbose(logger: logging.Logger, msg: str, **fields: Any) -> None:
    """Stage timings and retry detail, shown from level 3."""
    _emit("verbose", logger, msg, fields)


def debug(logger: logging.Logger, msg: str, **fields: Any) -> None:
    _emit("debug", logger, msg, fields)


def trace(logger: logging.Logger, msg: str, **fields: Any) -> None:
    _emit("trace", logger, msg, fields)


__all__ = [
    "LogLevel",
    "LEVEL_MAP",
    "LEVEL_NAMES",
    "coerce_level",
    "Colors",
    "supports_color",
    "get_tag_color",
    "get_request_id",
    "set_request_id",
    "get_level",
    "set_level",
    "get_level_name",
    "get_log_config",
    "JsonlFormatter",
    "ColoredConsoleFormatter",
    "configure_logging",
    "get_logger",
    "info",
    "warn",
    "error",
    "success",
    "fail",
    "verbose",
    "debug",
    "trace",
]
