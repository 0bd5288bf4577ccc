"""Tests for numeric log levels, filtering and JSONL output."""
from __future__ import annotations

import io
import json
import logging
from unittest.mock import patch

import pytest

from voice_pipeline.core.logging import (
    JsonlFormatter,
    LogLevel,
    coerce_level,
    configure_logging,
    debug,
    error,
    fail,
    get_level_name,
    get_logger,
    get_request_id,
    info,
    set_request_id,
    success,
    trace,
    verbose,
    warn,
)


@pytest.fixture(autouse=True)
def _isolated_logging(monkeypatch, tmp_path):
    """Keep the settings file and env out of these tests, and restore NORMAL afterwards."""
    monkeypatch.setenv("VOICE_PIPELINE_SETTINGS", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("VOICE_PIPELINE_LOG_LEVEL", raising=False)
    monkeypatch.delenv("VOICE_PIPELINE_LOG_DIR", raising=False)
    yield
    configure_logging(level=2, force=True)


def _capture(level):
    captured = io.StringIO()
    with patch("sys.stdout", captured):
        configure_logging(level=level, force=True)
    return captured


class TestLogLevelEnum:
    def test_values(self):
        assert LogLevel.MINIMAL == 1
        assert LogLevel.NORMAL == 2
        assert LogLevel.VERBOSE == 3
        assert LogLevel.DEBUG == 4

    def test_ordering(self):
        assert LogLevel.MINIMAL < LogLevel.NORMAL < LogLevel.VERBOSE < LogLevel.DEBUG


class TestLevelCoercion:
    """coerce_level accepts ints, names and Python levels."""

    def test_from_int(self):
        assert coerce_level(1) == LogLevel.MINIMAL
        assert coerce_level(4) == LogLevel.DEBUG

    def test_from_names(self):
        assert coerce_level("verbose") == LogLevel.VERBOSE
        assert coerce_level(" DEBUG ") == LogLevel.DEBUG
        assert coerce_level("3") == LogLevel.VERBOSE

    def test_from_python_levels(self):
        """Standard logging names and numbers map onto the four levels."""
        assert coerce_level("INFO") == LogLevel.NORMAL
        assert coerce_level("WARNING") == LogLevel.MINIMAL
        assert coerce_level(logging.WARNING) == LogLevel.MINIMAL
        assert coerce_level(logging.INFO) == LogLevel.NORMAL
        assert coerce_level(logging.DEBUG) == LogLevel.DEBUG

    def test_invalid_defaults_to_normal(self):
        assert coerce_level("chatty") == LogLevel.NORMAL
        assert coerce_level(None) == LogLevel.NORMAL
        assert coerce_level(2.5) == LogLevel.NORMAL


class TestLevelFiltering:
    """Messages above the configured level are suppressed."""

    def test_minimal(self):
        captured = _capture(1)
        log = get_logger("test-minimal")
        info(log, "info message")
        error(log, "error message")

        output = captured.getvalue()
        assert "error message" in output
        assert "info message" not in output
        assert get_level_name() == "MINIMAL"

    def test_normal(self):
        captured = _capture(2)
        log = get_logger("test-normal")
        warn(log, "circuit_opened", provider="cloudPrimary")
        verbose(log, "retry_scheduled")

        output = captured.getvalue()
        assert "circuit_opened" in output
        assert "provider=cloudPrimary" in output
        assert "retry_scheduled" not in output

    def test_verbose(self):
        captured = _capture(3)
        log = get_logger("test-verbose")
        verbose(log, "stage", event="decode", seconds=0.02)
        debug(log, "internal")

        output = captured.getvalue()
        assert "stage" in output
        assert "event=decode" in output
        assert "0.020s" in output
        assert "internal" not in output

    def test_debug_shows_everything(self):
        captured = _capture(4)
        log = get_logger("test-debug")
        debug(log, "debug message")
        trace(log, "trace message")

        output = captured.getvalue()
        assert "debug message" in output
        assert "trace message" in output


class TestRequestId:
    def test_request_id_in_console_line(self):
        """The active request id is printed next to the tag."""
        captured = _capture(2)
        set_request_id("a1b2c3")
        try:
            info(get_logger("test-rid"), "synthesis_started")
        finally:
            set_request_id("-")

        assert "(a1b2c3)" in captured.getvalue()
        assert get_request_id() == "-"


class TestJsonlFormatter:
    """One JSON object per record."""

    def _record(self, **extra):
        record = logging.LogRecord("voice-pipeline.test", logging.INFO, __file__, 1, "synthesis_complete", None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_fields(self):
        record = self._record(
            tag="SUCCESS",
            numeric_level=2,
            request_id="rid-1",
            event="call",
            seconds=0.5,
            extra_data={"provider": "cloudPrimary", "credits": 5},
        )
        payload = json.loads(JsonlFormatter().format(record))

        assert payload["message"] == "synthesis_complete"
        assert payload["tag"] == "SUCCESS"
        assert payload["level"] == 2
        assert payload["request_id"] == "rid-1"
        assert payload["event"] == "call"
        assert payload["seconds"] == 0.5
        assert payload["extra"] == {"provider": "cloudPrimary", "credits": 5}
        assert "ts" in payload

    def test_optional_fields_omitted(self):
        """Plain records carry no event, seconds or extra keys."""
        payload = json.loads(JsonlFormatter().format(self._record()))
        assert payload["request_id"] == "-"
        assert payload["tag"] == "INFO"
        assert "event" not in payload
        assert "extra" not in payload

    def test_zero_seconds_kept_empty_extra_dropped(self):
        """A zero timing is a real measurement; an empty field dict is not."""
        payload = json.loads(JsonlFormatter().format(self._record(seconds=0.0, extra_data={})))
        assert payload["seconds"] == 0.0
        assert "extra" not in payload

    def test_helper_levels_reach_file(self, monkeypatch, tmp_path):
        """Each helper stamps its tag and pipeline level on the JSONL record."""
        monkeypatch.setenv("VOICE_PIPELINE_LOG_DIR", str(tmp_path / "logs"))
        monkeypatch.setenv("VOICE_PIPELINE_JSONL_FILE", "helpers.jsonl")
        _capture(4)
        log = get_logger("voice-pipeline.test")

        success(log, "clone_done")
        fail(log, "clone_failed")
        verbose(log, "stage", event="decode", seconds=0.02)
        for handler in logging.getLogger().handlers:
            handler.flush()

        lines = (tmp_path / "logs" / "helpers.jsonl").read_text(encoding="utf-8").splitlines()
        records = [json.loads(line) for line in lines]
        assert [(r["tag"], r["level"]) for r in records] == [("SUCCESS", 2), ("FAIL", 1), ("INFO", 3)]
        assert records[2]["event"] == "decode"

    def test_file_output(self, monkeypatch, tmp_path):
        """With log_dir set, records also land in a JSONL file."""
        monkeypatch.setenv("VOICE_PIPELINE_LOG_DIR", str(tmp_path / "logs"))
        monkeypatch.setenv("VOICE_PIPELINE_JSONL_FILE", "test.jsonl")
        _capture(2)
        warn(get_logger("test-file"), "provider_retry", attempt=2)
        for handler in logging.getLogger().handlers:
            handler.flush()

        lines = (tmp_path / "logs" / "test.jsonl").read_text(encoding="utf-8").splitlines()
        payload = json.loads(lines[-1])
        assert payload["message"] == "provider_retry"
        assert payload["tag"] == "WARN"
        assert payload["extra"] == {"attempt": 2}
