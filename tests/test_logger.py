"""Tests for logging setup."""

import io
import json
import sys

import pytest

from previewctl.logger import get_logger


def test_log_lines_follow_the_current_stderr(monkeypatch: pytest.MonkeyPatch) -> None:
    logger = get_logger("previewctl.tests")
    first, second = io.StringIO(), io.StringIO()

    monkeypatch.setattr(sys, "stderr", first)
    logger.error("first event")
    first.close()
    monkeypatch.setattr(sys, "stderr", second)
    logger.error("second event", preview_name="pr-1-main")

    line = second.getvalue().strip().splitlines()[-1]
    assert "second event" in line
    assert "pr-1-main" in line


def test_json_lines_carry_level_and_timestamp(monkeypatch: pytest.MonkeyPatch) -> None:
    stream = io.StringIO()
    monkeypatch.setattr(sys, "stderr", stream)

    get_logger("previewctl.tests").error("boom", step="kv_namespaces")

    entry = json.loads(stream.getvalue().strip().splitlines()[-1])
    assert entry["event"] == "boom"
    assert entry["level"] == "error"
    assert entry["step"] == "kv_namespaces"
    assert "timestamp" in entry
