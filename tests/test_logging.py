"""Tests for structured logging setup."""

from __future__ import annotations

import json
import logging

import pytest
import structlog

from rx_caller.core.logging import get_logger, setup_logging


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
    structlog.reset_defaults()


def _json_lines(output: str) -> list[dict]:
    return [json.loads(line) for line in output.splitlines() if line.startswith("{")]


class TestSetupLogging:
    def test_json_entries_carry_context(self, capsys, restore_logging):
        setup_logging(level="INFO", json_output=True, environment="test")

        get_logger("rx_caller.tests").info("Call dispatched", call_id="abc")

        entry = _json_lines(capsys.readouterr().out)[-1]
        assert entry["event"] == "Call dispatched"
        assert entry["call_id"] == "abc"
        assert entry["environment"] == "test"
        assert entry["level"] == "info"
        assert entry["logger"] == "rx_caller.tests"
        assert "timestamp" in entry

    def test_stdlib_records_use_same_format(self, capsys, restore_logging):
        setup_logging(level="INFO", json_output=True)

        logging.getLogger("rx_caller.tests.stdlib").warning("Server shutting down")

        entry = _json_lines(capsys.readouterr().out)[-1]
        assert entry["event"] == "Server shutting down"
        assert entry["level"] == "warning"
        assert entry["logger"] == "rx_caller.tests.stdlib"
        assert "environment" not in entry

    def test_level_filters_lower_entries(self, capsys, restore_logging):
        setup_logging(level="WARNING", json_output=True)

        log = get_logger("rx_caller.tests.level")
        log.info("hidden")
        log.warning("shown")

        events = [entry["event"] for entry in _json_lines(capsys.readouterr().out)]
        assert "hidden" not in events
        assert "shown" in events

    def test_http_client_logs_are_quiet(self, restore_logging):
        setup_logging(level="INFO")

        assert logging.getLogger("httpx").level == logging.WARNING
