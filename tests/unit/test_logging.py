"""
tests/unit/test_logging.py — Structured logging setup
"""

from __future__ import annotations

import json
import logging

import pytest
import structlog

from parley.observability.logger import (
    bind_conversation,
    clear_conversation,
    get_logger,
    setup_logging,
)


@pytest.fixture
def log_file(tmp_path):
    setup_logging(level="INFO", log_dir=tmp_path, json_format=True, console_output=False)
    yield tmp_path / "parley.log"
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()
    logging.basicConfig(handlers=[logging.NullHandler()], force=True)


def _records(path) -> list[dict]:
    for handler in logging.getLogger().handlers:
        handler.flush()
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line]


class TestLogging:
    def test_json_lines_written(self, log_file):
        get_logger("parley.test").info("test.event", answer=42)

        record = _records(log_file)[-1]
        assert record["event"] == "test.event"
        assert record["answer"] == 42
        assert record["level"] == "info"
        assert record["logger"] == "parley.test"
        assert "timestamp" in record

    def test_level_filters(self, log_file):
        log = get_logger("parley.test")
        log.debug("test.hidden")
        log.info("test.shown")
        assert [r["event"] for r in _records(log_file)] == ["test.shown"]

    def test_conversation_context(self, log_file):
        log = get_logger("parley.test")

        bind_conversation("conv_abc", handle="conv_web")
        log.info("test.inside")
        clear_conversation()
        log.info("test.outside")

        inside, outside = _records(log_file)[-2:]
        assert inside["conversation_id"] == "conv_abc"
        assert inside["handle"] == "conv_web"
        assert "conversation_id" not in outside

    def test_initial_values_bound(self, log_file):
        get_logger("parley.test", component="binder").info("test.bound")
        assert _records(log_file)[-1]["component"] == "binder"

    def test_no_file_when_log_dir_none(self, tmp_path):
        setup_logging(log_dir=None, console_output=False)
        try:
            get_logger("parley.test").info("test.nowhere")
            assert not list(tmp_path.iterdir())
        finally:
            structlog.reset_defaults()
            logging.basicConfig(handlers=[logging.NullHandler()], force=True)
