"""
Unit Tests for logging configuration
"""
import json
import logging

import pytest

from codestream.core.logging_config import (
    CodeStreamLogger,
    ContextualFormatter,
    JSONFormatter,
    generate_generation_id,
    logger,
    set_batch_index,
    set_generation_id,
)


def _record(msg="hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord("codestream", logging.INFO, __file__, 10, msg, None, None, func="fn")
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def generation_context():
    set_generation_id("gen12345")
    set_batch_index(2)
    yield
    set_generation_id("")
    set_batch_index(0)


class TestFormatters:

    def test_json_includes_generation_context(self, generation_context):
        data = json.loads(JSONFormatter().format(_record(recovery_action="partial")))

        assert data["message"] == "hello"
        assert data["level"] == "INFO"
        assert data["generation_id"] == "gen12345"
        assert data["batch_index"] == 2
        assert data["recovery_action"] == "partial"

    def test_json_without_context(self):
        data = json.loads(JSONFormatter().format(_record()))
        assert "generation_id" not in data
        assert "batch_index" not in data

    def test_contextual_formatter(self, generation_context):
        formatter = ContextualFormatter("[%(generation_id)s#%(batch_index)s] %(message)s")
        assert formatter.format(_record()) == "[gen12345#2] hello"

    def test_contextual_formatter_placeholder(self):
        formatter = ContextualFormatter("[%(generation_id)s] %(message)s")
        assert formatter.format(_record()) == "[-] hello"


class TestCodeStreamLogger:
    """Test the structured logging helpers"""

    def test_shared_logger_class(self):
        assert isinstance(logger, CodeStreamLogger)
        assert logger.name == "codestream"

    def test_failed_recovery_is_a_warning(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="codestream"):
            logger.log_recovery_event("none", recovered=0, missing=3)
            logger.log_recovery_event("partial", recovered=2, missing=1)

        none_record, partial_record = caplog.records[-2:]
        assert none_record.levelno == logging.WARNING
        assert none_record.recovery_action == "none"
        assert partial_record.levelno == logging.INFO
        assert partial_record.missing_files == 1

    def test_stream_event_fields(self, caplog):
        with caplog.at_level(logging.INFO, logger="codestream"):
            logger.log_stream_event("complete", chars=120, chunks=4, files_detected=2)

        record = caplog.records[-1]
        assert record.stream_event == "complete"
        assert record.getMessage() == "[Stream] complete (120 chars, 4 chunks, 2 files)"

    def test_performance_threshold(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="codestream"):
            logger.log_performance("parse", 1500.0)
            logger.log_performance("parse", 10.0)

        slow, fast = caplog.records[-2:]
        assert slow.levelno == logging.WARNING
        assert slow.exceeded_threshold
        assert fast.levelno == logging.DEBUG

    def test_generation_ids_are_short(self):
        first, second = generate_generation_id(), generate_generation_id()
        assert len(first) == 8
        assert first != second
