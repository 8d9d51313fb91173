"""
Unit Tests: Structured Logging

Tests:
    - JSON output with extra fields
    - Context propagation via log_context
    - setup_logging level handling
"""

import io
import json
import logging

import pytest

from syncmesh.observability import (
    JsonFormatter,
    LogLevel,
    current_log_context,
    log_context,
    setup_logging,
)


@pytest.fixture
def json_logger():
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(JsonFormatter())
    logger = logging.getLogger("syncmesh.tests.json")
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    yield logger, stream
    logger.removeHandler(handler)


def _lines(stream):
    return [json.loads(line) for line in stream.getvalue().splitlines()]


class TestJsonFormatter:

    def test_extra_fields_are_included(self, json_logger):
        logger, stream = json_logger
        logger.info("Sync operation completed", extra={"operation_id": "op1", "target": "A"})

        (line,) = _lines(stream)
        assert line["message"] == "Sync operation completed"
        assert line["level"] == "INFO"
        assert line["logger"] == "syncmesh.tests.json"
        assert line["operation_id"] == "op1"
        assert line["target"] == "A"
        assert "@timestamp" in line

    def test_context_fields_are_merged(self, json_logger):
        logger, stream = json_logger
        with log_context(sync_cycle="c1"):
            with log_context(attempt=2):
                assert current_log_context() == {"sync_cycle": "c1", "attempt": 2}
                logger.warning("inside")
            logger.warning("outer")
        logger.warning("outside")

        inner, outer, outside = _lines(stream)
        assert (inner["sync_cycle"], inner["attempt"]) == ("c1", 2)
        assert "attempt" not in outer
        assert "sync_cycle" not in outside
        assert current_log_context() == {}

    def test_exception_is_serialized(self, json_logger):
        logger, stream = json_logger
        try:
            raise RuntimeError("adapter exploded")
        except RuntimeError:
            logger.exception("Adapter raised")

        (line,) = _lines(stream)
        assert "adapter exploded" in line["exception"]


class TestSetupLogging:

    def test_accepts_level_names(self):
        stream = io.StringIO()
        root = logging.getLogger()
        saved = (root.level, list(root.handlers))
        try:
            setup_logging("warning", json_output=False, stream=stream)
            assert root.level == LogLevel.WARNING
            logging.getLogger("syncmesh.tests.plain").info("hidden")
            logging.getLogger("syncmesh.tests.plain").error("shown")
            output = stream.getvalue()
            assert "shown" in output and "hidden" not in output
        finally:
            root.setLevel(saved[0])
            root.handlers[:] = saved[1]
