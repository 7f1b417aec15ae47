"""Tests for log formatting."""

import io
import json
import logging

import pytest

from ark.logging import build_formatter


@pytest.fixture
def capture():
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    logger = logging.getLogger("ark.tests.logging")
    logger.handlers = [handler]
    logger.propagate = False
    logger.setLevel(logging.INFO)
    yield logger, handler, stream
    logger.handlers = []
    logger.propagate = True


def test_json_lines_carry_level_logger_and_message(capture):
    logger, handler, stream = capture
    handler.setFormatter(build_formatter("json"))

    logger.info("Instance %s is %s", "abc", "running")

    line = json.loads(stream.getvalue().strip())
    assert line["event"] == "Instance abc is running"
    assert line["level"] == "info"
    assert line["logger"] == "ark.tests.logging"
    assert "timestamp" in line


def test_json_lines_render_exceptions_as_a_field(capture):
    logger, handler, stream = capture
    handler.setFormatter(build_formatter("json"))

    try:
        raise RuntimeError("jenkins went away")
    except RuntimeError:
        logger.exception("Reconcile failed")

    output = stream.getvalue().strip()
    assert len(output.splitlines()) == 1
    line = json.loads(output)
    assert "RuntimeError: jenkins went away" in line["exception"]


def test_text_format_is_not_json(capture):
    logger, handler, stream = capture
    handler.setFormatter(build_formatter("text"))

    logger.warning("Mesh directory degraded")

    output = stream.getvalue()
    assert "Mesh directory degraded" in output
    with pytest.raises(ValueError):
        json.loads(output)
