"""
Tests for structured logging and redaction.
"""
import io
import json
import logging

from stagecue.logging_config import (
    HumanFormatter,
    JSONFormatter,
    RedactingFilter,
    get_logger,
    redact,
    register_secret,
)


def capture(name, formatter):
    logger = get_logger(name)
    logger.handlers = []
    logger.propagate = False
    logger.setLevel(logging.DEBUG)
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(formatter)
    handler.addFilter(RedactingFilter())
    logger.addHandler(handler)
    return logger, stream


class TestRedaction:

    def test_authorization_header(self):
        assert redact("Authorization: Bearer abc.def") == "Authorization: Bearer [REDACTED]"

    def test_registered_secret(self):
        register_secret("wiki-token-123456")
        register_secret("short")
        assert redact("fetching with wiki-token-123456") == "fetching with [REDACTED]"
        assert redact("short stays") == "short stays"

    def test_filter_applies_args(self):
        register_secret("hunter2hunter2")
        record = logging.LogRecord("x", logging.INFO, "", 0, "key=%s", ("hunter2hunter2",), None)
        assert RedactingFilter().filter(record)
        assert record.getMessage() == "key=[REDACTED]"


class TestStructuredLogger:

    def test_trigger_record_as_json(self):
        logger, stream = capture("stagecue.test.json", JSONFormatter())
        logger.trigger("gm_question", 1, "gm_question from gm", source="gm")

        data = json.loads(stream.getvalue())
        assert data["subsystem"] == "triggers"
        assert data["trigger"] == "gm_question"
        assert data["priority"] == 1
        assert data["source"] == "gm"
        assert data["message"] == "gm_question from gm"

    def test_transition_as_text(self):
        logger, stream = capture("stagecue.test.human", HumanFormatter(use_colors=False))
        logger.transition("ACTIVE", "SLEEP", "15m GM silence")

        line = stream.getvalue()
        assert "[lifecycle]" in line
        assert "state=SLEEP" in line
        assert "ACTIVE -> SLEEP (15m GM silence)" in line

    def test_plain_records_still_format(self):
        logger, stream = capture("stagecue.test.plain", JSONFormatter())
        logger.info("hello %s", "table")
        data = json.loads(stream.getvalue())
        assert data["message"] == "hello table"
        assert "trigger" not in data
