"""
Tests for structured logging configuration
"""

import io
import json
import logging

from bank_crm.logging_config import JSONFormatter, setup_logging, get_logger, log_action


def _stream_logger(name, formatter):
    """Logger writing into a StringIO with the given formatter"""
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(formatter)
    logger = logging.getLogger(name)
    logger.handlers = [handler]
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    return logger, stream


class TestJSONFormatter:
    """Test JSON log output"""

    def test_log_action_fields_are_serialized(self):
        logger, stream = _stream_logger("bank_crm.test.json", JSONFormatter())

        log_action(logger, "warning", "Insufficient balance.",
                   action="transfer_funds", resource="account:ACC001",
                   extra={"outcome": "insufficient_funds"})

        entry = json.loads(stream.getvalue())
        assert entry["level"] == "WARNING"
        assert entry["logger"] == "bank_crm.test.json"
        assert entry["message"] == "Insufficient balance."
        assert entry["action"] == "transfer_funds"
        assert entry["resource"] == "account:ACC001"
        assert entry["extra"] == {"outcome": "insufficient_funds"}
        assert "timestamp" in entry

    def test_missing_fields_are_omitted(self):
        logger, stream = _stream_logger("bank_crm.test.plain", JSONFormatter())

        logger.info("plain message")

        entry = json.loads(stream.getvalue())
        assert entry["message"] == "plain message"
        assert "action" not in entry
        assert "extra" not in entry

    def test_exception_is_included(self):
        logger, stream = _stream_logger("bank_crm.test.exc", JSONFormatter())

        try:
            raise RuntimeError("boom")
        except RuntimeError:
            logger.exception("failed")

        entry = json.loads(stream.getvalue())
        assert "RuntimeError: boom" in entry["exception"]


class TestSetupLogging:
    """Test logger setup"""

    def test_setup_is_idempotent(self):
        setup_logging(logger_name="bank_crm.test.setup")
        logger = setup_logging(level="debug", logger_name="bank_crm.test.setup")

        assert len(logger.handlers) == 1
        assert logger.level == logging.DEBUG
        assert logger.propagate is False
        assert isinstance(logger.handlers[0].formatter, JSONFormatter)

    def test_text_format(self):
        logger = setup_logging(logger_name="bank_crm.test.text", log_format="text")

        assert not isinstance(logger.handlers[0].formatter, JSONFormatter)

    def test_log_action_respects_level(self):
        logger, stream = _stream_logger("bank_crm.test.level", JSONFormatter())
        logger.setLevel(logging.WARNING)

        log_action(logger, "info", "ignored", action="add_staff")

        assert stream.getvalue() == ""

    def test_get_logger(self):
        assert get_logger("bank_crm.storage") is logging.getLogger("bank_crm.storage")
