"""Tests for structured logging module."""

import json
import logging

import structlog

from packages.structured_logging import (
    add_batch_id,
    bind_batch_id,
    get_batch_id,
    get_logger,
    setup_dev_logging,
    setup_logging,
)


def test_get_logger_works():
    """Test that get_logger returns a working logger."""
    logger = get_logger(__name__)
    # Should have logging methods
    assert hasattr(logger, 'info')
    assert hasattr(logger, 'warning')
    assert hasattr(logger, 'error')
    assert hasattr(logger, 'debug')


def test_setup_logging_default():
    """Test default logging configuration."""
    setup_logging()
    logger = get_logger("test")

    # Should not raise exception
    logger.info("test_message", key="value")


def test_setup_dev_logging():
    """Test development logging setup."""
    setup_dev_logging()
    logger = get_logger("test")

    # Should not raise exception
    logger.debug("debug_message", extra="data")


def test_logger_levels():
    """Test different log levels work."""
    setup_logging(level="DEBUG")
    logger = get_logger("test")

    logger.debug("debug")
    logger.info("info")
    logger.warning("warning")
    logger.error("error")


def test_logger_exception_logging():
    """Test logging exceptions."""
    setup_logging()
    logger = get_logger("test")

    try:
        raise ValueError("Test error")
    except ValueError:
        logger.error("exception_occurred", exc_info=True)


def test_log_file_receives_json(tmp_path):
    """Test log events are written to the log file as JSON."""
    log_file = tmp_path / "logs" / "settlement.log"
    setup_logging(level="INFO", log_file=str(log_file), json_output=True)
    try:
        get_logger("file_test").warning("fee_distributed", token="0xabc", amount=7)

        lines = log_file.read_text().strip().splitlines()
        event = json.loads(lines[-1])
        assert event["event"] == "fee_distributed"
        assert event["amount"] == 7
        assert event["level"] == "warning"
    finally:
        root = logging.getLogger()
        for handler in list(root.handlers):
            if isinstance(handler, logging.FileHandler):
                root.removeHandler(handler)
                handler.close()
        structlog.reset_defaults()


class TestBatchId:
    """Test batch ID propagation."""

    def setup_method(self):
        bind_batch_id("")

    def teardown_method(self):
        bind_batch_id("")

    def test_default_empty(self):
        assert get_batch_id() == ""

    def test_bind_batch_id(self):
        bind_batch_id("batch-42")
        assert get_batch_id() == "batch-42"

    def test_processor_adds_batch_id(self):
        """Test the processor injects the bound batch ID."""
        bind_batch_id("batch-42")

        event_dict = add_batch_id(None, "info", {"event": "ring_settled"})

        assert event_dict["batch_id"] == "batch-42"

    def test_processor_without_batch_id(self):
        """Test events outside a batch are left unchanged."""
        event_dict = add_batch_id(None, "info", {"event": "ring_settled"})

        assert "batch_id" not in event_dict
