"""
Unit tests for logging configuration and setup.
"""

import logging

import pytest

from main import setup_logging


@pytest.fixture(autouse=True)
def reset_root_logger():
    """Leave the root logger as we found it."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)


class TestSetupLogging:
    """Test setup_logging function."""

    def test_basic_logging_config(self):
        """Stream logging at the configured level."""
        setup_logging({"logging": {"level": "DEBUG"}})

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert any(isinstance(h, logging.StreamHandler) for h in root.handlers)

    def test_invalid_log_level_defaults_to_info(self):
        setup_logging({"logging": {"level": "INVALID_LEVEL"}})
        assert logging.getLogger().level == logging.INFO

    def test_missing_logging_config_uses_defaults(self):
        setup_logging({})
        assert logging.getLogger().level == logging.INFO

    def test_file_logging_enabled(self, tmp_path):
        """A FileHandler is added and parent directories are created."""
        log_file = tmp_path / "logs" / "finance.log"
        setup_logging({"logging": {"level": "INFO", "file": str(log_file)}})

        logging.getLogger("tests").info("hello from the test")
        for handler in logging.getLogger().handlers:
            handler.flush()

        file_handlers = [h for h in logging.getLogger().handlers if isinstance(h, logging.FileHandler)]
        assert len(file_handlers) == 1
        assert "hello from the test" in log_file.read_text()

    def test_log_format_is_applied(self):
        fmt = "%(levelname)s|%(message)s"
        setup_logging({"logging": {"level": "INFO", "format": fmt}})
        assert logging.getLogger().handlers[0].formatter._fmt == fmt
