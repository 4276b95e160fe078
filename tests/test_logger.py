"""Tests for logger setup."""

import logging

from bkeeper.utils.logger import setup_logger


def test_console_handler_only():
    logger = setup_logger("bkeeper.test.console", logging.WARNING)
    assert len(logger.handlers) == 1
    assert logger.handlers[0].level == logging.WARNING


def test_repeated_setup_replaces_handlers(tmp_path):
    setup_logger("bkeeper.test.repeat", logging.INFO, log_file=tmp_path / "a.log")
    logger = setup_logger("bkeeper.test.repeat", logging.INFO, log_file=tmp_path / "b.log")
    assert len(logger.handlers) == 2
    assert logger.handlers[1].baseFilename == str(tmp_path / "b.log")


def test_file_keeps_debug_messages(tmp_path):
    log_file = tmp_path / "logs" / "bkeeper.log"
    logger = setup_logger("bkeeper.test.file", logging.WARNING, log_file=log_file)

    logger.debug("Kvarantän av post 7")
    for handler in logger.handlers:
        handler.flush()

    assert "Kvarantän av post 7" in log_file.read_text(encoding="utf-8")
    assert "DEBUG" in log_file.read_text(encoding="utf-8")
