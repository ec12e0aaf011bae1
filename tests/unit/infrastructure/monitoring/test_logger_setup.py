import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest

from callguard.infrastructure.monitoring.logger_setup import resolve_log_level, setup_logging


@pytest.fixture
def restore_root_logger():
    root_logger = logging.getLogger()
    level = root_logger.level
    yield root_logger
    # Only drop the handlers setup_logging installed; pytest manages its own
    for handler in root_logger.handlers[:]:
        if type(handler) in (logging.StreamHandler, RotatingFileHandler):
            root_logger.removeHandler(handler)
            handler.close()
    root_logger.setLevel(level)


@pytest.mark.parametrize("value, expected", [
    (None, logging.WARNING),
    ("debug", logging.DEBUG),
    (" INFO ", logging.INFO),
    (logging.ERROR, logging.ERROR),
    ("chatty", logging.WARNING),
])
def test_resolve_log_level(value, expected):
    assert resolve_log_level(value) == expected


def test_setup_logging_replaces_handlers(restore_root_logger):
    setup_logging("INFO")
    setup_logging("DEBUG")

    assert restore_root_logger.level == logging.DEBUG
    assert len(restore_root_logger.handlers) == 1


def test_setup_logging_adds_rotating_file_handler(restore_root_logger, tmp_path: Path):
    log_file = tmp_path / "callguard.log"

    setup_logging(logging.INFO, log_file=str(log_file))
    logging.getLogger("callguard.test").info("rate gate ready")
    for handler in restore_root_logger.handlers:
        handler.flush()

    file_handlers = [h for h in restore_root_logger.handlers if isinstance(h, RotatingFileHandler)]
    assert len(file_handlers) == 1
    assert "rate gate ready" in log_file.read_text()
