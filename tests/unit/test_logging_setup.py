"""L1 Unit Tests: logging setup."""

import logging

import pytest

from storymem.logging import setup_logging


@pytest.fixture
def clean_logger():
    root = logging.getLogger("storymem")
    saved = list(root.handlers), root.level
    for h in list(root.handlers):
        root.removeHandler(h)
    yield root
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()
    for h in saved[0]:
        root.addHandler(h)
    root.setLevel(saved[1])


class TestSetupLogging:
    def test_console_and_file_handlers(self, clean_logger, tmp_path):
        log_file = tmp_path / "logs" / "storymem.log"
        root = setup_logging("debug", log_file)

        assert root is clean_logger
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 2
        logging.getLogger("storymem.memory.manager").info("[MemoryManager] hello")
        for h in root.handlers:
            h.flush()
        assert "[MemoryManager] hello" in log_file.read_text(encoding="utf-8")

    def test_idempotent(self, clean_logger, tmp_path):
        setup_logging("INFO", tmp_path / "a.log")
        setup_logging("WARNING", tmp_path / "a.log")
        assert len(clean_logger.handlers) == 2
        assert clean_logger.level == logging.WARNING

    def test_console_only(self, clean_logger):
        setup_logging("INFO", "")
        assert len(clean_logger.handlers) == 1

    def test_unknown_level_defaults_to_info(self, clean_logger):
        setup_logging("chatty")
        assert clean_logger.level == logging.INFO
