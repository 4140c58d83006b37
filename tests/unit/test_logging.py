"""
Unit tests for logging setup (vault_backup/__init__.py).
"""

import logging
from logging.handlers import RotatingFileHandler

import pytest

from vault_backup import configure_logging
from vault_backup.config import load_settings


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


class TestConfigureLogging:

    def test_console_only_without_log_dir(self):
        configure_logging(load_settings('production', environ={}))

        root = logging.getLogger()
        assert root.level == logging.INFO
        assert not any(isinstance(h, RotatingFileHandler) for h in root.handlers)

    def test_file_handler_with_log_dir(self, tmp_path):
        log_dir = tmp_path / 'logs'
        configure_logging(load_settings('development', environ={'LOG_DIR': str(log_dir)}))

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        file_handlers = [h for h in root.handlers if isinstance(h, RotatingFileHandler)]
        assert len(file_handlers) == 1
        assert (log_dir / 'vault-backup.log').exists()
        for handler in file_handlers:
            handler.close()
