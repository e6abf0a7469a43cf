"""
Unit tests for logging setup and timezone helpers
"""

import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

import pytest

from flowrunner.observability.logging import setup_logging
from flowrunner.utils.timezone import get_local_now, to_local


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)


class TestSetupLogging:
    """Test logging configuration"""

    def test_writes_rotating_log_file(self, tmp_path, restore_root_logger):
        log_file = setup_logging(str(tmp_path / "logs"), level="WARNING")

        file_handlers = [h for h in restore_root_logger.handlers if isinstance(h, RotatingFileHandler)]
        assert log_file == tmp_path / "logs" / "flowrunner.log"
        assert log_file.exists()
        assert len(file_handlers) == 1
        assert file_handlers[0].maxBytes == 10 * 1024 * 1024
        assert "Logging initialized for flowrunner 1.0.0" in log_file.read_text(encoding="utf-8")


class TestTimezone:
    """Test timezone helpers"""

    def test_local_now_is_aware(self):
        assert get_local_now().tzinfo is not None

    def test_naive_treated_as_utc(self):
        naive = datetime(2026, 1, 1, 12, 0)

        converted = to_local(naive)

        assert converted == datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert converted.tzinfo is not None
