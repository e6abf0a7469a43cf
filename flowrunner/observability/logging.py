"""
Observability Logging

Configures logging for processes embedding the engine.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from flowrunner.config import settings


def setup_logging(log_dir: Optional[str] = None, level: Optional[str] = None) -> Path:
    """
    Configure logging for the application.

    Logs to both console and file (with rotation).

    Args:
        log_dir: Directory for the log file (defaults to settings.LOG_DIR)
        level: Console log level (defaults to settings.LOG_LEVEL)

    Returns:
        Path of the log file
    """
    logs_dir = Path(log_dir or settings.LOG_DIR)
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_file = logs_dir / "flowrunner.log"

    detailed_formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(detailed_formatter)
    console_handler.setLevel(level or settings.LOG_LEVEL)

    # 10 MB max, keep 5 backups
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setFormatter(detailed_formatter)
    file_handler.setLevel(logging.DEBUG)

    logging.basicConfig(
        level=logging.DEBUG,
        handlers=[console_handler, file_handler],
        force=True,
    )

    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(
        f"📝 Logging initialized for {settings.PROJECT_NAME} {settings.VERSION} - logs saved to: {log_file.absolute()}"
    )
    return log_file
