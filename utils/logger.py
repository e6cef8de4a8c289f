"""
Logging utilities for the authentication subsystem.
Every line carries the thread name, since the login flow runs on
timer, listener and request threads at once.
"""
import logging
import os
import sys
from typing import Optional


class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors for console output."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        # Records are shared between handlers, color a copy only
        if record.levelname in self.COLORS:
            record = logging.makeLogRecord(record.__dict__)
            record.levelname = f"{self.COLORS[record.levelname]}{record.levelname}{self.RESET}"
        return super().format(record)


LOG_FORMAT = '%(asctime)s - %(name)s - [%(threadName)s] - %(levelname)s - %(message)s'


def setup_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Setup a logger with consistent formatting.

    Args:
        name: Logger name (typically __name__)
        level: Logging level name, falls back to LOG_LEVEL then INFO

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    level_name = (level or os.getenv('LOG_LEVEL') or 'INFO').upper()
    log_level = getattr(logging, level_name, logging.INFO)
    logger.setLevel(log_level)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)

    if sys.stdout.isatty():
        formatter = ColoredFormatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')
    else:
        formatter = logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')
    console_handler.setFormatter(formatter)

    logger.addHandler(console_handler)

    return logger


def mask_secret(value: Optional[str], visible: int = 4) -> str:
    """
    Shorten a token or code for log output.

    Args:
        value: Secret value (may be None)
        visible: Number of leading characters to keep

    Returns:
        Masked representation, e.g. 'AQBx…(212)'
    """
    if not value:
        return '<none>'
    if len(value) <= visible:
        return '*' * len(value)
    return f"{value[:visible]}…({len(value)})"
