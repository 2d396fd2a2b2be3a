"""Logging configuration for CloudBox.

Every module logs through a child of the "cloudbox" logger. The CLI calls
setup_logging once; library users may configure logging themselves instead.
"""

import logging
import sys
from pathlib import Path

from cloudbox.config import Config

LOGGER_NAME = "cloudbox"

# PIL logs every PNG chunk at DEBUG when a QR image is saved
_NOISY_LOGGERS = ("PIL",)

_logger: logging.Logger | None = None


def setup_logging(config: Config, level: str | None = None) -> logging.Logger:
    """Set up the "cloudbox" logger based on configuration.

    Idempotent: a second call returns the logger configured by the first.

    Args:
        config: Configuration object with log settings.
        level: Overrides config.log_level (e.g. from --verbose).

    Returns:
        Configured logger instance.
    """
    global _logger

    if _logger is not None:
        return _logger

    logger = logging.getLogger(LOGGER_NAME)
    level_name = (level or config.log_level).upper()
    logger.setLevel(getattr(logging, level_name, logging.INFO))
    logger.handlers.clear()

    # 2026-01-27 10:30:45 [INFO] cloudbox.registry: message
    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    # stdout carries command output (decoded QR codes, cipher hex)
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    logger.propagate = False
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _logger = logger
    return logger


def reset_logging() -> None:
    """Reset logging state. Used for testing."""
    global _logger
    if _logger is not None:
        _logger.handlers.clear()
        _logger.propagate = True
        _logger.setLevel(logging.NOTSET)
        _logger = None
