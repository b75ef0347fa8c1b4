"""Structured logging configuration for the submission monitor."""

import logging
import sys
from pathlib import Path
from typing import Optional


DEFAULT_LOG_DIR = Path("logs")
DEFAULT_LOG_FILE = "submission_monitor.log"
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOGGER_NAMESPACE = "submission_monitor"


def setup_logging(
    log_file: Optional[Path] = None,
    log_dir: Optional[Path] = None,
    level: int = logging.INFO,
    console: bool = True,
    format_string: Optional[str] = None,
) -> logging.Logger:
    """Configure structured logging for the submission monitor.

    Args:
        log_file: Path to log file. A relative path is taken from ``log_dir``
            when one is given, otherwise from the working directory.
        log_dir: Directory for the default log file (default: logs/)
        level: Logging level (default: INFO)
        console: Whether to also log to console (default: True)
        format_string: Custom log format string

    Returns:
        The namespace root logger
    """
    if log_file is None:
        log_file = Path(log_dir or DEFAULT_LOG_DIR) / DEFAULT_LOG_FILE
    elif log_dir is not None and not log_file.is_absolute():
        log_file = Path(log_dir) / log_file

    log_file.parent.mkdir(parents=True, exist_ok=True)

    fmt = format_string or DEFAULT_FORMAT
    formatter = logging.Formatter(fmt, datefmt=DEFAULT_DATE_FORMAT)

    logger = logging.getLogger(LOGGER_NAMESPACE)
    logger.setLevel(level)

    # Remove existing handlers to avoid duplicates on repeated setup
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    logger.propagate = False

    logger.info(f"Logging initialized: {log_file}")
    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for a specific module.

    Args:
        name: Logger name (typically module name)

    Returns:
        Logger instance under the submission_monitor namespace
    """
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")
