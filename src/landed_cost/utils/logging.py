"""
Logging utilities for the landed cost engine.
"""

import logging
import sys
from pathlib import Path
from typing import Optional


def setup_logging(
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    format_string: Optional[str] = None,
) -> logging.Logger:
    """
    Set up logging for the engine, API and scripts.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file (optional)
        format_string: Custom format string for log messages

    Returns:
        Configured package logger
    """
    log_level = level or "INFO"
    level_num = getattr(logging, log_level.upper(), logging.INFO)

    if format_string is None:
        format_string = (
            "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s"
        )

    formatter = logging.Formatter(format_string)

    logger = logging.getLogger("landed_cost")
    logger.setLevel(level_num)
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level_num)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level_num)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a child of the package logger.

    Module names already under the package are used as-is, so
    ``get_logger(__name__)`` does not double the prefix.
    """
    if name == "landed_cost" or name.startswith("landed_cost."):
        return logging.getLogger(name)
    return logging.getLogger(f"landed_cost.{name}")
