"""Unified logging configuration for design_qa."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .config import LOG_DIR

# Prevent duplicate handlers
_configured_loggers: set[str] = set()


def setup_logger(
    name: str = "design_qa",
    filename: Optional[str] = "design_qa.log",
    level: int = logging.INFO,
) -> logging.Logger:
    """Setup a logger with file and console handlers.

    Args:
        name: Logger name. Module loggers under ``design_qa.*`` propagate here.
        filename: Log file name under LOG_DIR, or None for console only.
        level: Level applied to the logger and its handlers.

    Returns:
        Configured logger instance
    """
    if name in _configured_loggers:
        return logging.getLogger(name)

    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False  # Prevent duplicate logs

    if filename:
        log_dir = Path(LOG_DIR)
        log_dir.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_dir / filename, encoding="utf-8")
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(
            "%(asctime)s [%(name)s] [%(levelname)s] %(message)s"
        ))
        logger.addHandler(fh)

    sh = logging.StreamHandler()
    sh.setLevel(level)
    sh.setFormatter(logging.Formatter(
        "%(asctime)s [%(name)s] %(message)s"
    ))
    logger.addHandler(sh)

    _configured_loggers.add(name)
    return logger
