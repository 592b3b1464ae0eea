"""Logging setup for the hybrid retrieval core.

Library modules only call :func:`get_logger`; handlers are attached once by
the command-line entry point through :func:`setup_logging`.
"""

import logging
import sys
from pathlib import Path
from typing import Optional
from ..config.settings import get_logging_config


ROOT_LOGGER_NAME = "hybrid_retrieval"


def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> logging.Logger:
    """
    Attach handlers to the package logger.

    Records go to stderr so that search output on stdout stays parseable.

    Args:
        level: Log level name, overriding ``logging.level``
        log_file: Also write records to this file, overriding ``logging.log_file``

    Returns:
        The configured package logger
    """
    log_config = get_logging_config()
    log_level = getattr(logging, (level or log_config.get("level", "INFO")).upper())
    formatter = logging.Formatter(
        log_config.get("format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(log_level)
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    handlers = [logging.StreamHandler(sys.stderr)]
    log_file = log_file or log_config.get("log_file")
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    for handler in handlers:
        handler.setLevel(log_level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``hybrid_retrieval`` hierarchy for ``name``."""
    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
