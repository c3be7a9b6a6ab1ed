"""Logging configuration for the player."""

from __future__ import annotations

import logging
from typing import Optional

ROOT_LOGGER_NAMES = (
    "waveline",
    "audio",
    "library",
    "playqueue",
    "session",
    "controller",
    "metadata",
    "ui",
)


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(message)s"))

    handlers: list[logging.Handler] = [console_handler]
    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s | %(levelname)s | %(name)s | %(module)s:%(lineno)d | "
                "%(funcName)s | %(message)s"
            )
        )
        handlers.append(file_handler)

    for name in ROOT_LOGGER_NAMES:
        logger = logging.getLogger(name)
        logger.setLevel(logging.DEBUG if log_file else level)
        logger.propagate = False
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
        for handler in handlers:
            logger.addHandler(handler)

    logging.captureWarnings(True)
    warnings_logger = logging.getLogger("py.warnings")
    warnings_logger.propagate = False
    for handler in list(warnings_logger.handlers):
        warnings_logger.removeHandler(handler)
    for handler in handlers:
        warnings_logger.addHandler(handler)

    return logging.getLogger("waveline")
