"""Process-wide logging setup."""

from __future__ import annotations

import logging
import os

from .config import LoggingConfig

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(config: LoggingConfig | None = None) -> logging.Logger:
    """
    Install handlers on the repochat logger.

    Console output always; a file handler in config.output_path when set.
    Calling this twice replaces the previous handlers.

    Returns:
        The configured "repochat" logger
    """
    config = config or LoggingConfig()
    level = logging.getLevelName(config.level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    logger = logging.getLogger("repochat")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    logger.addHandler(console)

    if config.output_path:
        os.makedirs(config.output_path, exist_ok=True)
        file_handler = logging.FileHandler(os.path.join(config.output_path, "repochat.log"))
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.setLevel(level)
    logger.propagate = False

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    return logger


__all__ = ["LOG_FORMAT", "configure_logging"]
