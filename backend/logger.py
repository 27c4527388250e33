"""
Logging setup shared by the backend modules.
"""
import logging
import sys

from config import Config


def setup_logger(name: str = "tskr", level: str = Config.LOG_LEVEL) -> logging.Logger:
    """
    Configure and return a logger instance.

    Args:
        name: Logger name, usually the calling module's __name__
        level: Level name such as "INFO" or "DEBUG"
    """
    logger = logging.getLogger(name)

    # Prevent duplicate handlers when a module is re-imported
    if logger.handlers:
        return logger

    logger.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    logger.addHandler(handler)

    return logger
