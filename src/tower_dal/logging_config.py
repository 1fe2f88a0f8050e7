"""
Logging configuration for tower_dal.

Every module logs through `logging.getLogger(__name__)`, so all records
land under the `tower_dal` logger. Applications that already configure
logging need nothing from here; scripts and tests can call:

    from tower_dal.logging_config import setup_logging
    setup_logging("DEBUG")
"""

import logging
import sys

ROOT_LOGGER_NAME = "tower_dal"

_handler: logging.Handler | None = None


def setup_logging(level: int | str = logging.INFO) -> logging.Logger:
    """
    Attach a stderr handler to the `tower_dal` logger.

    Safe to call more than once: the handler is installed once and only
    the level changes on later calls.

    Args:
        level: Logging level name or number

    Returns:
        The package root logger
    """
    global _handler

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(level)

    if _handler is None:
        _handler = logging.StreamHandler(sys.stderr)
        _handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s | %(levelname)-8s | %(name)-30s | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        root_logger.addHandler(_handler)
        root_logger.debug("tower_dal logging initialized")

    return root_logger

