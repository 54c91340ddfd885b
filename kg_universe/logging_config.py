"""
Logging for the kg_universe namespace.

The CLI and the service both call `setup_logging` once at startup. Records
always go to stderr, which keeps CLI stdout a single JSON document.
"""
import logging
import sys
from typing import Optional, Union


LOGGER_NAME = "kg_universe"
LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"
DATE_FORMAT = "%H:%M:%S"


def resolve_level(level: Union[int, str]) -> int:
    """
    Turn a level name ("debug", "INFO") or number into a logging level.

    Raises:
        ValueError: If the name is not a known level
    """
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level}")
    return resolved


def setup_logging(level: Union[int, str] = logging.INFO, log_file: Optional[str] = None) -> logging.Logger:
    """
    Route kg_universe records to stderr and optionally to a file.

    Handlers from an earlier call are closed and replaced, so repeated setup
    (service reloads, CLI runs in one process) never duplicates output.

    Args:
        level: Level number or name
        log_file: Optional path; the file is truncated on setup

    Returns:
        The configured namespace logger
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(resolve_level(level))

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode="w", encoding="utf-8"))

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.debug(f"Logging at {logging.getLevelName(logger.level)}")
    return logger
