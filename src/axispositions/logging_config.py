"""
Logging Configuration
Console (and optional file) output for the command-line tool.
"""
import logging
import sys
from typing import List, Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%H:%M:%S'


def setup_logging(level: int = logging.INFO, log_file: Optional[str] = None) -> logging.Logger:
    """
    Routes the 'axispositions' loggers to stdout and, if given, to a log file
    that is overwritten on every run. Calling it again replaces the handlers.

    Returns:
        The package logger.
    """
    logger = logging.getLogger("axispositions")
    logger.setLevel(level)
    logger.handlers.clear()

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode='w', encoding='utf-8'))

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    target = f"stdout and {log_file}" if log_file else "stdout"
    logger.debug(f"Logging to {target} at level {logging.getLevelName(level)}.")
    return logger
