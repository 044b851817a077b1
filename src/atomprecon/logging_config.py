"""Logging configuration.

The library only creates module loggers under the ``atomprecon`` namespace;
applications call :func:`setup_logging` to see their output.
"""

import logging
import sys


def setup_logging(level: int = logging.INFO, log_file: str | None = None) -> logging.Logger:
    """Configure the ``atomprecon`` logger.

    Parameters
    ----------
    level : int
        Logging level, e.g. ``logging.DEBUG`` to see every rebuild decision.
    log_file : str, optional
        Path of a file that receives the same records as stdout.

    Returns
    -------
    logging.Logger
        The configured package logger.

    """
    logger = logging.getLogger("atomprecon")
    logger.setLevel(level)

    # Avoid duplicate records when called more than once
    if logger.hasHandlers():
        logger.handlers.clear()

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.debug("Logging initialized.")
    return logger
