"""Logging setup shared by the CLI, the API server and the OCR core.

Every module logs through a named logger; the root handler is installed
once by whichever entry point starts first.
"""

import logging
import sys

_NOISY_LOGGERS = ("httpx", "httpcore", "PIL")


def setup_logging(level: str = "INFO", debug: bool = False) -> None:
    """Configure the root logger with a standard format.

    Args:
        level: Logging level string (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        debug: Force DEBUG level regardless of ``level``. Third-party
            HTTP and imaging loggers stay at WARNING either way.
    """
    numeric_level = logging.DEBUG if debug else getattr(
        logging, level.upper(), logging.INFO
    )
    root = logging.getLogger()

    if root.handlers:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    root.addHandler(handler)
    root.setLevel(numeric_level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a named logger instance.

    Args:
        name: Logger name, typically ``__name__`` of the calling module.
    """
    return logging.getLogger(name)
