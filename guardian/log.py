"""Logger setup and the event hook shared by the loop and the console UI."""

from __future__ import annotations

import logging
import queue
import sys
import threading
from typing import Optional

LOGGER_NAME = "guardian"

_logger: Optional[logging.Logger] = None
_logger_lock = threading.Lock()

_FORMATTER = logging.Formatter(
    fmt="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


def get_logger() -> logging.Logger:
    """Get or create the application logger (lazy initialization)."""
    global _logger
    if _logger is not None:
        return _logger

    with _logger_lock:
        if _logger is not None:
            return _logger

        logger = logging.getLogger(LOGGER_NAME)
        logger.setLevel(logging.INFO)
        logger.propagate = False
        _logger = logger
        return _logger


def configure_logging(log_path: Optional[str], level: str = "INFO",
                      to_stderr: bool = False) -> logging.Logger:
    """Attach the file and/or stderr handlers. Safe to call more than once."""
    logger = get_logger()
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if log_path:
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(_FORMATTER)
        logger.addHandler(file_handler)

    if to_stderr:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(_FORMATTER)
        logger.addHandler(stream_handler)

    if not logger.handlers:
        logger.addHandler(logging.NullHandler())

    return logger


def log_event(uiq: Optional[queue.Queue], name: str, msg: str, level: str = "info") -> None:
    """Log to file and enqueue for UI display."""
    logger = get_logger()
    log_fn = getattr(logger, level, logger.info)
    log_fn("[%s] %s", name, msg)

    if uiq is not None:
        try:
            uiq.put_nowait(('log', name, msg))
        except queue.Full:
            pass
