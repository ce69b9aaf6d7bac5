"""Logging setup shared by the CLI and the background threads."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

_LOGGER_NAME = "docserve"
BUILDER_LOGGER = f"{_LOGGER_NAME}.builder"  # child process output

# Libraries that are chatty at DEBUG and only useful when troubleshooting them.
_NOISY_LIBRARIES = ("watchdog", "uvicorn.error", "uvicorn.access", "asyncio")


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a logger below ``docserve`` (``get_logger("hub")`` -> ``docserve.hub``)."""
    full_name = f"{_LOGGER_NAME}.{name}" if name else _LOGGER_NAME
    return logging.getLogger(full_name)


class _ConsoleFormatter(logging.Formatter):
    """``[docserve] LEVEL message``; builder output lines are shown as ``| line``."""

    def __init__(self) -> None:
        super().__init__("[docserve] %(levelname)s %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        if record.name == BUILDER_LOGGER:
            return f"[docserve] | {record.getMessage()}"
        return super().format(record)


def configure_logging(
    *,
    verbose: bool = False,
    log_file: Path | None = None,
    quiet_libraries: Iterable[str] = _NOISY_LIBRARIES,
) -> logging.Logger:
    """Install the console handler (and optional log file) on the docserve logger.

    Safe to call repeatedly: handlers from a previous call are removed first.
    Third-party loggers in ``quiet_libraries`` are held at WARNING unless verbose.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(_ConsoleFormatter())
    logger.addHandler(console)

    if log_file is not None:
        sink = logging.FileHandler(log_file, encoding="utf-8")
        sink.setLevel(logging.DEBUG)
        sink.setFormatter(logging.Formatter("%(asctime)s %(threadName)s %(name)s %(levelname)s %(message)s"))
        logger.addHandler(sink)
        logger.setLevel(logging.DEBUG)

    for name in quiet_libraries:
        logging.getLogger(name).setLevel(logging.DEBUG if verbose else logging.WARNING)

    return logger


def log_exception(logger: logging.Logger, message: str, exc: BaseException) -> None:
    """Log ``exc`` with a traceback in verbose mode, as a single line otherwise."""
    if logger.isEnabledFor(logging.DEBUG):
        logger.exception("%s: %s", message, exc)
    else:
        logger.error("%s: %s", message, exc)


__all__ = ["BUILDER_LOGGER", "configure_logging", "get_logger", "log_exception"]
