"""
Logging setup for specflow runs.
================================

Everything goes through the standard :mod:`logging` tree; modules obtain
their logger with ``logging.getLogger(__name__)``.  ``setup_logging`` adds

* a console handler on stderr, coloured by level when attached to a TTY
* an optional rotating file handler, typically placed in the project
  directory so a run leaves its own log behind

Usage
-----
>>> from specflow.utils.log import setup_logging, get_logger
>>> setup_logging(log_file="runs/benzene/specflow.log")
>>> get_logger(__name__).info("ConformerSearch: started")
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

__all__ = ["setup_logging", "get_logger", "LOG_FORMAT", "DATE_FORMAT"]

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class _LevelColorFormatter(logging.Formatter):
    PALETTE = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, fmt: str, datefmt: str, use_color: bool) -> None:
        super().__init__(fmt, datefmt)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        color = self.PALETTE.get(record.levelno)
        if self.use_color and color:
            return f"{color}{text}{self.RESET}"
        return text


def _stderr_is_tty() -> bool:
    stream = getattr(sys, "stderr", None)
    return bool(stream is not None and hasattr(stream, "isatty") and stream.isatty())


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_file: Optional[Union[str, Path]] = None,
    *,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
) -> logging.Logger:
    """Configure the root logger; safe to call repeatedly."""

    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown log level: {level}")
        level = resolved

    logging.captureWarnings(True)
    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level)
    console.setFormatter(_LevelColorFormatter(LOG_FORMAT, DATE_FORMAT, use_color=_stderr_is_tty()))
    root.addHandler(console)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        root.addHandler(file_handler)
    return root


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name)
