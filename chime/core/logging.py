"""
Logging setup.

Console output stays terse; the dated file under ~/.chime/logs gets
everything from DEBUG up. httpx is held at WARNING because its request
lines carry the Telegram bot token in the URL.
"""

from __future__ import annotations

import logging
from datetime import date
from pathlib import Path

from chime.core.config import get_chime_home

CONSOLE_FORMAT = "[%(levelname)s] %(message)s"
FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_QUIET_LOGGERS = ("httpx", "httpcore")


def default_log_dir() -> Path:
    return get_chime_home() / "logs"


def log_file_for(log_dir: Path, day: date | None = None) -> Path:
    """Path of the log file for day (default: today)."""
    day = day or date.today()
    return log_dir / f"chime_{day:%Y%m%d}.log"


def setup_logging(
    log_dir: Path | None = None,
    console_level: int = logging.WARNING,
    file_level: int = logging.DEBUG,
) -> logging.Logger:
    """
    Route the "chime" logger to the console and to today's log file.

    Calling it again closes and replaces the handlers of the previous call.
    """
    log_dir = log_dir or default_log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger("chime")
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler()
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    logger.addHandler(console)

    log_file = log_file_for(log_dir)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(file_level)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(file_handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.debug(f"Logging to {log_file}")
    return logger
