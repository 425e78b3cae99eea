"""
Logging setup shared by all modules.
Logs to the console and to a rotating file in the configured log directory.
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler

from .config import settings

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

_configured = False


def _configure_root_logger() -> None:
    global _configured
    if _configured:
        return
    _configured = True

    level = settings.log_level.upper()
    fmt = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(fmt)

    # keeps the last 5 files of 2 MB each
    file_handler = RotatingFileHandler(
        filename=settings.log_dir / "fahrerlogbuch.log",
        maxBytes=2 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(fmt)

    root = logging.getLogger("fahrerlogbuch")
    root.setLevel(level)
    root.addHandler(console)
    root.addHandler(file_handler)


def get_logger(name: str) -> logging.Logger:
    """Return a named logger below the application logger."""
    _configure_root_logger()
    if not name.startswith("fahrerlogbuch"):
        name = f"fahrerlogbuch.{name}"
    return logging.getLogger(name)
