"""Logging configuration helpers for the catalog-sync application."""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler

LOG_DIR = os.getenv("LOG_DIR", "logs")
LOG_FILE = os.path.join(LOG_DIR, "app.log")
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DEFAULT_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
ROOT_LOGGER = "catalog_sync"


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the ``catalog_sync`` hierarchy.

    Handlers (console and rotating file) are attached once to the package
    root logger; module loggers propagate to it.
    """

    root = logging.getLogger(ROOT_LOGGER)
    if not root.handlers:
        os.makedirs(LOG_DIR, exist_ok=True)
        root.setLevel(DEFAULT_LEVEL)
        root.propagate = False
        formatter = logging.Formatter(LOG_FORMAT)

        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=1_000_000,
            backupCount=3,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)

        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)

        root.addHandler(file_handler)
        root.addHandler(console_handler)

    if name == ROOT_LOGGER or name.startswith(f"{ROOT_LOGGER}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def set_level(level: int | str) -> None:
    """Change the level of the package logger (used by ``--debug``)."""

    get_logger(ROOT_LOGGER).setLevel(level)


__all__ = ["get_logger", "set_level", "LOG_DIR", "LOG_FILE"]
