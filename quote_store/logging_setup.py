"""Central logging configuration for processes embedding the quote store.

Applies a root stdout handler so all module loggers emit INFO-level logs
without requiring per-module setup. SQLAlchemy engine chatter is held at
WARNING and repeated calls never stack duplicate handlers.
"""
from __future__ import annotations
import logging
from logging.config import dictConfig

_DICT_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(asctime)s %(levelname)s:%(name)s:%(message)s",
        }
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "level": "DEBUG",
            "formatter": "default",
            "stream": "ext://sys.stdout",
        }
    },
    "root": {"level": "INFO", "handlers": ["console"]},
    "loggers": {
        "quote_store": {"level": "INFO"},
        "sqlalchemy.engine": {"level": "WARNING"},
        "sqlalchemy.pool": {"level": "WARNING"},
    },
}

def configure_logging(level: str | None = None) -> None:
    """Configure process-wide logging once.

    If the root logger already has handlers, return to prevent duplicate output.
    ``level`` overrides the ``quote_store`` logger level, e.g. ``"DEBUG"`` to
    see per-target fan-out and quote id candidate logs.
    """
    root = logging.getLogger()
    if root.handlers:
        if level:
            logging.getLogger("quote_store").setLevel(level.upper())
        return
    dictConfig(_DICT_CONFIG)
    if level:
        logging.getLogger("quote_store").setLevel(level.upper())


__all__ = ["configure_logging"]
